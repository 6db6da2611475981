"""Occurrence lifecycle manager.

Applies user actions (confirm, pay, skip, snooze) to an occurrence according
to a fixed transition table. Confirm and pay also write the ledger; the ledger
write always completes before the occurrence row is updated, and a retry
after a failed occurrence update reuses the ledger row instead of creating a
second one.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from typing import Any, Optional

from ..core.exceptions import (
    RecurpayConflictError,
    RecurpayNotFoundError,
    RecurpayValidationError,
)
from ..core.timezone_utils import now_utc, utc_midnight
from ..store.protocols import RecordStore
from .models import LedgerTransaction, Occurrence, OccurrenceStatus, RecurrenceRule

logger = logging.getLogger(__name__)


class OccurrenceAction(str, Enum):
    CONFIRM = "confirm"
    PAY = "pay"
    SKIP = "skip"
    SNOOZE = "snooze"


_OPEN_TARGETS: dict[OccurrenceAction, OccurrenceStatus] = {
    OccurrenceAction.CONFIRM: OccurrenceStatus.CONFIRMED,
    OccurrenceAction.PAY: OccurrenceStatus.PAID,
    OccurrenceAction.SKIP: OccurrenceStatus.SKIPPED,
    OccurrenceAction.SNOOZE: OccurrenceStatus.SNOOZED,
}

# None marks a rejected transition
TRANSITIONS: dict[OccurrenceStatus, dict[OccurrenceAction, Optional[OccurrenceStatus]]] = {
    OccurrenceStatus.UPCOMING: dict(_OPEN_TARGETS),
    OccurrenceStatus.CONFIRMED: dict(_OPEN_TARGETS),
    OccurrenceStatus.SNOOZED: dict(_OPEN_TARGETS),
    OccurrenceStatus.PAID: dict.fromkeys(OccurrenceAction),
    OccurrenceStatus.SKIPPED: dict.fromkeys(OccurrenceAction),
}


def next_status(current: OccurrenceStatus, action: OccurrenceAction) -> OccurrenceStatus:
    """Look up the target state of ``action`` from ``current``.

    Raises:
        RecurpayConflictError: The transition is not permitted
    """
    target = TRANSITIONS[current][action]
    if target is None:
        raise RecurpayConflictError(
            f"Cannot {action.value} an occurrence that is already {current.value}"
        )
    return target


@dataclass(frozen=True)
class ActionInput:
    """Optional arguments of an action.

    new_date is required for snooze. amount and paid_at only apply to pay.
    """

    new_date: Optional[date] = None
    amount: Optional[int] = None
    paid_at: Optional[datetime] = None


@dataclass(frozen=True)
class ActionResult:
    occurrence: Occurrence
    transaction_id: Optional[str]

    def to_dict(self) -> dict[str, Any]:
        return {
            "occurrence": self.occurrence.model_dump(mode="json"),
            "transactionId": self.transaction_id,
        }


def _coerce_action(action: Any) -> OccurrenceAction:
    try:
        return OccurrenceAction(action)
    except ValueError:
        raise RecurpayValidationError(f"Unsupported action: {action!r}", field="action") from None


class OccurrenceLifecycleManager:
    """Validates and applies occurrence state transitions."""

    def __init__(self, store: RecordStore, time_provider: Callable[[], datetime] = now_utc):
        self.store = store
        self._time_provider = time_provider

    async def act(
        self,
        owner_id: str,
        occurrence_id: str,
        action: Any,
        payload: Optional[ActionInput] = None,
    ) -> ActionResult:
        """Apply ``action`` to an occurrence owned by ``owner_id``.

        Args:
            owner_id: Caller identity
            occurrence_id: Target occurrence
            action: OccurrenceAction or its string value
            payload: Action arguments (new_date, amount, paid_at)

        Returns:
            ActionResult with the updated occurrence and its ledger reference

        Raises:
            RecurpayNotFoundError: Occurrence or its rule is absent for this owner
            RecurpayConflictError: Occurrence is paid or skipped
            RecurpayValidationError: Bad payload, or confirm on an auto_create rule
        """
        action = _coerce_action(action)
        payload = payload or ActionInput()

        occurrence = await self.store.get_occurrence(occurrence_id, owner_id)
        if occurrence is None:
            raise RecurpayNotFoundError(f"Occurrence {occurrence_id} not found")

        target = next_status(occurrence.status, action)

        rule = await self.store.get_rule(occurrence.rule_id, owner_id)
        if rule is None:
            raise RecurpayNotFoundError(f"Rule {occurrence.rule_id} not found")

        self._validate(action, rule, payload)

        if action == OccurrenceAction.CONFIRM:
            return await self._confirm(occurrence, rule, target)
        if action == OccurrenceAction.PAY:
            return await self._pay(occurrence, rule, target, payload)
        if action == OccurrenceAction.SNOOZE:
            return await self._snooze(occurrence, target, payload)
        return await self._finish(occurrence, {"status": target, "snoozed_until": None})

    def _validate(self, action: OccurrenceAction, rule: RecurrenceRule, payload: ActionInput) -> None:
        if action == OccurrenceAction.CONFIRM and rule.auto_create:
            raise RecurpayValidationError(
                "Rules with auto_create enabled cannot be confirmed manually", field="action"
            )
        if payload.amount is not None and payload.amount <= 0:
            raise RecurpayValidationError("amount must be a positive integer", field="amount")

    async def _existing_transaction_id(self, occurrence: Occurrence) -> Optional[str]:
        if occurrence.transaction_id:
            return occurrence.transaction_id
        # Ledger row written on an earlier attempt whose occurrence update failed
        orphan = await self.store.find_transaction_for_occurrence(occurrence.id, occurrence.owner_id)
        if orphan is not None:
            logger.info("Reusing ledger row %s for occurrence %s", orphan.id, occurrence.id)
            return orphan.id
        return None

    async def _insert_transaction(
        self, occurrence: Occurrence, rule: RecurrenceRule, amount: int, occurred_at: datetime
    ) -> str:
        transaction = LedgerTransaction(
            owner_id=occurrence.owner_id,
            amount=amount,
            occurred_at=occurred_at,
            category_id=rule.category_id,
            payee=rule.payee,
            payment_method=rule.payment_method,
            notes=rule.notes,
            occurrence_id=occurrence.id,
        )
        saved = await self.store.insert_transaction(transaction)
        logger.debug("Ledger row %s created for occurrence %s", saved.id, occurrence.id)
        return saved.id

    async def _confirm(
        self, occurrence: Occurrence, rule: RecurrenceRule, target: OccurrenceStatus
    ) -> ActionResult:
        tx_id = await self._existing_transaction_id(occurrence)
        if tx_id is None:
            tx_id = await self._insert_transaction(
                occurrence, rule, rule.amount, utc_midnight(occurrence.occurs_on)
            )
        return await self._finish(
            occurrence, {"status": target, "transaction_id": tx_id, "snoozed_until": None}
        )

    async def _pay(
        self,
        occurrence: Occurrence,
        rule: RecurrenceRule,
        target: OccurrenceStatus,
        payload: ActionInput,
    ) -> ActionResult:
        paid_at = payload.paid_at or self._time_provider()
        tx_id = await self._existing_transaction_id(occurrence)

        if tx_id is None:
            tx_id = await self._insert_transaction(
                occurrence, rule, payload.amount or rule.amount, paid_at
            )
        else:
            changes: dict[str, Any] = {"occurred_at": paid_at}
            if payload.amount is not None:
                changes["amount"] = payload.amount
            updated = await self.store.update_transaction(tx_id, occurrence.owner_id, changes)
            if updated is None:
                logger.warning(
                    "Ledger row %s referenced by occurrence %s is missing; recreating",
                    tx_id,
                    occurrence.id,
                )
                tx_id = await self._insert_transaction(
                    occurrence, rule, payload.amount or rule.amount, paid_at
                )

        return await self._finish(
            occurrence, {"status": target, "transaction_id": tx_id, "snoozed_until": None}
        )

    async def _snooze(
        self, occurrence: Occurrence, target: OccurrenceStatus, payload: ActionInput
    ) -> ActionResult:
        new_date = payload.new_date
        if new_date is None:
            raise RecurpayValidationError("new_date is required to snooze", field="new_date")

        if occurrence.transaction_id:
            await self.store.update_transaction(
                occurrence.transaction_id,
                occurrence.owner_id,
                {"occurred_at": utc_midnight(new_date)},
            )

        return await self._finish(
            occurrence,
            {
                "status": target,
                "occurs_on": new_date,
                "snoozed_until": new_date,
                "reminder_sent_at": None,
            },
        )

    async def _finish(self, occurrence: Occurrence, changes: dict[str, Any]) -> ActionResult:
        updated = await self.store.update_occurrence(occurrence.id, changes)
        if updated is None:
            raise RecurpayNotFoundError(f"Occurrence {occurrence.id} not found")
        logger.info(
            "Occurrence %s: %s -> %s", occurrence.id, occurrence.status.value, updated.status.value
        )
        return ActionResult(occurrence=updated, transaction_id=updated.transaction_id)
