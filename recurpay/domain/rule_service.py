"""Rule orchestration: create, update, deactivate, list and materialize."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Optional

from pydantic import ValidationError

from ..core.exceptions import RecurpayError, RecurpayNotFoundError, RecurpayValidationError
from ..core.timezone_utils import now_utc
from ..store.protocols import RecordStore
from .models import Occurrence, OccurrenceStatus, RecurrenceRule, validation_error_from
from .reconciler import OccurrenceReconciler, ReconcileResult
from .recurrence import DEFAULT_LOOKAHEAD_DAYS

logger = logging.getLogger(__name__)

MAX_RANGE_DAYS = 366

SCHEDULE_FIELDS = frozenset({"frequency", "interval", "start_date", "end_date"})
EDITABLE_FIELDS = frozenset(
    {
        "amount",
        "category_id",
        "payee",
        "payment_method",
        "notes",
        "frequency",
        "interval",
        "start_date",
        "end_date",
        "is_active",
        "auto_create",
        "reminder_enabled",
        "reminder_time",
    }
)


@dataclass(frozen=True)
class CreateResult:
    rule: RecurrenceRule
    occurrences_generated: int
    warning: Optional[str] = None


@dataclass(frozen=True)
class UpdateResult:
    rule: RecurrenceRule
    reconciled: ReconcileResult


@dataclass(frozen=True)
class MaterializeResult:
    date_from: date
    date_to: date
    rules_processed: int = 0
    inserted: int = 0
    by_rule: dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "range": {"from": self.date_from.isoformat(), "to": self.date_to.isoformat()},
            "rulesProcessed": self.rules_processed,
            "inserted": self.inserted,
            "byRule": dict(self.by_rule),
        }


def validate_range(date_from: date, date_to: date) -> None:
    """Reject inverted ranges and spans longer than MAX_RANGE_DAYS."""
    if date_from > date_to:
        raise RecurpayValidationError("from must be on or before to", field="from")
    if (date_to - date_from).days > MAX_RANGE_DAYS:
        raise RecurpayValidationError(f"Range may span at most {MAX_RANGE_DAYS} days", field="to")


def _overlaps(rule: RecurrenceRule, date_from: date, date_to: date) -> bool:
    return rule.start_date <= date_to and (rule.end_date is None or rule.end_date >= date_from)


class RuleService:
    """Coordinates rule persistence with occurrence reconciliation."""

    def __init__(
        self,
        store: RecordStore,
        reconciler: Optional[OccurrenceReconciler] = None,
        lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
        time_provider: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.lookahead_days = lookahead_days
        self._time_provider = time_provider
        self.reconciler = reconciler or OccurrenceReconciler(
            store, lookahead_days=lookahead_days, time_provider=time_provider
        )

    def _today(self) -> date:
        return self._time_provider().date()

    async def create_rule(self, owner_id: str, data: dict[str, Any]) -> CreateResult:
        """Persist a new rule and generate its lookahead window.

        A failure while generating occurrences does not undo the rule; the
        result carries a warning and a later update or materialize call fills
        the gap.
        """
        unknown = set(data) - EDITABLE_FIELDS
        if unknown:
            raise RecurpayValidationError(f"Unknown fields: {sorted(unknown)}", field=sorted(unknown)[0])
        try:
            rule = RecurrenceRule(owner_id=owner_id, **data)
        except ValidationError as exc:
            raise validation_error_from(exc) from exc

        saved = await self.store.insert_rule(rule)
        logger.info("Created rule %s for owner %s", saved.id, owner_id)

        if not saved.is_active:
            return CreateResult(rule=saved, occurrences_generated=0)

        try:
            generated = await self.reconciler.populate(saved, self._today())
        except RecurpayError as exc:
            logger.warning("Occurrence generation failed for new rule %s: %s", saved.id, exc)
            return CreateResult(
                rule=saved,
                occurrences_generated=0,
                warning="Rule saved but occurrences could not be generated",
            )
        return CreateResult(rule=saved, occurrences_generated=generated)

    async def get_rule(self, owner_id: str, rule_id: str) -> RecurrenceRule:
        rule = await self.store.get_rule(rule_id, owner_id)
        if rule is None:
            raise RecurpayNotFoundError(f"Rule {rule_id} not found")
        return rule

    async def list_rules(self, owner_id: str, active_only: bool = False) -> list[RecurrenceRule]:
        return await self.store.list_rules(owner_id, active_only=active_only)

    async def update_rule(self, owner_id: str, rule_id: str, changes: dict[str, Any]) -> UpdateResult:
        """Apply a partial update and reconcile occurrences when the schedule moved.

        Turning ``is_active`` off cancels future occurrences; turning it on or
        touching any schedule field reconciles the window. All validation
        happens before the rule is written.
        """
        unknown = set(changes) - EDITABLE_FIELDS
        if unknown:
            raise RecurpayValidationError(f"Unknown fields: {sorted(unknown)}", field=sorted(unknown)[0])

        current = await self.get_rule(owner_id, rule_id)
        if not changes:
            return UpdateResult(rule=current, reconciled=ReconcileResult())

        try:
            candidate = RecurrenceRule.model_validate({**current.model_dump(), **changes})
        except ValidationError as exc:
            raise validation_error_from(exc) from exc

        normalized = {key: getattr(candidate, key) for key in changes}
        updated = await self.store.update_rule(rule_id, owner_id, normalized)
        if updated is None:
            raise RecurpayNotFoundError(f"Rule {rule_id} not found")

        today = self._today()
        result = ReconcileResult()
        if current.is_active and not updated.is_active:
            result.skipped = await self.reconciler.cancel_future(updated, today)
        elif updated.is_active and (SCHEDULE_FIELDS & changes.keys() or not current.is_active):
            result = await self.reconciler.reconcile_rule(updated, today)

        logger.info(
            "Updated rule %s fields=%s inserted=%d skipped=%d",
            rule_id,
            sorted(changes),
            result.inserted,
            result.skipped,
        )
        return UpdateResult(rule=updated, reconciled=result)

    async def deactivate_rule(self, owner_id: str, rule_id: str) -> tuple[RecurrenceRule, int]:
        """Soft-delete a rule and skip its pending future occurrences.

        Returns:
            The deactivated rule and the number of occurrences cancelled
        """
        await self.get_rule(owner_id, rule_id)
        updated = await self.store.update_rule(rule_id, owner_id, {"is_active": False})
        if updated is None:
            raise RecurpayNotFoundError(f"Rule {rule_id} not found")
        cancelled = await self.reconciler.cancel_future(updated, self._today())
        logger.info("Deactivated rule %s (%d occurrences cancelled)", rule_id, cancelled)
        return updated, cancelled

    async def materialize_range(self, owner_id: str, date_from: date, date_to: date) -> MaterializeResult:
        """Insert missing occurrences of every active rule overlapping the range."""
        validate_range(date_from, date_to)
        rules = [
            r for r in await self.store.list_rules(owner_id, active_only=True) if _overlaps(r, date_from, date_to)
        ]

        by_rule: dict[str, int] = {}
        for rule in rules:
            by_rule[rule.id] = await self.reconciler.materialize(rule, date_from, date_to)

        result = MaterializeResult(
            date_from=date_from,
            date_to=date_to,
            rules_processed=len(rules),
            inserted=sum(by_rule.values()),
            by_rule=by_rule,
        )
        logger.info(
            "Materialized %s..%s for owner %s: rules=%d inserted=%d",
            date_from,
            date_to,
            owner_id,
            result.rules_processed,
            result.inserted,
        )
        return result

    async def list_occurrences(
        self,
        owner_id: str,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        statuses: Optional[Iterable[OccurrenceStatus]] = None,
    ) -> list[tuple[Occurrence, Optional[RecurrenceRule]]]:
        """Occurrences in a date range, each paired with its rule.

        The range defaults to today through the lookahead horizon.
        """
        date_from = date_from or self._today()
        date_to = date_to or date_from + timedelta(days=self.lookahead_days)
        validate_range(date_from, date_to)

        occurrences = await self.store.list_owner_occurrences(owner_id, date_from, date_to, statuses)
        rules = await self.store.get_rules_by_ids({o.rule_id for o in occurrences})
        return [(o, rules.get(o.rule_id)) for o in occurrences]

    async def get_occurrence(self, owner_id: str, occurrence_id: str) -> Occurrence:
        occurrence = await self.store.get_occurrence(occurrence_id, owner_id)
        if occurrence is None:
            raise RecurpayNotFoundError(f"Occurrence {occurrence_id} not found")
        return occurrence
