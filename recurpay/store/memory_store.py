"""In-memory record store used by tests and local runs."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any, Optional

from ..core.timezone_utils import now_utc
from ..domain.models import (
    REMINDABLE_STATUSES,
    LedgerTransaction,
    Occurrence,
    OccurrenceStatus,
    PushSubscription,
    RecurrenceRule,
    UserNotificationSettings,
)

logger = logging.getLogger(__name__)


class InMemoryRecordStore:
    """Dictionary-backed RecordStore.

    Records are copied on the way in and out so callers never share mutable
    state with the store.
    """

    def __init__(self) -> None:
        self.rules: dict[str, RecurrenceRule] = {}
        self.occurrences: dict[str, Occurrence] = {}
        self.transactions: dict[str, LedgerTransaction] = {}
        self.subscriptions: dict[str, PushSubscription] = {}
        self.settings: dict[str, UserNotificationSettings] = {}
        self._lock = asyncio.Lock()

    async def initialize(self) -> None:
        """Nothing to prepare for an in-memory store."""

    # Rules

    async def insert_rule(self, rule: RecurrenceRule) -> RecurrenceRule:
        async with self._lock:
            self.rules[rule.id] = rule.model_copy(deep=True)
        return rule.model_copy(deep=True)

    async def update_rule(
        self, rule_id: str, owner_id: str, changes: dict[str, Any]
    ) -> Optional[RecurrenceRule]:
        async with self._lock:
            rule = self.rules.get(rule_id)
            if rule is None or rule.owner_id != owner_id:
                return None
            updated = rule.model_copy(update={**changes, "updated_at": now_utc()}, deep=True)
            self.rules[rule_id] = updated
        return updated.model_copy(deep=True)

    async def get_rule(self, rule_id: str, owner_id: str) -> Optional[RecurrenceRule]:
        rule = self.rules.get(rule_id)
        if rule is None or rule.owner_id != owner_id:
            return None
        return rule.model_copy(deep=True)

    async def list_rules(self, owner_id: str, active_only: bool = False) -> list[RecurrenceRule]:
        rules = [
            r.model_copy(deep=True)
            for r in self.rules.values()
            if r.owner_id == owner_id and (r.is_active or not active_only)
        ]
        rules.sort(key=lambda r: r.created_at, reverse=True)
        return rules

    async def get_rules_by_ids(self, rule_ids: Iterable[str]) -> dict[str, RecurrenceRule]:
        return {rid: self.rules[rid].model_copy(deep=True) for rid in set(rule_ids) if rid in self.rules}

    # Occurrences

    async def insert_occurrences(self, occurrences: Sequence[Occurrence]) -> int:
        async with self._lock:
            for occurrence in occurrences:
                self.occurrences[occurrence.id] = occurrence.model_copy(deep=True)
        return len(occurrences)

    async def list_rule_occurrences(
        self, rule_id: str, date_from: date, date_to: Optional[date] = None
    ) -> list[Occurrence]:
        found = [
            o.model_copy(deep=True)
            for o in self.occurrences.values()
            if o.rule_id == rule_id
            and o.occurs_on >= date_from
            and (date_to is None or o.occurs_on <= date_to)
        ]
        found.sort(key=lambda o: o.occurs_on)
        return found

    async def get_occurrence(self, occurrence_id: str, owner_id: str) -> Optional[Occurrence]:
        occurrence = self.occurrences.get(occurrence_id)
        if occurrence is None or occurrence.owner_id != owner_id:
            return None
        return occurrence.model_copy(deep=True)

    async def update_occurrence(
        self, occurrence_id: str, changes: dict[str, Any]
    ) -> Optional[Occurrence]:
        async with self._lock:
            occurrence = self.occurrences.get(occurrence_id)
            if occurrence is None:
                return None
            updated = occurrence.model_copy(update={**changes, "updated_at": now_utc()}, deep=True)
            self.occurrences[occurrence_id] = updated
        return updated.model_copy(deep=True)

    async def set_occurrences_status(
        self, occurrence_ids: Sequence[str], status: OccurrenceStatus
    ) -> int:
        count = 0
        async with self._lock:
            for oid in occurrence_ids:
                occurrence = self.occurrences.get(oid)
                if occurrence is None:
                    continue
                self.occurrences[oid] = occurrence.model_copy(
                    update={"status": status, "updated_at": now_utc()}
                )
                count += 1
        return count

    async def list_owner_occurrences(
        self,
        owner_id: str,
        date_from: date,
        date_to: date,
        statuses: Optional[Iterable[OccurrenceStatus]] = None,
    ) -> list[Occurrence]:
        wanted = set(statuses) if statuses is not None else None
        found = [
            o.model_copy(deep=True)
            for o in self.occurrences.values()
            if o.owner_id == owner_id
            and date_from <= o.occurs_on <= date_to
            and (wanted is None or o.status in wanted)
        ]
        found.sort(key=lambda o: (o.occurs_on, o.created_at))
        return found

    async def list_reminder_candidates(
        self, date_from: date, date_to: date, limit: int, offset: int = 0
    ) -> list[Occurrence]:
        subscribed = {s.owner_id for s in self.subscriptions.values() if s.is_active}
        found = []
        for o in self.occurrences.values():
            if o.status not in REMINDABLE_STATUSES or o.reminder_sent_at is not None:
                continue
            if not date_from <= o.occurs_on <= date_to or o.owner_id not in subscribed:
                continue
            rule = self.rules.get(o.rule_id)
            settings = self.settings.get(o.owner_id) or UserNotificationSettings(owner_id=o.owner_id)
            if rule is None or not (rule.reminder_enabled or settings.notifications_enabled):
                continue
            found.append(o.model_copy(deep=True))
        found.sort(key=lambda o: (o.occurs_on, o.id))
        return found[offset : offset + limit]

    async def mark_reminders_sent(self, occurrence_ids: Sequence[str], sent_at: datetime) -> int:
        return await self._bulk_update(self.occurrences, occurrence_ids, {"reminder_sent_at": sent_at})

    # Ledger

    async def insert_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction:
        async with self._lock:
            self.transactions[transaction.id] = transaction.model_copy(deep=True)
        return transaction.model_copy(deep=True)

    async def update_transaction(
        self, transaction_id: str, owner_id: str, changes: dict[str, Any]
    ) -> Optional[LedgerTransaction]:
        async with self._lock:
            tx = self.transactions.get(transaction_id)
            if tx is None or tx.owner_id != owner_id:
                return None
            updated = tx.model_copy(update={**changes, "updated_at": now_utc()}, deep=True)
            self.transactions[transaction_id] = updated
        return updated.model_copy(deep=True)

    async def get_transaction(
        self, transaction_id: str, owner_id: str
    ) -> Optional[LedgerTransaction]:
        tx = self.transactions.get(transaction_id)
        if tx is None or tx.owner_id != owner_id:
            return None
        return tx.model_copy(deep=True)

    async def find_transaction_for_occurrence(
        self, occurrence_id: str, owner_id: str
    ) -> Optional[LedgerTransaction]:
        for tx in self.transactions.values():
            if tx.occurrence_id == occurrence_id and tx.owner_id == owner_id:
                return tx.model_copy(deep=True)
        return None

    # Push subscriptions and settings

    async def save_subscription(self, subscription: PushSubscription) -> PushSubscription:
        async with self._lock:
            self.subscriptions[subscription.id] = subscription.model_copy(deep=True)
        return subscription.model_copy(deep=True)

    async def list_active_subscriptions(self, owner_ids: Iterable[str]) -> list[PushSubscription]:
        owners = set(owner_ids)
        return [
            s.model_copy(deep=True)
            for s in self.subscriptions.values()
            if s.owner_id in owners and s.is_active
        ]

    async def deactivate_subscriptions(self, subscription_ids: Sequence[str]) -> int:
        return await self._bulk_update(self.subscriptions, subscription_ids, {"is_active": False})

    async def save_notification_settings(
        self, settings: UserNotificationSettings
    ) -> UserNotificationSettings:
        async with self._lock:
            self.settings[settings.owner_id] = settings.model_copy(deep=True)
        return settings.model_copy(deep=True)

    async def get_notification_settings(
        self, owner_ids: Iterable[str]
    ) -> dict[str, UserNotificationSettings]:
        return {oid: self.settings[oid].model_copy(deep=True) for oid in set(owner_ids) if oid in self.settings}

    async def _bulk_update(self, table: dict[str, Any], ids: Sequence[str], changes: dict[str, Any]) -> int:
        count = 0
        async with self._lock:
            for record_id in set(ids):
                record = table.get(record_id)
                if record is None:
                    continue
                table[record_id] = record.model_copy(update=changes)
                count += 1
        logger.debug("Bulk update touched %d of %d records", count, len(ids))
        return count
