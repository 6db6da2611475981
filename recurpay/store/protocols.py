"""Protocol definitions for the recurpay record store.

Services depend on this interface only, so the in-memory store used by tests
and the SQLite store used in production are interchangeable.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from datetime import date, datetime
from typing import Any, Optional, Protocol

from ..domain.models import (
    LedgerTransaction,
    Occurrence,
    OccurrenceStatus,
    PushSubscription,
    RecurrenceRule,
    UserNotificationSettings,
)


class RecordStore(Protocol):
    """Async persistence for rules, occurrences, ledger rows and push state.

    Lookups scoped by ``owner_id`` return None for records owned by someone
    else. Operational failures raise TransientStoreError.
    """

    async def initialize(self) -> None:
        """Prepare the backing storage (schema creation, connections)."""
        ...

    # Rules

    async def insert_rule(self, rule: RecurrenceRule) -> RecurrenceRule: ...

    async def update_rule(
        self, rule_id: str, owner_id: str, changes: dict[str, Any]
    ) -> Optional[RecurrenceRule]: ...

    async def get_rule(self, rule_id: str, owner_id: str) -> Optional[RecurrenceRule]: ...

    async def list_rules(self, owner_id: str, active_only: bool = False) -> list[RecurrenceRule]:
        """Rules of one owner, newest first."""
        ...

    async def get_rules_by_ids(self, rule_ids: Iterable[str]) -> dict[str, RecurrenceRule]: ...

    # Occurrences

    async def insert_occurrences(self, occurrences: Sequence[Occurrence]) -> int: ...

    async def list_rule_occurrences(
        self, rule_id: str, date_from: date, date_to: Optional[date] = None
    ) -> list[Occurrence]:
        """Occurrences of a rule with occurs_on in [date_from, date_to], ordered by date."""
        ...

    async def get_occurrence(self, occurrence_id: str, owner_id: str) -> Optional[Occurrence]: ...

    async def update_occurrence(
        self, occurrence_id: str, changes: dict[str, Any]
    ) -> Optional[Occurrence]: ...

    async def set_occurrences_status(
        self, occurrence_ids: Sequence[str], status: OccurrenceStatus
    ) -> int: ...

    async def list_owner_occurrences(
        self,
        owner_id: str,
        date_from: date,
        date_to: date,
        statuses: Optional[Iterable[OccurrenceStatus]] = None,
    ) -> list[Occurrence]: ...

    async def list_reminder_candidates(
        self, date_from: date, date_to: date, limit: int, offset: int = 0
    ) -> list[Occurrence]:
        """Upcoming or snoozed occurrences that could still be announced, by date.

        Rows without a reminder marker whose owner has an active subscription
        and whose rule or owner settings enable reminders. Ordered by
        (occurs_on, id) so ``offset`` pages are stable.
        """
        ...

    async def mark_reminders_sent(self, occurrence_ids: Sequence[str], sent_at: datetime) -> int: ...

    # Ledger

    async def insert_transaction(self, transaction: LedgerTransaction) -> LedgerTransaction: ...

    async def update_transaction(
        self, transaction_id: str, owner_id: str, changes: dict[str, Any]
    ) -> Optional[LedgerTransaction]: ...

    async def get_transaction(
        self, transaction_id: str, owner_id: str
    ) -> Optional[LedgerTransaction]: ...

    async def find_transaction_for_occurrence(
        self, occurrence_id: str, owner_id: str
    ) -> Optional[LedgerTransaction]: ...

    # Push subscriptions and settings

    async def save_subscription(self, subscription: PushSubscription) -> PushSubscription: ...

    async def list_active_subscriptions(self, owner_ids: Iterable[str]) -> list[PushSubscription]: ...

    async def deactivate_subscriptions(self, subscription_ids: Sequence[str]) -> int: ...

    async def save_notification_settings(
        self, settings: UserNotificationSettings
    ) -> UserNotificationSettings: ...

    async def get_notification_settings(
        self, owner_ids: Iterable[str]
    ) -> dict[str, UserNotificationSettings]: ...
