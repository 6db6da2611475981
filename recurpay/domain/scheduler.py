"""Reminder window scheduler.

Selects occurrences whose reminder instant, computed in the owner's time
zone, falls inside the current dispatch window.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Optional

from ..core.exceptions import RecurpayValidationError
from ..core.timezone_utils import now_utc, zoned_due_instant
from ..store.protocols import RecordStore
from .models import (
    REMINDABLE_STATUSES,
    Occurrence,
    PushSubscription,
    RecurrenceRule,
    UserNotificationSettings,
)

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_MINUTES = 15
MIN_WINDOW_MINUTES = 1
MAX_WINDOW_MINUTES = 180
DEFAULT_CANDIDATE_LIMIT = 500

# Reminders that were missed by up to this long are still sent
LATE_GRACE = timedelta(days=1)


def validate_window(window_minutes: Any) -> int:
    """Return ``window_minutes`` if it is an int within 1..180.

    Raises:
        RecurpayValidationError: Not an int, or out of range
    """
    if (
        not isinstance(window_minutes, int)
        or isinstance(window_minutes, bool)
        or not MIN_WINDOW_MINUTES <= window_minutes <= MAX_WINDOW_MINUTES
    ):
        raise RecurpayValidationError(
            f"windowMinutes must be an integer between {MIN_WINDOW_MINUTES} and {MAX_WINDOW_MINUTES}",
            field="windowMinutes",
        )
    return window_minutes


@dataclass(frozen=True)
class DueReminder:
    """An occurrence ready to be announced, with everything needed to send it."""

    occurrence: Occurrence
    rule: RecurrenceRule
    subscriptions: tuple[PushSubscription, ...]
    due_at: datetime


@dataclass(frozen=True)
class DueSelection:
    considered: int = 0
    due: list[DueReminder] = field(default_factory=list)


def reminder_due_at(
    occurrence: Occurrence, rule: RecurrenceRule, settings: UserNotificationSettings
) -> datetime:
    """UTC instant at which the occurrence's reminder becomes due."""
    return zoned_due_instant(occurrence.effective_date, rule.reminder_time, settings.time_zone)


def wants_reminder(rule: RecurrenceRule, settings: UserNotificationSettings) -> bool:
    # Either switch enables reminders
    return rule.reminder_enabled or settings.notifications_enabled


def _group_by_owner(subscriptions: Iterable[PushSubscription]) -> dict[str, list[PushSubscription]]:
    grouped: dict[str, list[PushSubscription]] = defaultdict(list)
    for subscription in subscriptions:
        if subscription.is_active:
            grouped[subscription.owner_id].append(subscription)
    return grouped


class ReminderWindowScheduler:
    """Loads reminder candidates and filters them down to the due set."""

    def __init__(
        self,
        store: RecordStore,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
        time_provider: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.candidate_limit = candidate_limit
        self._time_provider = time_provider

    async def select_due(
        self, now: Optional[datetime] = None, window_minutes: int = DEFAULT_WINDOW_MINUTES
    ) -> DueSelection:
        """Return occurrences whose reminder is due in [now - 1 day, now + window].

        Candidates are read in pages of ``candidate_limit`` rows until that many
        reminders are due or the date band is exhausted.

        Args:
            now: Reference instant (aware); defaults to the time provider
            window_minutes: Look-ahead in minutes, 1..180

        Returns:
            DueSelection with the candidate count and the due reminders

        Raises:
            RecurpayValidationError: window_minutes out of range
            TransientStoreError: Any load failed
        """
        window_minutes = validate_window(window_minutes)
        now = now or self._time_provider()
        window_end = now + timedelta(minutes=window_minutes)
        earliest = now - LATE_GRACE
        # Date pre-filter wide enough for any UTC offset
        date_from = (now - 2 * LATE_GRACE).date()
        date_to = (window_end + LATE_GRACE).date()

        considered = 0
        due: list[DueReminder] = []
        while len(due) < self.candidate_limit:
            page = await self.store.list_reminder_candidates(
                date_from, date_to, self.candidate_limit, offset=considered
            )
            considered += len(page)
            due.extend(await self._due_in_page(page, earliest, window_end))
            if len(page) < self.candidate_limit:
                break

        if len(due) >= self.candidate_limit:
            logger.warning(
                "Due reminders reached the limit of %d; any others wait for the next run",
                self.candidate_limit,
            )
            due = due[: self.candidate_limit]

        logger.info("Reminder window: %d candidates, %d due", considered, len(due))
        return DueSelection(considered=considered, due=due)

    async def _due_in_page(
        self, candidates: list[Occurrence], earliest: datetime, window_end: datetime
    ) -> list[DueReminder]:
        if not candidates:
            return []
        owner_ids = {c.owner_id for c in candidates}
        rules = await self.store.get_rules_by_ids({c.rule_id for c in candidates})
        settings = await self.store.get_notification_settings(owner_ids)
        subscriptions = _group_by_owner(await self.store.list_active_subscriptions(owner_ids))

        due: list[DueReminder] = []
        for occurrence in candidates:
            if occurrence.status not in REMINDABLE_STATUSES or occurrence.reminder_sent_at is not None:
                continue
            rule = rules.get(occurrence.rule_id)
            if rule is None:
                # Rules are soft-deleted, so this only happens with a foreign row
                logger.warning("Occurrence %s has no rule; skipping", occurrence.id)
                continue
            owner_settings = settings.get(occurrence.owner_id) or UserNotificationSettings(
                owner_id=occurrence.owner_id
            )
            if not wants_reminder(rule, owner_settings):
                continue
            owner_subscriptions = subscriptions.get(occurrence.owner_id)
            if not owner_subscriptions:
                continue
            due_at = reminder_due_at(occurrence, rule, owner_settings)
            if earliest <= due_at <= window_end:
                due.append(
                    DueReminder(
                        occurrence=occurrence,
                        rule=rule,
                        subscriptions=tuple(owner_subscriptions),
                        due_at=due_at,
                    )
                )
        return due
