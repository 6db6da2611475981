"""Notification dispatcher.

One run: select due reminders, fan deliveries out to every active device of
each owner, then issue two batched writes. The first marks notified
occurrences so they are never announced twice. The second deactivates
subscriptions the push service reported as gone.

Loading is fail-closed: a store error aborts the run before anything is
sent. The trailing writes are fail-open: their errors are logged and the run
still reports its send counts.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional

from ..core.exceptions import RecurpayValidationError
from ..core.timezone_utils import now_utc
from ..push.payloads import DEFAULT_LOCALE, build_reminder_payload, build_test_payload
from ..push.transport import PushOutcome, PushTransport
from ..store.protocols import RecordStore
from .models import PushSubscription
from .scheduler import (
    DEFAULT_CANDIDATE_LIMIT,
    DEFAULT_WINDOW_MINUTES,
    DueReminder,
    ReminderWindowScheduler,
)

logger = logging.getLogger(__name__)

DEFAULT_CONCURRENCY = 8


@dataclass(frozen=True)
class DispatchSummary:
    window_minutes: int
    occurrences_considered: int = 0
    occurrences_notified: int = 0
    notifications_sent: int = 0
    notifications_failed: int = 0
    deactivated_subscriptions: int = 0

    def to_dict(self) -> dict[str, int]:
        return {
            "windowMinutes": self.window_minutes,
            "occurrencesConsidered": self.occurrences_considered,
            "occurrencesNotified": self.occurrences_notified,
            "notificationsSent": self.notifications_sent,
            "notificationsFailed": self.notifications_failed,
            "deactivatedSubscriptions": self.deactivated_subscriptions,
        }


@dataclass(frozen=True)
class DeliveryCheckSummary:
    notifications_sent: int = 0
    notifications_failed: int = 0
    deactivated_subscriptions: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "ok": self.notifications_sent > 0,
            "notificationsSent": self.notifications_sent,
            "notificationsFailed": self.notifications_failed,
            "deactivatedSubscriptions": self.deactivated_subscriptions,
        }


class NotificationDispatcher:
    """Sends due reminders and records the outcome."""

    def __init__(
        self,
        store: RecordStore,
        transport: PushTransport,
        scheduler: Optional[ReminderWindowScheduler] = None,
        concurrency: int = DEFAULT_CONCURRENCY,
        candidate_limit: int = DEFAULT_CANDIDATE_LIMIT,
        locale: str = DEFAULT_LOCALE,
        time_provider: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.transport = transport
        self.scheduler = scheduler or ReminderWindowScheduler(
            store, candidate_limit=candidate_limit, time_provider=time_provider
        )
        self.concurrency = max(1, concurrency)
        self.locale = locale
        self._time_provider = time_provider

    async def dispatch(
        self, window_minutes: int = DEFAULT_WINDOW_MINUTES, now: Optional[datetime] = None
    ) -> DispatchSummary:
        """Run one dispatch pass.

        Args:
            window_minutes: Look-ahead in minutes, 1..180
            now: Reference instant; defaults to the time provider

        Returns:
            DispatchSummary of the run

        Raises:
            RecurpayValidationError: window_minutes out of range
            TransientStoreError: Loading candidates failed; nothing was sent
        """
        now = now or self._time_provider()
        selection = await self.scheduler.select_due(now, window_minutes)

        semaphore = asyncio.Semaphore(self.concurrency)
        results = await asyncio.gather(
            *(self._notify(reminder, semaphore) for reminder in selection.due)
        )

        notified_ids: list[str] = []
        dead_ids: list[str] = []
        sent = failed = 0
        for reminder, outcomes in zip(selection.due, results):
            delivered = False
            for subscription, outcome in outcomes:
                if outcome == PushOutcome.SUCCESS:
                    sent += 1
                    delivered = True
                    continue
                failed += 1
                if outcome == PushOutcome.DEAD_SUBSCRIPTION and subscription.id not in dead_ids:
                    dead_ids.append(subscription.id)
            if delivered:
                notified_ids.append(reminder.occurrence.id)

        if notified_ids:
            try:
                await self.store.mark_reminders_sent(notified_ids, now)
            except Exception:
                logger.exception("Failed to mark %d reminders as sent", len(notified_ids))

        deactivated = await self._deactivate(dead_ids)

        summary = DispatchSummary(
            window_minutes=window_minutes,
            occurrences_considered=selection.considered,
            occurrences_notified=len(notified_ids),
            notifications_sent=sent,
            notifications_failed=failed,
            deactivated_subscriptions=deactivated,
        )
        logger.info(
            "Dispatch complete: considered=%d notified=%d sent=%d failed=%d deactivated=%d",
            summary.occurrences_considered,
            summary.occurrences_notified,
            summary.notifications_sent,
            summary.notifications_failed,
            summary.deactivated_subscriptions,
        )
        return summary

    async def send_test(self, owner_id: str) -> DeliveryCheckSummary:
        """Send a test notification to every active device of ``owner_id``.

        Dead subscriptions are deactivated exactly as in a dispatch run.

        Raises:
            RecurpayValidationError: The owner has no active subscription
            TransientStoreError: Loading subscriptions failed
        """
        subscriptions = await self.store.list_active_subscriptions([owner_id])
        if not subscriptions:
            raise RecurpayValidationError(
                "No active push subscription found; enable push notifications first"
            )

        payload = build_test_payload(self.locale)
        semaphore = asyncio.Semaphore(self.concurrency)
        outcomes = await asyncio.gather(
            *(self._deliver(subscription, payload, semaphore) for subscription in subscriptions)
        )

        sent = sum(1 for outcome in outcomes if outcome == PushOutcome.SUCCESS)
        dead_ids = [
            s.id for s, outcome in zip(subscriptions, outcomes) if outcome == PushOutcome.DEAD_SUBSCRIPTION
        ]
        summary = DeliveryCheckSummary(
            notifications_sent=sent,
            notifications_failed=len(outcomes) - sent,
            deactivated_subscriptions=await self._deactivate(dead_ids),
        )
        logger.info(
            "Test push for owner %s: sent=%d failed=%d",
            owner_id,
            summary.notifications_sent,
            summary.notifications_failed,
        )
        return summary

    async def _deactivate(self, subscription_ids: list[str]) -> int:
        if not subscription_ids:
            return 0
        try:
            return await self.store.deactivate_subscriptions(subscription_ids)
        except Exception:
            logger.exception("Failed to deactivate %d dead subscriptions", len(subscription_ids))
            return 0

    async def _notify(
        self, reminder: DueReminder, semaphore: asyncio.Semaphore
    ) -> list[tuple[PushSubscription, PushOutcome]]:
        payload = build_reminder_payload(reminder.occurrence, reminder.rule, self.locale)
        outcomes = await asyncio.gather(
            *(self._deliver(subscription, payload, semaphore) for subscription in reminder.subscriptions)
        )
        return list(zip(reminder.subscriptions, outcomes))

    async def _deliver(
        self,
        subscription: PushSubscription,
        payload: dict[str, Any],
        semaphore: asyncio.Semaphore,
    ) -> PushOutcome:
        async with semaphore:
            try:
                return await self.transport.send(subscription, payload)
            except Exception:
                logger.warning("Push transport raised for subscription %s", subscription.id, exc_info=True)
                return PushOutcome.OTHER_ERROR
