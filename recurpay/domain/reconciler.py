"""Occurrence store reconciler.

Diffs the dates a rule implies against the occurrences already stored and
applies the difference: missing dates are inserted as upcoming, occurrences
whose date is no longer implied are moved to skipped. Paid and skipped rows
are never touched and nothing is ever deleted.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional

from ..core.timezone_utils import now_utc
from ..store.protocols import RecordStore
from .models import Occurrence, OccurrenceStatus, RecurrenceRule
from .recurrence import DEFAULT_LOOKAHEAD_DAYS, default_window, generate_dates

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReconcilePlan:
    """Result of diffing generated dates against stored occurrences."""

    to_insert: list[date] = field(default_factory=list)
    to_cancel: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.to_insert and not self.to_cancel


@dataclass
class ReconcileResult:
    inserted: int = 0
    skipped: int = 0

    def to_dict(self) -> dict[str, int]:
        return {"inserted": self.inserted, "skipped": self.skipped}


def reconcile(existing: Iterable[Occurrence], generated: Iterable[date]) -> ReconcilePlan:
    """Compute which dates to insert and which occurrences to cancel.

    Membership is decided by ``occurs_on`` alone, so running the same inputs
    twice yields an empty second plan.

    Args:
        existing: Stored occurrences of one rule inside the window
        generated: Dates the rule currently implies for the same window

    Returns:
        ReconcilePlan with dates missing from storage and ids of non-terminal
        occurrences whose date is no longer generated.
    """
    existing = list(existing)
    wanted = sorted(set(generated))
    stored_dates = {o.occurs_on for o in existing}
    wanted_set = set(wanted)

    to_insert = [d for d in wanted if d not in stored_dates]
    to_cancel = [o.id for o in existing if o.occurs_on not in wanted_set and not o.is_terminal]
    return ReconcilePlan(to_insert=to_insert, to_cancel=to_cancel)


def build_occurrences(rule: RecurrenceRule, dates: Iterable[date]) -> list[Occurrence]:
    return [Occurrence(rule_id=rule.id, owner_id=rule.owner_id, occurs_on=d) for d in dates]


class OccurrenceReconciler:
    """Applies reconcile plans for a rule through the record store."""

    def __init__(
        self,
        store: RecordStore,
        lookahead_days: int = DEFAULT_LOOKAHEAD_DAYS,
        time_provider: Callable[[], datetime] = now_utc,
    ):
        self.store = store
        self.lookahead_days = lookahead_days
        self._time_provider = time_provider

    def _today(self) -> date:
        return self._time_provider().date()

    async def populate(self, rule: RecurrenceRule, today: Optional[date] = None) -> int:
        """Generate the initial lookahead window for a new rule.

        Returns:
            Number of occurrences inserted
        """
        today = today or self._today()
        window_from, window_to = default_window(today, self.lookahead_days, rule.end_date)
        dates = generate_dates(rule, window_from, window_to)
        existing = await self.store.list_rule_occurrences(rule.id, window_from, window_to)
        plan = reconcile(existing, dates)
        inserted = await self.store.insert_occurrences(build_occurrences(rule, plan.to_insert))
        logger.info("Rule %s populated with %d occurrences", rule.id, inserted)
        return inserted

    async def reconcile_rule(self, rule: RecurrenceRule, today: Optional[date] = None) -> ReconcileResult:
        """Bring stored future occurrences in line with the rule's current schedule.

        The window starts today and reaches the later of the lookahead horizon
        and the last stored occurrence, so previously materialized rows beyond
        the horizon are also re-evaluated.
        """
        today = today or self._today()
        existing = await self.store.list_rule_occurrences(rule.id, today)

        window_to = today + timedelta(days=self.lookahead_days)
        if existing:
            window_to = max(window_to, max(o.occurs_on for o in existing))

        dates = generate_dates(rule, today, window_to)
        plan = reconcile(existing, dates)
        return await self._apply(rule, plan)

    async def materialize(self, rule: RecurrenceRule, date_from: date, date_to: date) -> int:
        """Insert missing occurrences of ``rule`` in an explicit range; never cancels."""
        dates = generate_dates(rule, date_from, date_to)
        if not dates:
            return 0
        existing = await self.store.list_rule_occurrences(rule.id, date_from, date_to)
        plan = reconcile(existing, dates)
        return await self.store.insert_occurrences(build_occurrences(rule, plan.to_insert))

    async def cancel_future(self, rule: RecurrenceRule, today: Optional[date] = None) -> int:
        """Move non-terminal occurrences dated today or later to skipped."""
        today = today or self._today()
        existing = await self.store.list_rule_occurrences(rule.id, today)
        pending = [o.id for o in existing if not o.is_terminal]
        if not pending:
            return 0
        cancelled = await self.store.set_occurrences_status(pending, OccurrenceStatus.SKIPPED)
        logger.info("Rule %s: cancelled %d future occurrences", rule.id, cancelled)
        return cancelled

    async def _apply(self, rule: RecurrenceRule, plan: ReconcilePlan) -> ReconcileResult:
        result = ReconcileResult()
        if plan.is_empty:
            logger.debug("Rule %s already reconciled", rule.id)
            return result

        if plan.to_insert:
            result.inserted = await self.store.insert_occurrences(build_occurrences(rule, plan.to_insert))
        if plan.to_cancel:
            result.skipped = await self.store.set_occurrences_status(plan.to_cancel, OccurrenceStatus.SKIPPED)

        logger.info(
            "Rule %s reconciled: inserted=%d skipped=%d", rule.id, result.inserted, result.skipped
        )
        return result
