"""Shared fixtures for recurpay tests."""

from __future__ import annotations

from collections.abc import Generator
from datetime import date, datetime, timezone
from typing import Any, Callable, Optional, Union

import pytest

from recurpay.domain.models import (
    Frequency,
    Occurrence,
    PushSubscription,
    RecurrenceRule,
    UserNotificationSettings,
)
from recurpay.push.transport import PushOutcome
from recurpay.store.memory_store import InMemoryRecordStore

OWNER_ID = "owner-1"


class FrozenClock:
    """Callable time provider whose value tests can move."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now


class FakePushTransport:
    """PushTransport double with per-subscription scripted outcomes.

    Unscripted subscriptions succeed. Scripting an exception instance makes
    ``send`` raise it.
    """

    def __init__(self) -> None:
        self.outcomes: dict[str, Union[PushOutcome, Exception]] = {}
        self.sent: list[tuple[str, dict[str, Any]]] = []

    async def send(self, subscription: PushSubscription, payload: dict[str, Any]) -> PushOutcome:
        self.sent.append((subscription.id, payload))
        outcome = self.outcomes.get(subscription.id, PushOutcome.SUCCESS)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def store() -> InMemoryRecordStore:
    """Fresh in-memory record store."""
    return InMemoryRecordStore()


@pytest.fixture
def fixed_now() -> datetime:
    """Deterministic 'now' used by services under test."""
    return datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def clock(fixed_now: datetime) -> FrozenClock:
    return FrozenClock(fixed_now)


@pytest.fixture
def fake_transport() -> FakePushTransport:
    return FakePushTransport()


@pytest.fixture
def make_rule() -> Callable[..., RecurrenceRule]:
    """Factory for valid rules; keyword arguments override defaults."""

    def _make(**overrides: Any) -> RecurrenceRule:
        data: dict[str, Any] = {
            "owner_id": OWNER_ID,
            "amount": 15000,
            "payee": "Landlord",
            "payment_method": "card",
            "frequency": Frequency.MONTHLY,
            "interval": 1,
            "start_date": date(2024, 1, 1),
        }
        data.update(overrides)
        return RecurrenceRule(**data)

    return _make


@pytest.fixture
def seed_reminder(store: InMemoryRecordStore) -> Callable[..., Any]:
    """Insert a rule, one occurrence, settings and subscriptions for dispatch tests.

    Returns a coroutine function yielding ``(rule, occurrence, subscriptions)``.
    """

    async def _seed(
        occurs_on: date,
        time_zone: Optional[str] = "UTC",
        reminder_time: Optional[str] = "09:00:00",
        subscription_count: int = 1,
        notifications_enabled: bool = True,
        reminder_enabled: bool = True,
        owner_id: str = OWNER_ID,
    ) -> tuple[RecurrenceRule, Occurrence, list[PushSubscription]]:
        rule = RecurrenceRule(
            owner_id=owner_id,
            amount=9900,
            payee="Streaming",
            payment_method="card",
            frequency=Frequency.MONTHLY,
            start_date=occurs_on,
            reminder_enabled=reminder_enabled,
            reminder_time=reminder_time,
        )
        await store.insert_rule(rule)
        occurrence = Occurrence(rule_id=rule.id, owner_id=owner_id, occurs_on=occurs_on)
        await store.insert_occurrences([occurrence])
        if time_zone is not None:
            await store.save_notification_settings(
                UserNotificationSettings(
                    owner_id=owner_id,
                    notifications_enabled=notifications_enabled,
                    time_zone=time_zone,
                )
            )
        subscriptions = []
        for index in range(subscription_count):
            subscription = PushSubscription(
                owner_id=owner_id,
                endpoint=f"https://push.example.com/{owner_id}/{index}",
                p256dh="BPublicKey",
                auth="authsecret",
            )
            await store.save_subscription(subscription)
            subscriptions.append(subscription)
        return rule, occurrence, subscriptions

    return _seed


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Keep RECURPAY_* variables from leaking into or between tests."""
    for key in ("RECURPAY_TEST_TIME", "RECURPAY_DEBUG", "RECURPAY_LOG_LEVEL", "RECURPAY_CRON_SECRET"):
        monkeypatch.delenv(key, raising=False)
    yield
    monkeypatch.delenv("RECURPAY_TEST_TIME", raising=False)
