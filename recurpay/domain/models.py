"""Data models for recurring payment schedules."""

from __future__ import annotations

import uuid
from datetime import date, datetime, time
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from ..core.exceptions import RecurpayValidationError
from ..core.timezone_utils import now_utc


class Frequency(str, Enum):
    """Supported recurrence step units."""

    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class OccurrenceStatus(str, Enum):
    """Lifecycle states of a materialized occurrence."""

    UPCOMING = "upcoming"
    CONFIRMED = "confirmed"
    PAID = "paid"
    SKIPPED = "skipped"
    SNOOZED = "snoozed"


TERMINAL_STATUSES = frozenset({OccurrenceStatus.PAID, OccurrenceStatus.SKIPPED})
REMINDABLE_STATUSES = frozenset({OccurrenceStatus.UPCOMING, OccurrenceStatus.SNOOZED})


def new_id() -> str:
    return uuid.uuid4().hex


class RecurrenceRule(BaseModel):
    """A recurring payment template owned by one user.

    Rules are soft-deleted by clearing ``is_active``; they are never removed.
    ``amount`` is expressed in minor currency units.
    """

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    owner_id: str
    amount: int = Field(..., gt=0, description="Amount in minor currency units")
    category_id: Optional[str] = None
    payee: Optional[str] = None
    payment_method: str = Field(..., min_length=1)
    notes: Optional[str] = None
    frequency: Frequency
    interval: int = Field(1, ge=1)
    start_date: date
    end_date: Optional[date] = Field(None, description="Inclusive last date")
    is_active: bool = True
    auto_create: bool = False
    reminder_enabled: bool = False
    reminder_time: Optional[time] = Field(None, description="Local time-of-day; 09:00 when unset")
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @model_validator(mode="after")
    def _check_date_range(self) -> RecurrenceRule:
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self


class Occurrence(BaseModel):
    """A single materialized due date of a rule."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    rule_id: str
    owner_id: str
    occurs_on: date
    status: OccurrenceStatus = OccurrenceStatus.UPCOMING
    snoozed_until: Optional[date] = None
    transaction_id: Optional[str] = None
    reminder_sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def effective_date(self) -> date:
        """Date the reminder refers to: the snooze target when snoozed."""
        if self.status == OccurrenceStatus.SNOOZED and self.snoozed_until is not None:
            return self.snoozed_until
        return self.occurs_on


class LedgerTransaction(BaseModel):
    """Ledger entry created by confirming or paying an occurrence."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    owner_id: str
    amount: int = Field(..., gt=0)
    occurred_at: datetime
    category_id: Optional[str] = None
    payee: Optional[str] = None
    payment_method: Optional[str] = None
    notes: Optional[str] = None
    occurrence_id: Optional[str] = None
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)


class PushSubscription(BaseModel):
    """A registered Web Push endpoint of one device."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(default_factory=new_id)
    owner_id: str
    endpoint: str
    p256dh: str
    auth: str
    expiration_time: Optional[datetime] = None
    is_active: bool = True

    def to_subscription_info(self) -> dict[str, Any]:
        """Return the mapping shape expected by Web Push senders."""
        return {"endpoint": self.endpoint, "keys": {"p256dh": self.p256dh, "auth": self.auth}}


class UserNotificationSettings(BaseModel):
    """Per-owner notification preferences.

    Owners without a stored row behave as ``notifications_enabled=True`` in UTC.
    """

    model_config = ConfigDict(extra="forbid")

    owner_id: str
    notifications_enabled: bool = True
    time_zone: str = "UTC"


def validation_error_from(exc: ValidationError) -> RecurpayValidationError:
    """Convert the first pydantic error into a RecurpayValidationError."""
    errors = exc.errors()
    if not errors:
        return RecurpayValidationError(str(exc))
    first = errors[0]
    loc = [str(part) for part in first.get("loc", ())]
    field = ".".join(loc) if loc else None
    message = first.get("msg", "invalid value")
    if field:
        message = f"{field}: {message}"
    return RecurpayValidationError(message, field=field)
