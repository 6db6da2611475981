"""Pydantic request models for the HTTP API.

Bodies are parsed in strict JSON mode: unknown fields are rejected, numbers
and booleans must have their JSON types, and dates must be ISO strings.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from typing import Any, Optional, TypeVar

from aiohttp import web
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ..core.exceptions import RecurpayValidationError
from ..domain.lifecycle import ActionInput, OccurrenceAction
from ..domain.models import Frequency, validation_error_from
from ..domain.scheduler import DEFAULT_WINDOW_MINUTES, MAX_WINDOW_MINUTES, MIN_WINDOW_MINUTES

ModelT = TypeVar("ModelT", bound=BaseModel)

_STRICT = ConfigDict(extra="forbid", strict=True, populate_by_name=True)


class RuleCreateRequest(BaseModel):
    """Body of POST /api/recurring."""

    model_config = _STRICT

    amount: int = Field(..., gt=0, description="Amount in minor currency units")
    category_id: Optional[str] = None
    payee: Optional[str] = None
    payment_method: str = Field(..., min_length=1)
    notes: Optional[str] = None
    frequency: Frequency
    interval: int = Field(1, ge=1)
    start_date: date
    end_date: Optional[date] = None
    is_active: bool = True
    auto_create: bool = False
    reminder_enabled: bool = False
    reminder_time: Optional[time] = None

    @model_validator(mode="after")
    def _check_date_range(self) -> RuleCreateRequest:
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        return self

    def to_fields(self) -> dict[str, Any]:
        return self.model_dump()


class RuleUpdateRequest(BaseModel):
    """Body of PATCH /api/recurring/{rule_id}; only provided fields change."""

    model_config = _STRICT

    amount: Optional[int] = Field(None, gt=0)
    category_id: Optional[str] = None
    payee: Optional[str] = None
    payment_method: Optional[str] = Field(None, min_length=1)
    notes: Optional[str] = None
    frequency: Optional[Frequency] = None
    interval: Optional[int] = Field(None, ge=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_active: Optional[bool] = None
    auto_create: Optional[bool] = None
    reminder_enabled: Optional[bool] = None
    reminder_time: Optional[time] = None

    def to_changes(self) -> dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class OccurrenceActionRequest(BaseModel):
    """Body of POST /api/occurrences/{occurrence_id}/actions."""

    model_config = _STRICT

    action: OccurrenceAction
    new_date: Optional[date] = None
    amount: Optional[int] = Field(None, gt=0)
    paid_at: Optional[datetime] = None

    @field_validator("paid_at")
    @classmethod
    def _assume_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        if v is not None and v.tzinfo is None:
            return v.replace(tzinfo=timezone.utc)
        return v

    @model_validator(mode="after")
    def _check_action_fields(self) -> OccurrenceActionRequest:
        if self.action == OccurrenceAction.SNOOZE and self.new_date is None:
            raise ValueError("new_date is required to snooze")
        return self

    def to_input(self) -> ActionInput:
        return ActionInput(new_date=self.new_date, amount=self.amount, paid_at=self.paid_at)


class MaterializeRequest(BaseModel):
    """Body of POST /api/occurrences/materialize."""

    model_config = _STRICT

    date_from: date = Field(..., alias="from")
    date_to: date = Field(..., alias="to")


class DispatchRequest(BaseModel):
    """Body of POST /api/notifications/dispatch; may be empty."""

    model_config = _STRICT

    window_minutes: int = Field(
        DEFAULT_WINDOW_MINUTES,
        alias="windowMinutes",
        ge=MIN_WINDOW_MINUTES,
        le=MAX_WINDOW_MINUTES,
    )


async def parse_body(request: web.Request, model: type[ModelT], allow_empty: bool = False) -> ModelT:
    """Validate the JSON body of ``request`` into ``model``.

    Raises:
        RecurpayValidationError: Body missing, not JSON, or not matching the model
    """
    raw = await request.text()
    if not raw.strip():
        if not allow_empty:
            raise RecurpayValidationError("Request body is required", field="body")
        raw = "{}"
    try:
        return model.model_validate_json(raw)
    except ValidationError as exc:
        raise validation_error_from(exc) from exc


def parse_date_param(request: web.Request, name: str) -> Optional[date]:
    """Parse an optional YYYY-MM-DD query parameter."""
    raw = request.query.get(name)
    if raw is None or raw == "":
        return None
    try:
        return date.fromisoformat(raw)
    except ValueError:
        raise RecurpayValidationError(f"{name} must be a YYYY-MM-DD date", field=name) from None
