"""Custom exception hierarchy for recurpay.

Services raise these instead of generic exceptions so the HTTP layer can map
each failure class to a stable status code and response shape.
"""

from __future__ import annotations

from typing import Optional


class RecurpayError(Exception):
    """Base exception for all recurpay errors.

    The API error middleware catches this type to produce consistent JSON
    error responses.
    """


class RecurpayValidationError(RecurpayError):
    """Input validation failed.

    Raised when:
    - Amount is not a positive integer
    - A date is malformed or end_date precedes start_date
    - Interval is below 1 or the frequency is unsupported
    - An action is not permitted for the rule (confirm on auto_create rules)
    - Dispatch window is outside 1..180 minutes
    - A test push is requested with no active subscription

    Raised before any write is issued. Should result in HTTP 400.
    """

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class RecurpayNotFoundError(RecurpayError):
    """Record does not exist or belongs to another owner.

    The two cases are deliberately indistinguishable to callers.
    Should result in HTTP 404.
    """


class RecurpayConflictError(RecurpayError):
    """State transition not permitted.

    Raised when:
    - Any action is applied to a paid or skipped occurrence

    The occurrence is left unchanged. Should result in HTTP 409.
    """


class TransientStoreError(RecurpayError):
    """Record store is unavailable.

    Raised when the underlying database cannot be reached or a statement
    fails for operational reasons. Callers may retry.
    Should result in HTTP 503.
    """


class RecurpayAuthenticationError(RecurpayError):
    """Caller identity could not be established.

    Raised when:
    - Owner identity header is missing
    - Dispatch shared secret is missing or wrong
    - Dispatch secret is not configured on the server

    Should result in HTTP 401.
    """
