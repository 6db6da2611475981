"""Caller identity and dispatch secret checks."""

from __future__ import annotations

import hmac
from collections.abc import Callable
from typing import Optional

from aiohttp import web

from ..core.exceptions import RecurpayAuthenticationError

OWNER_HEADER = "X-Owner-Id"
CRON_SECRET_HEADER = "X-Cron-Secret"

OwnerResolver = Callable[[web.Request], Optional[str]]


def header_owner_resolver(request: web.Request) -> Optional[str]:
    """Read the owner id set by the upstream session layer."""
    owner = request.headers.get(OWNER_HEADER, "").strip()
    return owner or None


def require_owner(request: web.Request, resolver: OwnerResolver) -> str:
    """Return the caller's owner id.

    Raises:
        RecurpayAuthenticationError: No identity could be resolved
    """
    owner = resolver(request)
    if not owner:
        raise RecurpayAuthenticationError("Missing owner identity")
    return owner


def check_cron_secret(request: web.Request, expected: Optional[str]) -> None:
    """Verify the dispatch shared secret in constant time.

    Raises:
        RecurpayAuthenticationError: Secret not configured, missing or wrong
    """
    if not expected:
        raise RecurpayAuthenticationError("Dispatch secret is not configured")

    provided = request.headers.get(CRON_SECRET_HEADER, "")
    if not hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8")):
        raise RecurpayAuthenticationError("Invalid dispatch secret")
