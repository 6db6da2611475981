"""Map recurpay exceptions to JSON error responses."""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Any

from aiohttp import web

from ...core.exceptions import (
    RecurpayAuthenticationError,
    RecurpayConflictError,
    RecurpayError,
    RecurpayNotFoundError,
    RecurpayValidationError,
    TransientStoreError,
)

logger = logging.getLogger(__name__)

_STATUS_BY_ERROR: tuple[tuple[type[RecurpayError], int], ...] = (
    (RecurpayValidationError, 400),
    (RecurpayAuthenticationError, 401),
    (RecurpayNotFoundError, 404),
    (RecurpayConflictError, 409),
    (TransientStoreError, 503),
)


def status_for(exc: RecurpayError) -> int:
    for error_type, status in _STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


@web.middleware
async def error_middleware(
    request: web.Request, handler: Callable[[web.Request], Any]
) -> web.StreamResponse:
    """Convert domain errors into ``{"error": ..., "field": ...}`` responses.

    Unexpected exceptions are logged with traceback and answered with a
    generic 500 body.
    """
    try:
        return await handler(request)
    except web.HTTPException:
        raise
    except RecurpayError as exc:
        status = status_for(exc)
        if status >= 500:
            logger.error("%s %s failed: %s", request.method, request.path, exc)
        else:
            logger.warning("%s %s rejected (%d): %s", request.method, request.path, status, exc)

        body: dict[str, Any] = {"error": str(exc)}
        if isinstance(exc, RecurpayAuthenticationError):
            body = {"error": "Unauthorized"}
        field = getattr(exc, "field", None)
        if field:
            body["field"] = field
        return web.json_response(body, status=status)
    except Exception:
        logger.exception("Unexpected error in %s %s", request.method, request.path)
        return web.json_response({"error": "Internal server error"}, status=500)
