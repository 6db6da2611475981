"""Notification routes: timer-driven dispatch plus the client-facing push helpers."""

from __future__ import annotations

import logging
from typing import Optional

from aiohttp import web

from ...domain.dispatcher import NotificationDispatcher
from ..auth import OwnerResolver, check_cron_secret, require_owner
from ..schemas import DispatchRequest, parse_body

logger = logging.getLogger(__name__)

PUBLIC_KEY_CACHE_CONTROL = "public, max-age=86400, immutable"


def _push_not_configured() -> web.Response:
    return web.json_response({"error": "Push delivery is not configured"}, status=503)


def register_notification_routes(
    app: web.Application,
    dispatcher: Optional[NotificationDispatcher],
    cron_secret: Optional[str],
    owner_resolver: OwnerResolver,
    vapid_public_key: Optional[str] = None,
) -> None:
    """Register the notification endpoints.

    - POST /api/notifications/dispatch (cron secret)
    - POST /api/notifications/test (owner)
    - GET /api/notifications/vapid-public-key (public)

    Args:
        app: aiohttp web application
        dispatcher: Configured dispatcher, or None when push delivery has no
            credentials
        cron_secret: Shared secret expected in the X-Cron-Secret header
        owner_resolver: Callable returning the caller's owner id
        vapid_public_key: Key clients pass to PushManager.subscribe
    """

    async def dispatch(request: web.Request) -> web.Response:
        check_cron_secret(request, cron_secret)
        body = await parse_body(request, DispatchRequest, allow_empty=True)

        if dispatcher is None:
            logger.error("Dispatch requested but push delivery is not configured")
            return _push_not_configured()

        summary = await dispatcher.dispatch(window_minutes=body.window_minutes)
        return web.json_response(summary.to_dict())

    async def send_test(request: web.Request) -> web.Response:
        owner_id = require_owner(request, owner_resolver)
        if dispatcher is None:
            return _push_not_configured()

        summary = await dispatcher.send_test(owner_id)
        return web.json_response(summary.to_dict())

    async def public_key(_request: web.Request) -> web.Response:
        if not vapid_public_key:
            return web.json_response({"error": "VAPID public key not configured"}, status=503)
        return web.json_response(
            {"publicKey": vapid_public_key},
            headers={"Cache-Control": PUBLIC_KEY_CACHE_CONTROL},
        )

    app.router.add_post("/api/notifications/dispatch", dispatch)
    app.router.add_post("/api/notifications/test", send_test)
    app.router.add_get("/api/notifications/vapid-public-key", public_key)
    logger.debug("Notification routes registered")
