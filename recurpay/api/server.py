"""aiohttp server wiring for recurpay."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Callable
from datetime import datetime
from typing import Optional

from aiohttp import web

from .. import __version__
from ..config_loader import RecurpayConfig
from ..core.timezone_utils import now_utc
from ..domain.dispatcher import NotificationDispatcher
from ..domain.lifecycle import OccurrenceLifecycleManager
from ..domain.rule_service import RuleService
from ..logging_config import configure_logging
from ..push.transport import PushTransport, WebPushTransport
from ..store.protocols import RecordStore
from ..store.sqlite_store import SQLiteRecordStore
from .auth import OwnerResolver, header_owner_resolver
from .middleware import correlation_id_middleware, error_middleware
from .routes import (
    register_health_routes,
    register_notification_routes,
    register_occurrence_routes,
    register_recurring_routes,
)

logger = logging.getLogger(__name__)


def build_transport(config: RecurpayConfig) -> Optional[PushTransport]:
    """Create the Web Push transport, or None when VAPID keys are missing."""
    if not config.vapid_private_key:
        logger.warning("RECURPAY_VAPID_PRIVATE_KEY not set; push dispatch disabled")
        return None
    return WebPushTransport(config.vapid_private_key, config.vapid_subject)


def build_dispatcher(
    config: RecurpayConfig,
    store: RecordStore,
    transport: Optional[PushTransport],
    time_provider: Callable[[], datetime] = now_utc,
) -> Optional[NotificationDispatcher]:
    if transport is None:
        return None
    return NotificationDispatcher(
        store,
        transport,
        concurrency=config.dispatch_concurrency,
        candidate_limit=config.dispatch_candidate_limit,
        locale=config.notification_locale,
        time_provider=time_provider,
    )


def make_app(
    config: RecurpayConfig,
    store: RecordStore,
    transport: Optional[PushTransport] = None,
    owner_resolver: OwnerResolver = header_owner_resolver,
    time_provider: Callable[[], datetime] = now_utc,
) -> web.Application:
    """Create the aiohttp application with all routes wired to ``store``.

    Args:
        config: Validated configuration
        store: Record store shared by every service
        transport: Push transport; dispatch answers 503 when None
        owner_resolver: Callable returning the caller's owner id
        time_provider: Clock used by services (overridable in tests)
    """
    app = web.Application(middlewares=[correlation_id_middleware, error_middleware])

    rule_service = RuleService(store, lookahead_days=config.lookahead_days, time_provider=time_provider)
    lifecycle = OccurrenceLifecycleManager(store, time_provider=time_provider)
    dispatcher = build_dispatcher(config, store, transport, time_provider)

    register_health_routes(app, time_provider, __version__)
    register_recurring_routes(app, rule_service, owner_resolver)
    register_occurrence_routes(app, rule_service, lifecycle, owner_resolver)
    register_notification_routes(
        app, dispatcher, config.cron_secret, owner_resolver, vapid_public_key=config.vapid_public_key
    )

    async def _startup(_app: web.Application) -> None:
        await store.initialize()
        logger.info("Record store ready")

    async def _shutdown(_app: web.Application) -> None:
        logger.info("Application shutdown requested")

    app.on_startup.append(_startup)
    app.on_shutdown.append(_shutdown)
    return app


async def _serve(
    config: RecurpayConfig,
    store: RecordStore,
    external_stop_event: Optional[asyncio.Event] = None,
) -> None:
    """Run the HTTP server until signalled to stop.

    Args:
        config: Validated configuration
        store: Record store backing the API
        external_stop_event: Optional event to signal shutdown. If provided,
            signal handlers are not registered (caller owns signal handling).
    """
    stop_event = external_stop_event or asyncio.Event()

    app = make_app(config, store, transport=build_transport(config))
    runner = web.AppRunner(app)
    await runner.setup()

    site = web.TCPSite(runner, host=config.server_bind, port=config.server_port)
    try:
        await site.start()
    except OSError:
        logger.exception("Failed to start server on %s:%d", config.server_bind, config.server_port)
        await runner.cleanup()
        raise
    logger.info("Server started on http://%s:%d", config.server_bind, config.server_port)

    if external_stop_event is None:
        loop = asyncio.get_running_loop()

        def _on_signal() -> None:
            logger.info("Shutdown signal received")
            stop_event.set()

        for sig in (signal.SIGINT, signal.SIGTERM):
            # add_signal_handler is unavailable on some platforms
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, _on_signal)

    await stop_event.wait()
    logger.info("Stop event received, shutting down")
    await runner.cleanup()
    logger.info("Server shutdown complete")


def start_server(config: RecurpayConfig, store: Optional[RecordStore] = None) -> None:
    """Start the asyncio event loop and HTTP server.

    Blocks the calling thread until SIGINT/SIGTERM is received.

    Args:
        config: Validated configuration
        store: Optional record store; defaults to SQLite at config.database_path
    """
    configure_logging(debug_mode=config.debug_logging)
    logger.info("Logging configuration applied: debug_mode=%s", config.debug_logging)

    store = store or SQLiteRecordStore(config.database_path)
    try:
        asyncio.run(_serve(config, store))
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
