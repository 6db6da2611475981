"""recurpay - recurring payment schedules with reminder notifications.

Generates occurrences from recurrence rules, tracks their lifecycle against a
ledger, and dispatches push reminders on an external timer.
"""

__version__ = "0.1.0"

from typing import Optional


def _init_logging(level_name: Optional[str]) -> None:
    """Initialize root logging to stream to console.

    Installs a colorized console handler so startup messages are visible
    before configuration is loaded. Honors RECURPAY_DEBUG (truthy values:
    "1", "true", "yes", "on") which forces DEBUG verbosity.
    """
    import logging
    import os
    import sys

    from colorlog import ColoredFormatter

    debug_env = os.environ.get("RECURPAY_DEBUG", "")
    if debug_env.strip().lower() in ("1", "true", "yes", "on"):
        level_name = "DEBUG"

    root = logging.getLogger()
    if not root.handlers:
        handler = logging.StreamHandler(stream=sys.stderr)
        # HH:MM:SS  LEVEL   logger.name: message (only the level is colorized)
        fmt = "%(asctime)s %(log_color)s%(levelname)-7s%(reset)s %(name)s: %(message)s"
        log_colors = {
            "DEBUG": "cyan",
            "INFO": "green",
            "WARNING": "yellow",
            "ERROR": "red",
            "CRITICAL": "bold_red",
        }
        handler.setFormatter(ColoredFormatter(fmt, datefmt="%H:%M:%S", log_colors=log_colors))
        root.addHandler(handler)

    level = logging.INFO
    if isinstance(level_name, str):
        level = getattr(logging, level_name.upper(), logging.INFO)
    root.setLevel(level)
    logging.getLogger(__name__).debug("Logging initialized at level %s", logging.getLevelName(level))


def _load_config(args: Optional[object]):  # type: ignore[no-untyped-def]
    import os
    from pathlib import Path

    from .config_loader import load_config

    config_path = getattr(args, "config", None) or os.environ.get("RECURPAY_CONFIG")
    return load_config(Path(config_path) if config_path else None)


def run_server(args: Optional[object] = None) -> None:
    """Start the recurpay HTTP server.

    Args:
        args: Optional argparse namespace with ``port``, ``host`` and ``config``

    Behavior:
    - Initialize console logging early using RECURPAY_LOG_LEVEL (env) if present.
    - Load .env, optional YAML config and RECURPAY_* variables.
    - Apply command line overrides, then block in start_server().
    """
    import logging
    import os

    _init_logging(os.environ.get("RECURPAY_LOG_LEVEL"))
    logger = logging.getLogger(__name__)

    from .api.server import start_server

    config = _load_config(args)

    port = getattr(args, "port", None)
    if port is not None:
        config.server_port = int(port)
        logger.debug("Applied command line port override: %d", config.server_port)
    host = getattr(args, "host", None)
    if host:
        config.server_bind = host

    logging.getLogger().setLevel(getattr(logging, config.log_level, logging.INFO))
    start_server(config)


def run_dispatch(args: Optional[object] = None) -> dict:
    """Run one notification dispatch against the configured store.

    Returns:
        The dispatch summary as a JSON-ready dict
    """
    import asyncio
    import logging
    import os

    _init_logging(os.environ.get("RECURPAY_LOG_LEVEL"))

    from .api.server import build_transport
    from .core.exceptions import RecurpayError
    from .domain.dispatcher import NotificationDispatcher
    from .logging_config import configure_logging
    from .store.sqlite_store import SQLiteRecordStore

    config = _load_config(args)
    configure_logging(debug_mode=config.debug_logging)

    transport = build_transport(config)
    if transport is None:
        raise RecurpayError("Push delivery is not configured (RECURPAY_VAPID_PRIVATE_KEY)")

    store = SQLiteRecordStore(config.database_path)
    dispatcher = NotificationDispatcher(
        store,
        transport,
        concurrency=config.dispatch_concurrency,
        candidate_limit=config.dispatch_candidate_limit,
        locale=config.notification_locale,
    )
    window = getattr(args, "window", None) or 15
    summary = asyncio.run(dispatcher.dispatch(window_minutes=int(window)))
    logging.getLogger(__name__).debug("Dispatch summary: %s", summary)
    return summary.to_dict()
