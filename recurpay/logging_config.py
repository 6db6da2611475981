"""
Central logging configuration for recurpay.

Quiets chatty third-party loggers and attaches the request correlation ID to
every record so API and dispatch logs can be traced per request.
"""

import logging
import os
from typing import Optional

from .api.middleware.correlation_id import get_request_id


class CorrelationIdFilter(logging.Filter):
    """Add correlation ID to all log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.request_id = get_request_id()
        return True


def configure_logging(debug_mode: bool = False, force_debug: Optional[bool] = None) -> None:
    """
    Configure logging levels for recurpay.

    Args:
        debug_mode: Whether to enable debug logging for recurpay modules
        force_debug: Override debug mode setting (None to use env var detection)

    Environment Variables:
        RECURPAY_DEBUG: Set to '1', 'true', 'yes' to force debug logging
        RECURPAY_LOG_LEVEL: Override root log level (DEBUG, INFO, WARNING, ERROR)
    """
    env_debug = os.getenv("RECURPAY_DEBUG", "").lower() in ("1", "true", "yes")
    env_log_level = os.getenv("RECURPAY_LOG_LEVEL", "").upper()

    if force_debug is not None:
        final_debug = force_debug
    elif env_debug:
        final_debug = True
    else:
        final_debug = debug_mode

    root_level = logging.DEBUG if final_debug else logging.INFO
    if env_log_level in ("DEBUG", "INFO", "WARNING", "ERROR"):
        root_level = getattr(logging, env_log_level)

    root_logger = logging.getLogger()
    root_logger.setLevel(root_level)

    correlation_filter = CorrelationIdFilter()

    # Keep the colorized handler installed by recurpay._init_logging when present
    if not root_logger.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(root_level)
        formatter = logging.Formatter(
            "[%(asctime)s] [%(request_id)s] %(levelname)s - %(name)s - %(message)s"
        )
        handler.setFormatter(formatter)
        handler.addFilter(correlation_filter)
        root_logger.addHandler(handler)
    else:
        for existing_handler in root_logger.handlers:
            existing_handler.addFilter(correlation_filter)

    logger_config: dict[str, int] = {
        "aiohttp.access": logging.WARNING,
        "aiohttp.server": logging.WARNING,
        "aiohttp.web": logging.INFO,
        "aiosqlite": logging.WARNING,
        "asyncio": logging.WARNING,
        "urllib3.connectionpool": logging.WARNING,
        "pywebpush": logging.WARNING,
    }
    logger_config["recurpay"] = logging.DEBUG if final_debug else logging.INFO

    for logger_name, level in logger_config.items():
        logging.getLogger(logger_name).setLevel(level)

    if final_debug:
        root_logger.info("Debug logging enabled for recurpay modules")
    else:
        root_logger.info("Production logging configuration applied")
