"""recurpay.config_loader

Typed configuration for recurpay.

- Exposes a dataclass `RecurpayConfig` built from a plain mapping.
- `load_config()` merges an optional YAML file with RECURPAY_* environment
  variables (environment wins).
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

import yaml

from .core.config_manager import ConfigManager

logger = logging.getLogger(__name__)

SUPPORTED_LOCALES = ("en-US", "ko-KR")


@dataclass
class RecurpayConfig:
    """Typed configuration for recurpay.

    Fields:
        database_path: SQLite file backing the record store
        server_bind: host to bind the HTTP server to
        server_port: port for the HTTP server
        cron_secret: shared secret required by the dispatch endpoint
        vapid_private_key: Web Push VAPID private key
        vapid_public_key: VAPID public key handed to clients that subscribe
        vapid_subject: VAPID contact claim (mailto: or https: URL)
        lookahead_days: days of occurrences generated ahead of today (1..366)
        dispatch_concurrency: concurrent push deliveries per dispatch run
        dispatch_candidate_limit: max occurrences loaded per dispatch run
        notification_locale: language of reminder payloads
        log_level: logging level name
        debug_logging: force DEBUG for recurpay loggers
    """

    database_path: str = "recurpay.db"
    server_bind: str = "0.0.0.0"  # nosec: B104 - default for local/dev; override via config/env
    server_port: int = 8080
    cron_secret: Optional[str] = None
    vapid_private_key: Optional[str] = None
    vapid_public_key: Optional[str] = None
    vapid_subject: str = "mailto:admin@example.com"
    lookahead_days: int = 90
    dispatch_concurrency: int = 8
    dispatch_candidate_limit: int = 500
    notification_locale: str = "en-US"
    log_level: str = "INFO"
    debug_logging: bool = False

    @classmethod
    def from_dict(cls, data: Optional[dict[str, Any]]) -> RecurpayConfig:
        """Create RecurpayConfig from a plain mapping, applying defaults and validation.

        Numeric-like values are coerced to int and clamped to their allowed
        ranges, logging warnings when coercions occur.
        """
        if data is None:
            data = {}

        def _coerce_int(key: str, default: int, low: int, high: int) -> int:
            raw = data.get(key, default)
            try:
                value = int(raw)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw, default)
                return default
            if value < low or value > high:
                clamped = min(max(value, low), high)
                logger.warning("Config %s=%d out of range %d..%d; using %d", key, value, low, high, clamped)
                return clamped
            return value

        def _optional_str(key: str) -> Optional[str]:
            raw = data.get(key)
            if raw is None:
                return None
            return str(raw).strip() or None

        locale = str(data.get("notification_locale") or "en-US")
        if locale not in SUPPORTED_LOCALES:
            logger.warning("Unsupported notification_locale %r; using en-US", locale)
            locale = "en-US"

        log_level = data.get("log_level", "INFO")
        log_level = str(log_level).upper() if log_level is not None else "INFO"

        return cls(
            database_path=str(data.get("database_path") or "recurpay.db"),
            server_bind=str(data.get("server_bind") or "0.0.0.0"),  # nosec: B104
            server_port=_coerce_int("server_port", 8080, 1, 65535),
            cron_secret=_optional_str("cron_secret"),
            vapid_private_key=_optional_str("vapid_private_key"),
            vapid_public_key=_optional_str("vapid_public_key"),
            vapid_subject=str(data.get("vapid_subject") or "mailto:admin@example.com"),
            lookahead_days=_coerce_int("lookahead_days", 90, 1, 366),
            dispatch_concurrency=_coerce_int("dispatch_concurrency", 8, 1, 64),
            dispatch_candidate_limit=_coerce_int("dispatch_candidate_limit", 500, 1, 10000),
            notification_locale=locale,
            log_level=log_level,
            debug_logging=bool(data.get("debug_logging", False)),
        )


def _load_yaml(path: Path) -> dict[str, Any]:
    """Load a mapping from a YAML file; empty files yield an empty mapping."""
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise RuntimeError(f"Config file {path} must contain a mapping at top level")
    return loaded


def load_config(
    path: Optional[Path] = None,
    config_manager: Optional[ConfigManager] = None,
) -> RecurpayConfig:
    """Load configuration from an optional YAML file and the environment.

    Args:
        path: Optional YAML file; ignored when it does not exist
        config_manager: Optional ConfigManager (defaults to .env in cwd)

    Returns:
        Validated RecurpayConfig
    """
    data: dict[str, Any] = {}
    if path is not None:
        if path.exists():
            data.update(_load_yaml(path))
            logger.debug("Loaded config file %s", path)
        else:
            logger.warning("Config file %s not found; using environment only", path)

    manager = config_manager or ConfigManager()
    data.update(manager.load_full_config())
    return RecurpayConfig.from_dict(data)
