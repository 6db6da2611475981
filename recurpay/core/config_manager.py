"""Configuration management for the recurpay server."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

ENV_PREFIX = "RECURPAY_"

# Integer settings read from the environment: env suffix -> config key
_INT_SETTINGS: dict[str, str] = {
    "WEB_PORT": "server_port",
    "LOOKAHEAD_DAYS": "lookahead_days",
    "DISPATCH_CONCURRENCY": "dispatch_concurrency",
    "DISPATCH_CANDIDATE_LIMIT": "dispatch_candidate_limit",
}

# String settings read from the environment: env suffix -> config key
_STR_SETTINGS: dict[str, str] = {
    "DATABASE_PATH": "database_path",
    "WEB_HOST": "server_bind",
    "CRON_SECRET": "cron_secret",
    "VAPID_PRIVATE_KEY": "vapid_private_key",
    "VAPID_PUBLIC_KEY": "vapid_public_key",
    "VAPID_SUBJECT": "vapid_subject",
    "NOTIFICATION_LOCALE": "notification_locale",
    "LOG_LEVEL": "log_level",
}


def parse_env_file(path: Path) -> dict[str, str]:
    """Parse a .env file and return key-value pairs.

    Args:
        path: Path to .env file

    Returns:
        Dictionary of key-value pairs from the .env file.
        Empty dict if file doesn't exist or cannot be read.

    Note:
        - Skips empty lines and comments (lines starting with #)
        - Strips quotes (both single and double) from values
        - Handles KEY=VALUE format with optional whitespace
    """
    if not path.exists():
        return {}

    result: dict[str, str] = {}

    try:
        content = path.read_text(encoding="utf-8")
    except OSError:
        logger.debug("Failed to read .env file (continuing): %s", str(path), exc_info=True)
        return result

    for raw_line in content.splitlines():
        line = raw_line.strip()

        if not line or line.startswith("#"):
            continue
        if "=" not in line:
            continue

        key, val = line.split("=", 1)
        key = key.strip()
        val = val.strip().strip('"').strip("'")

        if key:
            result[key] = val

    return result


def _is_truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


class ConfigManager:
    """Manages application configuration from environment variables and .env files."""

    def __init__(self, env_file_path: Path | None = None):
        """Initialize configuration manager.

        Args:
            env_file_path: Optional path to .env file (defaults to .env in current directory)
        """
        self.env_file_path = env_file_path or Path.cwd() / ".env"

    def load_env_file(self) -> list[str]:
        """Load .env file and set environment variables.

        Only sets variables that are not already in the environment.

        Returns:
            List of environment variable keys that were loaded from .env file
        """
        if not self.env_file_path.exists():
            logger.debug("No .env file found at %s", self.env_file_path)
            return []

        parsed = parse_env_file(self.env_file_path)

        set_keys = []
        for key, val in parsed.items():
            if key not in os.environ:
                os.environ[key] = val
                set_keys.append(key)

        if set_keys:
            logger.debug("Loaded .env defaults for keys: %s", ", ".join(set_keys))

        return set_keys

    def build_config_from_env(self) -> dict[str, Any]:
        """Build configuration dictionary from RECURPAY_* environment variables.

        Recognizes:
        - RECURPAY_DATABASE_PATH -> 'database_path'
        - RECURPAY_WEB_HOST / RECURPAY_WEB_PORT -> 'server_bind' / 'server_port' (int)
        - RECURPAY_CRON_SECRET -> 'cron_secret'
        - RECURPAY_VAPID_PRIVATE_KEY / RECURPAY_VAPID_PUBLIC_KEY / RECURPAY_VAPID_SUBJECT
          -> VAPID credentials
        - RECURPAY_LOOKAHEAD_DAYS -> 'lookahead_days' (int)
        - RECURPAY_DISPATCH_CONCURRENCY -> 'dispatch_concurrency' (int)
        - RECURPAY_DISPATCH_CANDIDATE_LIMIT -> 'dispatch_candidate_limit' (int)
        - RECURPAY_NOTIFICATION_LOCALE -> 'notification_locale'
        - RECURPAY_LOG_LEVEL -> 'log_level'
        - RECURPAY_DEBUG -> 'debug_logging' (bool)

        Returns:
            Configuration dictionary accepted by RecurpayConfig.from_dict
        """
        cfg: dict[str, Any] = {}

        for suffix, key in _STR_SETTINGS.items():
            value = os.environ.get(ENV_PREFIX + suffix)
            if value:
                cfg[key] = value

        for suffix, key in _INT_SETTINGS.items():
            raw = os.environ.get(ENV_PREFIX + suffix)
            if not raw:
                continue
            try:
                cfg[key] = int(raw)
            except ValueError:
                logger.warning("Invalid %s%s=%r; ignoring", ENV_PREFIX, suffix, raw)

        debug = os.environ.get(ENV_PREFIX + "DEBUG")
        if debug:
            cfg["debug_logging"] = _is_truthy(debug)

        return cfg

    def load_full_config(self) -> dict[str, Any]:
        """Load .env file and build configuration from environment.

        Returns:
            Configuration dictionary
        """
        self.load_env_file()
        return self.build_config_from_env()


def get_config_value(config: Any, key: str, default: Any = None) -> Any:
    """Get configuration value supporting both dict and dataclass-like objects.

    Args:
        config: Configuration object (dict or object with attributes)
        key: Configuration key to retrieve
        default: Default value if key not found

    Returns:
        Configuration value or default
    """
    if isinstance(config, dict):
        return config.get(key, default)
    return getattr(config, key, default)
