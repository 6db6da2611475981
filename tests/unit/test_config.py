"""Unit tests for configuration loading."""

import logging
from pathlib import Path

import pytest

from recurpay.config_loader import RecurpayConfig, load_config
from recurpay.core.config_manager import ConfigManager, get_config_value, parse_env_file

pytestmark = pytest.mark.unit


class TestParseEnvFile:
    def test_parse_env_file_when_missing_then_empty(self, tmp_path):
        assert parse_env_file(tmp_path / "absent.env") == {}

    def test_parse_env_file_when_comments_and_quotes_then_clean_values(self, tmp_path):
        env_file = tmp_path / ".env"
        env_file.write_text(
            "# comment\n\nRECURPAY_WEB_PORT = 9000\nRECURPAY_CRON_SECRET=\"quoted\"\nnot a pair\n",
            encoding="utf-8",
        )

        assert parse_env_file(env_file) == {"RECURPAY_WEB_PORT": "9000", "RECURPAY_CRON_SECRET": "quoted"}


class TestConfigManager:
    def test_load_env_file_when_variable_already_set_then_not_overridden(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("RECURPAY_CRON_SECRET=from-file\nRECURPAY_VAPID_SUBJECT=mailto:a@b.c\n")
        monkeypatch.setenv("RECURPAY_CRON_SECRET", "from-env")
        # registers the variable so teardown removes what load_env_file sets
        monkeypatch.setenv("RECURPAY_VAPID_SUBJECT", "placeholder")
        monkeypatch.delenv("RECURPAY_VAPID_SUBJECT")

        loaded = ConfigManager(env_file).load_env_file()

        assert loaded == ["RECURPAY_VAPID_SUBJECT"]

    def test_build_config_from_env_when_values_set_then_mapped(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RECURPAY_WEB_PORT", "9001")
        monkeypatch.setenv("RECURPAY_DATABASE_PATH", "/tmp/x.db")
        monkeypatch.setenv("RECURPAY_DEBUG", "yes")

        cfg = ConfigManager(tmp_path / ".env").build_config_from_env()

        assert cfg["server_port"] == 9001
        assert cfg["database_path"] == "/tmp/x.db"
        assert cfg["debug_logging"] is True

    def test_build_config_from_env_when_public_key_set_then_mapped(self, tmp_path, monkeypatch):
        monkeypatch.setenv("RECURPAY_VAPID_PUBLIC_KEY", "BPublicKey")

        cfg = ConfigManager(tmp_path / ".env").build_config_from_env()

        assert RecurpayConfig.from_dict(cfg).vapid_public_key == "BPublicKey"

    def test_build_config_from_env_when_int_invalid_then_ignored(self, tmp_path, monkeypatch, caplog):
        monkeypatch.setenv("RECURPAY_LOOKAHEAD_DAYS", "lots")

        with caplog.at_level(logging.WARNING):
            cfg = ConfigManager(tmp_path / ".env").build_config_from_env()

        assert "lookahead_days" not in cfg
        assert "RECURPAY_LOOKAHEAD_DAYS" in caplog.text

    def test_get_config_value_when_dict_or_object_then_same_lookup(self):
        assert get_config_value({"a": 1}, "a") == 1
        assert get_config_value(RecurpayConfig(), "server_port") == 8080
        assert get_config_value(RecurpayConfig(), "missing", "x") == "x"


class TestRecurpayConfig:
    def test_from_dict_when_empty_then_defaults(self):
        config = RecurpayConfig.from_dict(None)

        assert config == RecurpayConfig()

    def test_from_dict_when_out_of_range_then_clamped(self):
        config = RecurpayConfig.from_dict({"lookahead_days": 1000, "dispatch_concurrency": 0})

        assert config.lookahead_days == 366
        assert config.dispatch_concurrency == 1

    def test_from_dict_when_not_numeric_then_default(self):
        assert RecurpayConfig.from_dict({"server_port": "eighty"}).server_port == 8080

    def test_from_dict_when_locale_unsupported_then_english(self):
        assert RecurpayConfig.from_dict({"notification_locale": "fr-FR"}).notification_locale == "en-US"

    def test_from_dict_when_secret_blank_then_none(self):
        assert RecurpayConfig.from_dict({"cron_secret": ""}).cron_secret is None


class TestLoadConfig:
    def test_load_config_when_yaml_and_env_then_env_wins(self, tmp_path, monkeypatch):
        config_file = tmp_path / "recurpay.yaml"
        config_file.write_text("server_port: 7000\nlookahead_days: 30\nnotification_locale: ko-KR\n")
        monkeypatch.setenv("RECURPAY_WEB_PORT", "7100")

        config = load_config(config_file, ConfigManager(tmp_path / ".env"))

        assert config.server_port == 7100
        assert config.lookahead_days == 30
        assert config.notification_locale == "ko-KR"

    def test_load_config_when_file_missing_then_environment_only(self, tmp_path):
        config = load_config(tmp_path / "nope.yaml", ConfigManager(tmp_path / ".env"))

        assert config.server_port == 8080

    def test_load_config_when_yaml_not_mapping_then_error(self, tmp_path):
        config_file = tmp_path / "bad.yaml"
        config_file.write_text("- just\n- a list\n")

        with pytest.raises(RuntimeError):
            load_config(config_file, ConfigManager(tmp_path / ".env"))

    def test_load_config_when_env_file_present_then_values_used(self, tmp_path, monkeypatch):
        env_file = tmp_path / ".env"
        env_file.write_text("RECURPAY_LOOKAHEAD_DAYS=45\n")
        monkeypatch.setenv("RECURPAY_LOOKAHEAD_DAYS", "placeholder")
        monkeypatch.delenv("RECURPAY_LOOKAHEAD_DAYS")

        config = load_config(None, ConfigManager(Path(env_file)))

        assert config.lookahead_days == 45
