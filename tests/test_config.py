"""Tests for configuration loading and logging setup."""

from __future__ import annotations

import logging

import pytest
import yaml

from gpgindicator.config import (
    CONFIG_FILE,
    LOG_FILE,
    load_config,
    save_config,
    setup_logging,
)
from gpgindicator.models import IndicatorConfig


class TestLoadConfig:
    def test_defaults_without_file(self, tmp_indicator_home):
        config = load_config(tmp_indicator_home)
        assert config == IndicatorConfig()
        assert config.sync_interval == 30
        assert config.enable_passphrase_cache is False
        assert config.workspace_trusted is True

    def test_values_from_yaml(self, tmp_indicator_home):
        path = tmp_indicator_home / CONFIG_FILE
        path.parent.mkdir(parents=True)
        path.write_text(yaml.dump({
            "sync_interval": 5,
            "enable_passphrase_cache": True,
            "agent_socket": "/run/user/1000/gnupg/S.gpg-agent",
        }))
        config = load_config(tmp_indicator_home)
        assert config.sync_interval == 5
        assert config.enable_passphrase_cache is True
        assert str(config.agent_socket) == "/run/user/1000/gnupg/S.gpg-agent"

    def test_invalid_value_falls_back(self, tmp_indicator_home):
        path = tmp_indicator_home / CONFIG_FILE
        path.parent.mkdir(parents=True)
        path.write_text("sync_interval: -3\n")
        assert load_config(tmp_indicator_home) == IndicatorConfig()

    def test_broken_yaml_falls_back(self, tmp_indicator_home):
        path = tmp_indicator_home / CONFIG_FILE
        path.parent.mkdir(parents=True)
        path.write_text("sync_interval: [unclosed\n")
        assert load_config(tmp_indicator_home) == IndicatorConfig()

    def test_save_round_trip(self, tmp_indicator_home):
        config = IndicatorConfig(sync_interval=12, enable_passphrase_cache=True)
        path = save_config(config, tmp_indicator_home)
        assert path == tmp_indicator_home / CONFIG_FILE
        assert load_config(tmp_indicator_home) == config


class TestSetupLogging:
    @pytest.fixture(autouse=True)
    def _restore_handlers(self):
        package_logger = logging.getLogger("gpgindicator")
        before = list(package_logger.handlers)
        yield
        for handler in package_logger.handlers[len(before):]:
            handler.close()
        package_logger.handlers = before

    def test_writes_to_log_file(self, tmp_indicator_home):
        log_file = setup_logging(tmp_indicator_home, "DEBUG")
        assert log_file == tmp_indicator_home / LOG_FILE
        logging.getLogger("gpgindicator.engine").info("hello from the engine")
        for handler in logging.getLogger("gpgindicator").handlers:
            handler.flush()
        text = log_file.read_text()
        assert "[gpgindicator.engine] INFO: hello from the engine" in text

    def test_no_duplicate_handler(self, tmp_indicator_home):
        setup_logging(tmp_indicator_home)
        count = len(logging.getLogger("gpgindicator").handlers)
        setup_logging(tmp_indicator_home)
        assert len(logging.getLogger("gpgindicator").handlers) == count
