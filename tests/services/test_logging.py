"""Logging pipeline: dictConfig layout and context propagation."""

import logging

import pytest

from Localstays.config.settings import LoggingConfig
from Localstays.observability.logging import (
    ContextFilter,
    LogContext,
    LogModule,
    _build_dict_config,
    current_context,
    get_module_logger,
)


@pytest.fixture
def log_dir(tmp_path, monkeypatch):
    monkeypatch.setenv("LS_PATH_LOGS", str(tmp_path))
    monkeypatch.delenv("LS_LOG_BILLING", raising=False)
    return tmp_path


def test_billing_logger_gets_audit_file(log_dir):
    config = _build_dict_config(LoggingConfig())

    billing = config["loggers"]["Localstays.billing"]
    assert "billing_file" in billing["handlers"]
    assert "billing_file" not in config["loggers"]["Localstays.listing"]["handlers"]
    assert config["handlers"]["billing_file"]["filename"] == str(log_dir.resolve() / "app" / "billing.log")
    assert (log_dir / "app").is_dir()


def test_module_level_env_override(log_dir, monkeypatch):
    monkeypatch.setenv("LS_LOG_BILLING", "debug")
    config = _build_dict_config(LoggingConfig())
    assert config["loggers"]["Localstays.billing"]["level"] == "DEBUG"
    assert config["loggers"]["stripe"]["level"] == "WARNING"


def test_module_logger_name():
    assert get_module_logger(LogModule.ENTITLEMENT).name == "Localstays.entitlement"


class TestLogContext:
    def test_nested_contexts_restore_outer_values(self):
        with LogContext(host_id="host_1", event_id="evt_1"):
            with LogContext(event_id="evt_2"):
                assert current_context()["event_id"] == "evt_2"
                assert current_context()["host_id"] == "host_1"
            assert current_context()["event_id"] == "evt_1"
        assert current_context()["host_id"] is None

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError):
            LogContext(user_id=1)

    def test_filter_fills_missing_fields(self):
        record = logging.LogRecord("Localstays.billing", logging.INFO, __file__, 1, "msg", None, None)
        with LogContext(listing_id="listing_9"):
            assert ContextFilter().filter(record)
        assert record.listing_id == "listing_9"
        assert record.host_id == "-"
