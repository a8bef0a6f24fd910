"""Unit tests for vestibule.infra.observability.logging."""

from __future__ import annotations

import json
import logging
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
import structlog
from pydantic import ValidationError

from vestibule.infra.observability.logging import (
    REDACTED_VALUE,
    LoggingSettings,
    SensitiveDataProcessor,
    configure_logging,
    get_logger,
    get_logging_settings,
)

if TYPE_CHECKING:
    from collections.abc import Iterator


@pytest.fixture(autouse=True)
def _restore_logging() -> Iterator[None]:
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
    structlog.reset_defaults()
    get_logging_settings.cache_clear()


class TestLoggingSettings:
    @pytest.mark.unit
    def test_default_values(self) -> None:
        with patch.dict("os.environ", {}, clear=True):
            settings = LoggingSettings()
        assert settings.log_level == "INFO"
        assert settings.environment == "development"
        assert settings.use_json_logs is False

    @pytest.mark.unit
    def test_from_env_vars(self) -> None:
        env = {"LOG_LEVEL": "warning", "ENVIRONMENT": "production"}
        with patch.dict("os.environ", env, clear=True):
            settings = LoggingSettings()
        assert settings.log_level == "WARNING"
        assert settings.log_level_int == logging.WARNING
        assert settings.use_json_logs is True

    @pytest.mark.unit
    def test_invalid_log_level(self) -> None:
        with pytest.raises(ValidationError):
            LoggingSettings(log_level="LOUD")


class TestSensitiveDataProcessor:
    @pytest.mark.unit
    @pytest.mark.parametrize(
        "key",
        ["nonce", "state", "code", "code_verifier", "id_token", "refresh_token", "Client_Secret"],
    )
    def test_redacts_protocol_secrets(self, key: str) -> None:
        result = SensitiveDataProcessor()(None, "info", {"event": "callback", key: "value"})
        assert result[key] == REDACTED_VALUE

    @pytest.mark.unit
    def test_preserves_non_sensitive(self) -> None:
        event_dict = {"event": "login", "subject": "user-123", "issuer": "https://idp"}
        assert SensitiveDataProcessor()(None, "info", dict(event_dict)) == event_dict


class TestConfigureLogging:
    @pytest.mark.unit
    def test_stdlib_records_rendered_as_json(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(LoggingSettings(log_level="INFO", environment="production"))
        logging.getLogger("vestibule.test").info(
            "oidc_login_started", extra={"nonce": "n-1", "pkce": True}
        )

        line = capsys.readouterr().err.strip().splitlines()[-1]
        record = json.loads(line)
        assert record["event"] == "oidc_login_started"
        assert record["logger"] == "vestibule.test"
        assert record["pkce"] is True
        assert record["nonce"] == REDACTED_VALUE

    @pytest.mark.unit
    def test_level_filtering(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(LoggingSettings(log_level="WARNING", environment="production"))
        logging.getLogger("vestibule.test").info("quiet")
        assert "quiet" not in capsys.readouterr().err

    @pytest.mark.unit
    def test_default_settings_from_env(self) -> None:
        with patch.dict("os.environ", {"LOG_LEVEL": "ERROR"}, clear=True):
            get_logging_settings.cache_clear()
            configure_logging()
        assert logging.getLogger().level == logging.ERROR


class TestGetLogger:
    @pytest.mark.unit
    def test_structlog_logger_redacts(self, capsys: pytest.CaptureFixture[str]) -> None:
        configure_logging(LoggingSettings(log_level="DEBUG", environment="production"))
        get_logger("vestibule.test").info("token_refreshed", refresh_token="rt-1")

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["logger"] == "vestibule.test"
        assert record["refresh_token"] == REDACTED_VALUE
