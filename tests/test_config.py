"""
Tests for configuration, structured logging and the error taxonomy
"""

import json
import logging

import pytest

from picklebank.config import PickleBankConfig
from picklebank.logging_config import JSONFormatter, setup_logging, log_action
from picklebank.errors import (
    ErrorCodes, InvalidInput, InsufficientFunds, StorageFailure, Unauthorized
)


class TestConfig:

    def test_defaults(self):
        config = PickleBankConfig(_env_file=None)
        assert config.code_ttl_seconds == 300
        assert config.code_length == 6
        assert config.recent_transactions_limit == 50
        assert config.admin_secret == ""
        assert config.discord_token is None
        assert config.log_codes is False

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("PICKLEBANK_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("PICKLEBANK_CODE_TTL_SECONDS", "120")
        monkeypatch.setenv("PICKLEBANK_ADMIN_SECRET", "hunter2")
        monkeypatch.setenv("PICKLEBANK_DISCORD_TOKEN", "bot-token")

        config = PickleBankConfig(_env_file=None)

        assert config.storage_backend == "memory"
        assert config.code_ttl_seconds == 120
        assert config.admin_secret == "hunter2"
        assert config.discord_token == "bot-token"


class TestStructuredLogging:

    def setup_method(self):
        self.logger = logging.getLogger("picklebank.test_logging")
        self.records = []

        class Collector(logging.Handler):
            def emit(handler, record):
                self.records.append(record)

        self.logger.handlers = [Collector()]
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False

    def test_log_action_attaches_structured_fields(self):
        log_action(self.logger, "info", "Deposit booked", account_id="alice",
                   action="deposit", extra={"amount": 5})

        entry = json.loads(JSONFormatter().format(self.records[0]))
        assert entry["message"] == "Deposit booked"
        assert entry["level"] == "INFO"
        assert entry["account_id"] == "alice"
        assert entry["action"] == "deposit"
        assert entry["extra"] == {"amount": 5}
        assert "resource" not in entry

    def test_disabled_level_is_skipped(self):
        log_action(self.logger, "debug", "noise")
        assert self.records == []

    def test_exception_is_formatted(self):
        try:
            raise ValueError("boom")
        except ValueError:
            self.logger.exception("failed")

        entry = json.loads(JSONFormatter().format(self.records[0]))
        assert "ValueError: boom" in entry["exception"]

    def test_setup_logging_replaces_handlers(self):
        logger = setup_logging("WARNING", "text", logger_name="picklebank.test_setup")
        logger = setup_logging("DEBUG", "json", logger_name="picklebank.test_setup")

        assert len(logger.handlers) == 1
        assert isinstance(logger.handlers[0].formatter, JSONFormatter)
        assert logger.level == logging.DEBUG


class TestErrors:

    def test_codes(self):
        assert InvalidInput("x").code == ErrorCodes.INVALID_INPUT
        assert InvalidInput("x", code=ErrorCodes.INVALID_AMOUNT).code == ErrorCodes.INVALID_AMOUNT
        assert InsufficientFunds("x").code == ErrorCodes.INSUFFICIENT_FUNDS
        assert Unauthorized("x").code == ErrorCodes.UNAUTHORIZED

    def test_only_storage_failures_are_retryable(self):
        assert StorageFailure("x").retryable
        assert not InsufficientFunds("x").retryable

    def test_to_dict(self):
        error = InsufficientFunds("Insufficient balance", context={"balance": 0})
        assert error.to_dict() == {
            "code": "insufficient_funds",
            "message": "Insufficient balance",
            "context": {"balance": 0}
        }

    @pytest.mark.parametrize("error", [InvalidInput("x"), StorageFailure("x")])
    def test_is_exception(self, error):
        with pytest.raises(type(error)):
            raise error
