"""
Tests for structured logging
"""

import json
import logging

import pytest

from mobile_bank.client import api_client, gate, transfer_flow
from mobile_bank.logging_config import (
    JSONFormatter, get_logger, log_action, bind_correlation_id, reset_correlation_id, redact
)


class CapturingHandler(logging.Handler):

    def __init__(self):
        super().__init__()
        self.setFormatter(JSONFormatter())
        self.lines = []

    def emit(self, record):
        self.lines.append(json.loads(self.format(record)))


class TestStructuredLogging:

    def setup_method(self):
        self.logger = logging.getLogger("mobile_bank.test_logging")
        self.logger.setLevel(logging.INFO)
        self.logger.propagate = False
        self.handler = CapturingHandler()
        self.logger.addHandler(self.handler)

    def teardown_method(self):
        self.logger.removeHandler(self.handler)

    def test_log_action_fields(self):
        log_action(self.logger, "info", "Transfer completed", user_id="user-1",
                   action="transfer", resource="txn-1", extra={"amount": "30.00"})

        entry = self.handler.lines[0]
        assert entry["message"] == "Transfer completed"
        assert entry["level"] == "INFO"
        assert entry["user_id"] == "user-1"
        assert entry["action"] == "transfer"
        assert entry["extra"] == {"amount": "30.00"}
        assert "correlation_id" not in entry

    def test_bound_correlation_id_is_used(self):
        token = bind_correlation_id("req-42")
        try:
            log_action(self.logger, "info", "inside request")
            self.logger.info("plain line")
        finally:
            reset_correlation_id(token)
        log_action(self.logger, "info", "after request")

        assert [line.get("correlation_id") for line in self.handler.lines] == ["req-42", "req-42", None]

    def test_disabled_level_is_skipped(self):
        log_action(self.logger, "debug", "too chatty")
        assert self.handler.lines == []

    def test_secrets_are_redacted(self):
        log_action(self.logger, "warning", "refresh", extra={"refresh_token": "abc", "user": "u"})
        assert self.handler.lines[0]["extra"] == {"refresh_token": "***", "user": "u"}
        assert redact({"Password": "x"}) == {"Password": "***"}


class TestModuleLoggers:

    @pytest.mark.parametrize("module,name", [
        (api_client, "mobile_bank.client"),
        (gate, "mobile_bank.client.gate"),
        (transfer_flow, "mobile_bank.client.transfer"),
    ])
    def test_client_modules_log_under_application_hierarchy(self, module, name):
        assert module.logger is get_logger(name)
        assert module.logger.name.startswith("mobile_bank.")
