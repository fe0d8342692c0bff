"""
Tests for retrying idempotent store steps and for structured log output
"""

import json
import logging
import pytest

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from labreserve.services.errors import BookingNotFound, StoreUnavailable
from labreserve.utils.logging_config import JSONFormatter
from labreserve.utils.retry import retry_idempotent


class Flaky:
    def __init__(self, failures):
        self.failures = failures
        self.calls = 0

    def __call__(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise StoreUnavailable("timeout")
        return "ok"


class TestRetry:

    def test_transient_failures_retried_with_backoff(self):
        delays = []
        operation = Flaky(failures=2)

        result = retry_idempotent(operation, "delete", attempts=3, base_delay=0.1, sleep=delays.append)

        assert result == "ok"
        assert operation.calls == 3
        assert delays == [0.1, 0.2]

    def test_gives_up_after_attempts(self):
        operation = Flaky(failures=5)
        with pytest.raises(StoreUnavailable):
            retry_idempotent(operation, "delete", attempts=3, sleep=lambda s: None)
        assert operation.calls == 3

    def test_delay_is_capped(self):
        delays = []
        retry_idempotent(Flaky(failures=4), "delete", attempts=5, base_delay=1.0, max_delay=2.0,
                         sleep=delays.append)
        assert delays == [1.0, 2.0, 2.0, 2.0]

    def test_domain_errors_not_retried(self):
        calls = []

        def missing():
            calls.append(1)
            raise BookingNotFound("gone", key="k")

        with pytest.raises(BookingNotFound):
            retry_idempotent(missing, "clear marker", sleep=lambda s: None)
        assert len(calls) == 1


class TestJsonLogging:

    def test_extra_fields_rendered(self):
        record = logging.LogRecord("labreserve", logging.INFO, __file__, 1, "Booking created", None, None)
        record.entity_id = "2025-03-12-1-08:00"

        payload = json.loads(JSONFormatter().format(record))

        assert payload["message"] == "Booking created"
        assert payload["level"] == "INFO"
        assert payload["entity_id"] == "2025-03-12-1-08:00"
