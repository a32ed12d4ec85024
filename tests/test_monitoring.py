"""Tests for optional Sentry error tracking."""

from __future__ import annotations

from unittest.mock import patch

import pytest

from transcript_review import monitoring


@pytest.fixture(autouse=True)
def tracking_off(monkeypatch):
    monkeypatch.setattr(monitoring, "_enabled", False)
    monkeypatch.setattr(monitoring, "SENTRY_DSN", "")


class TestInitErrorTracking:
    def test_without_dsn_does_nothing(self):
        with patch("transcript_review.monitoring.sentry_sdk") as sdk:
            assert monitoring.init_error_tracking() is False
        sdk.init.assert_not_called()

    def test_with_dsn_initialises_once(self):
        with patch("transcript_review.monitoring.sentry_sdk") as sdk:
            assert monitoring.init_error_tracking("https://key@sentry.test/1") is True
            assert monitoring.init_error_tracking("https://key@sentry.test/1") is True
        sdk.init.assert_called_once()
        assert sdk.init.call_args.kwargs["dsn"] == "https://key@sentry.test/1"

    def test_dsn_from_environment(self, monkeypatch):
        monkeypatch.setattr(monitoring, "SENTRY_DSN", "https://key@sentry.test/2")
        with patch("transcript_review.monitoring.sentry_sdk") as sdk:
            assert monitoring.init_error_tracking() is True
        assert sdk.init.call_args.kwargs["dsn"] == "https://key@sentry.test/2"


class TestCaptureException:
    def test_noop_when_disabled(self):
        with patch("transcript_review.monitoring.sentry_sdk") as sdk:
            monitoring.capture_exception(RuntimeError("x"), task_id="t1")
        sdk.capture_exception.assert_not_called()

    def test_forwards_context_as_extras(self, monkeypatch):
        monkeypatch.setattr(monitoring, "_enabled", True)
        error = RuntimeError("x")
        with patch("transcript_review.monitoring.sentry_sdk") as sdk:
            monitoring.capture_exception(error, task_id="t1", stage="export")
        sdk.capture_exception.assert_called_once_with(
            error, extras={"task_id": "t1", "stage": "export"}
        )

    def test_reporting_failure_is_swallowed(self, monkeypatch):
        monkeypatch.setattr(monitoring, "_enabled", True)
        with patch("transcript_review.monitoring.sentry_sdk") as sdk:
            sdk.capture_exception.side_effect = RuntimeError("transport down")
            monitoring.capture_exception(ValueError("x"))
