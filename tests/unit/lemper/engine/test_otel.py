"""Tests for OTel span and span event helpers."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from lemper.engine.otel import (
    add_span_event,
    emit_plan_report,
    emit_step_outcome,
    plan_span,
    step_span,
)
from lemper.engine.reporter import Report
from lemper.engine.step import Outcome, OutcomeStatus


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def mock_span():
    """Create a mock OTel span that is recording."""
    span = MagicMock()
    span.is_recording.return_value = True
    return span


@pytest.fixture
def mock_otel(mock_span):
    """Patch OTel to return our mock span."""
    with patch("lemper.engine.otel.otel_trace") as mock_trace:
        mock_trace.get_current_span.return_value = mock_span
        yield mock_trace


# ---------------------------------------------------------------------------
# add_span_event
# ---------------------------------------------------------------------------


class TestAddSpanEvent:
    def test_records_on_recording_span(self, mock_otel, mock_span):
        add_span_event("evt", {"k": "v"})
        mock_span.add_event.assert_called_once_with(name="evt", attributes={"k": "v"})

    def test_skips_non_recording_span(self, mock_otel, mock_span):
        mock_span.is_recording.return_value = False
        add_span_event("evt", {"k": "v"})
        mock_span.add_event.assert_not_called()

    def test_no_sdk_is_noop(self):
        """Without a configured SDK, events are silently dropped."""
        add_span_event("evt", {"k": 1})


# ---------------------------------------------------------------------------
# Spans
# ---------------------------------------------------------------------------


class TestSpans:
    def test_plan_span_name_and_attributes(self, mock_otel):
        tracer = mock_otel.get_tracer.return_value
        span = tracer.start_as_current_span.return_value.__enter__.return_value

        with plan_span("nginx-install", "fail_fast", True):
            pass

        tracer.start_as_current_span.assert_called_once_with("plan:nginx-install")
        span.set_attribute.assert_any_call("plan.policy", "fail_fast")
        span.set_attribute.assert_any_call("plan.dry_run", True)

    def test_step_span_name(self, mock_otel):
        tracer = mock_otel.get_tracer.return_value

        with step_span("nginx-package"):
            pass

        tracer.start_as_current_span.assert_called_once_with("step:nginx-package")


# ---------------------------------------------------------------------------
# emit_step_outcome / emit_plan_report
# ---------------------------------------------------------------------------


class TestEmitStepOutcome:
    def test_applied(self, mock_otel, mock_span):
        outcome = Outcome(step="a", status=OutcomeStatus.APPLIED, actions=["x", "y"])

        emit_step_outcome(outcome)

        attrs = mock_span.add_event.call_args.kwargs["attributes"]
        assert attrs["step.status"] == "applied"
        assert attrs["step.action_count"] == 2
        assert "step.error_kind" not in attrs
        mock_span.set_status.assert_not_called()

    def test_failed_sets_error_status(self, mock_otel, mock_span):
        outcome = Outcome(
            step="a", status=OutcomeStatus.FAILED, reason="boom", error_kind="execution"
        )

        emit_step_outcome(outcome)

        attrs = mock_span.add_event.call_args.kwargs["attributes"]
        assert attrs["step.error_kind"] == "execution"
        assert attrs["step.reason"] == "boom"
        mock_span.set_status.assert_called_once()


class TestEmitPlanReport:
    def test_attributes(self, mock_otel, mock_span):
        report = Report(plan="p", applied_count=1, skipped_count=2, failed_count=0, not_run=["z"])

        emit_plan_report(report)

        call = mock_span.add_event.call_args
        assert call.kwargs["name"] == "lemper.plan.report"
        attrs = call.kwargs["attributes"]
        assert attrs["plan.skipped_count"] == 2
        assert attrs["plan.not_run_count"] == 1
        assert attrs["plan.aborted"] is False

    def test_failures_logged_as_warning(self, mock_otel, caplog):
        report = Report(plan="p", failed_count=2)

        with caplog.at_level("WARNING", logger="lemper.engine.otel"):
            emit_plan_report(report)

        assert "finished with failures" in caplog.text
