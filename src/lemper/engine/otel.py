"""
OTel spans and span events for plan runs.

Each plan run opens a ``plan:<name>`` span and each step a child
``step:<name>`` span. Outcomes and the final report are attached as span
events. Without a configured SDK the OpenTelemetry API hands out
non-recording spans and everything here is a no-op.

Usage::

    from lemper.engine.otel import emit_step_outcome, step_span

    with step_span("ensure-dir"):
        outcome = ...
        emit_step_outcome(outcome)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Iterator

from opentelemetry import trace as otel_trace

if TYPE_CHECKING:  # pragma: no cover
    from lemper.engine.reporter import Report
    from lemper.engine.step import Outcome

logger = logging.getLogger(__name__)

TRACER_NAME = "lemper.engine"


def add_span_event(name: str, attributes: dict[str, str | int | float | bool]) -> None:
    """Add an event to the current OTel span if it is recording."""
    span = otel_trace.get_current_span()
    if span and span.is_recording():
        span.add_event(name=name, attributes=attributes)


@contextmanager
def plan_span(name: str, policy: str, dry_run: bool) -> Iterator[otel_trace.Span]:
    tracer = otel_trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(f"plan:{name}") as span:
        span.set_attribute("plan.name", name)
        span.set_attribute("plan.policy", policy)
        span.set_attribute("plan.dry_run", dry_run)
        yield span


@contextmanager
def step_span(name: str) -> Iterator[otel_trace.Span]:
    tracer = otel_trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(f"step:{name}") as span:
        span.set_attribute("step.name", name)
        yield span


def emit_step_outcome(outcome: "Outcome") -> None:
    """Emit a span event for a single step outcome.

    Event name: ``lemper.step.outcome``
    """
    attrs: dict[str, str | int | float | bool] = {
        "step.name": outcome.step,
        "step.status": outcome.status.value,
        "step.dry_run": outcome.dry_run,
        "step.action_count": len(outcome.actions),
        "step.duration_ms": outcome.duration_ms,
    }
    if outcome.failed:
        attrs["step.error_kind"] = outcome.error_kind or ""
        attrs["step.reason"] = outcome.reason
        span = otel_trace.get_current_span()
        if span and span.is_recording():
            span.set_status(otel_trace.Status(otel_trace.StatusCode.ERROR, outcome.reason))

    add_span_event("lemper.step.outcome", attrs)


def emit_plan_report(report: "Report") -> None:
    """Emit a span event summarising a plan run.

    Event name: ``lemper.plan.report``
    """
    attrs: dict[str, str | int | float | bool] = {
        "plan.name": report.plan,
        "plan.applied_count": report.applied_count,
        "plan.skipped_count": report.skipped_count,
        "plan.failed_count": report.failed_count,
        "plan.not_run_count": len(report.not_run),
        "plan.aborted": report.aborted,
    }

    if report.failed_count:
        logger.warning(
            "Plan '%s' finished with failures: applied=%d skipped=%d failed=%d",
            report.plan,
            report.applied_count,
            report.skipped_count,
            report.failed_count,
        )
    else:
        logger.debug(
            "Plan '%s' finished: applied=%d skipped=%d",
            report.plan,
            report.applied_count,
            report.skipped_count,
        )

    add_span_event("lemper.plan.report", attrs)
