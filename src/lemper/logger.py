"""
Structured logging for step events.

Emits one line per step outcome and per plan start/finish, as JSON (for
log shipping) or as plain text. Only outcome events are logged here;
probe details and command output stay on the debug-level module loggers.

Logged events:
- plan.started
- step.applied
- step.skipped
- step.failed
- plan.finished

Usage:
    from lemper.logger import StepLogger, configure_logging

    configure_logging(level="info", log_file="lemper.log")
    step_logger = StepLogger(plan="nginx-install", dry_run=True)
    step_logger.log_plan_started(steps=9, policy="fail_fast")
    plan.run(ctx, runner, on_outcome=step_logger.log_outcome)
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Optional

if TYPE_CHECKING:
    from lemper.engine.reporter import Report
    from lemper.engine.step import Outcome

# Structured step-event logger
_step_logger = logging.getLogger("lemper.steps")
_step_logger.setLevel(logging.INFO)
_step_logger.propagate = False

# Default handler goes to stderr so stdout stays free for reports.
if not _step_logger.handlers:
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter("%(message)s"))
    _step_logger.addHandler(handler)

_file_handler: Optional[logging.Handler] = None

_EVENTS = {
    "applied": "step.applied",
    "skipped_already_satisfied": "step.skipped",
    "failed": "step.failed",
}


def configure_logging(
    level: str = "info",
    log_file: Optional[str] = None,
) -> None:
    """
    Set the log level for LEMPer and optionally mirror step events to a file.

    The file is opened in append mode, so repeated runs accumulate in one
    log. Calling again replaces the previously configured file.
    """
    global _file_handler

    numeric = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=numeric,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logging.getLogger("lemper").setLevel(numeric)

    if _file_handler is not None:
        _step_logger.removeHandler(_file_handler)
        _file_handler.close()
        _file_handler = None

    if log_file:
        _file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        _file_handler.setFormatter(logging.Formatter("%(message)s"))
        _step_logger.addHandler(_file_handler)


class StepLogger:
    """
    Structured logger for plan and step events.

    Each entry carries the plan name, the dry-run flag and the step name
    (for step events) so runs can be filtered afterwards.
    """

    def __init__(
        self,
        plan: str,
        dry_run: bool = False,
        fmt: str = "json",
        service_name: str = "lemper",
    ):
        self.plan = plan
        self.dry_run = dry_run
        self.fmt = fmt
        self.service_name = service_name
        self._logger = _step_logger

    def _emit(
        self,
        event: str,
        step: Optional[str] = None,
        level: str = "info",
        **extra_fields: Any,
    ) -> None:
        """
        Emit a structured log entry.

        Args:
            event: Event type (e.g., "step.applied")
            step: Step name, for step events
            level: Log level (info, warn, error)
            **extra_fields: Event-specific fields; ``None`` values are dropped
        """
        entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": level,
            "event": event,
            "service": self.service_name,
            "plan": self.plan,
            "dry_run": self.dry_run,
        }
        if step:
            entry["step"] = step
        entry.update({k: v for k, v in extra_fields.items() if v is not None})

        if self.fmt == "json":
            log_line = json.dumps(entry, default=str)
        else:
            fields = " ".join(
                f"{k}={v}" for k, v in entry.items()
                if k not in ("timestamp", "level", "event", "service")
            )
            log_line = f"{entry['timestamp']} {event} {fields}"

        if level == "error":
            self._logger.error(log_line)
        elif level == "warn":
            self._logger.warning(log_line)
        else:
            self._logger.info(log_line)

    def log_plan_started(self, steps: int, policy: str) -> None:
        """Log plan start event."""
        self._emit(event="plan.started", steps=steps, policy=policy)

    def log_outcome(self, outcome: "Outcome") -> None:
        """Log a step outcome; usable directly as ``Plan.run(on_outcome=...)``."""
        self._emit(
            event=_EVENTS[outcome.status.value],
            step=outcome.step,
            level="error" if outcome.failed else "info",
            reason=outcome.reason,
            error_kind=outcome.error_kind,
            actions=list(outcome.actions) or None,
            duration_ms=round(outcome.duration_ms, 1),
        )

    def log_plan_finished(self, report: "Report") -> None:
        """Log plan completion with the outcome counts."""
        self._emit(
            event="plan.finished",
            level="warn" if report.failed_count else "info",
            applied=report.applied_count,
            skipped=report.skipped_count,
            failed=report.failed_count,
            not_run=len(report.not_run),
            aborted=report.aborted,
        )
