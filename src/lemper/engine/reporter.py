"""
Summarise plan outcomes and map them to a process exit code.

Exit code rules:

- **fail_fast** -- 0 if no step failed, otherwise 1.
- **continue** -- 0 if ``failed_count <= max_failures`` (default 0),
  otherwise 1.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Sequence

import click
from pydantic import BaseModel, ConfigDict, Field

from lemper.engine.otel import emit_plan_report
from lemper.engine.plan import FailurePolicy, PlanResult
from lemper.engine.step import Outcome, OutcomeStatus


class Report(BaseModel):
    """Aggregated outcome counts for a plan run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    plan: str = ""
    dry_run: bool = False
    aborted: bool = False
    applied_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    details: List[Outcome] = Field(default_factory=list)
    not_run: List[str] = Field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.failed_count == 0

    @property
    def failures(self) -> List[Outcome]:
        return [o for o in self.details if o.failed]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "plan": self.plan,
            "dry_run": self.dry_run,
            "aborted": self.aborted,
            "applied": self.applied_count,
            "skipped": self.skipped_count,
            "failed": self.failed_count,
            "not_run": list(self.not_run),
            "steps": [
                {
                    "step": o.step,
                    "status": o.status.value,
                    "reason": o.reason,
                    "error_kind": o.error_kind,
                    "actions": list(o.actions),
                    "duration_ms": round(o.duration_ms, 1),
                }
                for o in self.details
            ],
        }


def summarize(
    outcomes: Sequence[Outcome],
    not_run: Sequence[str] = (),
    plan: str = "",
    dry_run: bool = False,
    aborted: bool = False,
) -> Report:
    """Count applied / skipped / failed outcomes."""
    counts = {status: 0 for status in OutcomeStatus}
    for outcome in outcomes:
        counts[outcome.status] += 1
    return Report(
        plan=plan,
        dry_run=dry_run,
        aborted=aborted,
        applied_count=counts[OutcomeStatus.APPLIED],
        skipped_count=counts[OutcomeStatus.SKIPPED],
        failed_count=counts[OutcomeStatus.FAILED],
        details=list(outcomes),
        not_run=list(not_run),
    )


def summarize_result(result: PlanResult) -> Report:
    """Summarise a ``PlanResult`` and emit the report span event."""
    report = summarize(
        result.outcomes,
        not_run=result.not_run,
        plan=result.plan,
        dry_run=result.dry_run,
        aborted=result.aborted,
    )
    emit_plan_report(report)
    return report


def exit_code(
    report: Report,
    policy: FailurePolicy | str = FailurePolicy.FAIL_FAST,
    max_failures: int = 0,
) -> int:
    policy = FailurePolicy(policy) if isinstance(policy, str) else policy
    if policy == FailurePolicy.CONTINUE:
        return 0 if report.failed_count <= max_failures else 1
    return 0 if report.failed_count == 0 else 1


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------

_INDICATORS = {
    OutcomeStatus.APPLIED: ("[APPLIED]", "green"),
    OutcomeStatus.SKIPPED: ("[SKIP]", "yellow"),
    OutcomeStatus.FAILED: ("[FAIL]", "red"),
}


def render_json(report: Report) -> str:
    return json.dumps(report.to_dict(), indent=2)


def render_table(report: Report, verbose: bool = False) -> str:
    """Human-readable, coloured summary (click styles)."""
    title = f"=== {report.plan or 'plan'}{' (dry run)' if report.dry_run else ''} ==="
    lines = [click.style(title, fg="cyan"), ""]

    for outcome in report.details:
        label, colour = _INDICATORS[outcome.status]
        if outcome.status == OutcomeStatus.APPLIED and outcome.dry_run:
            label = "[WOULD APPLY]"
        lines.append(f"  {click.style(label, fg=colour)} {outcome.step}")
        if outcome.failed and outcome.reason:
            lines.append(f"      {click.style(outcome.reason, fg='red')}")
        if verbose or (outcome.dry_run and outcome.status == OutcomeStatus.APPLIED):
            for action in outcome.actions:
                lines.append(f"      $ {action}")

    for name in report.not_run:
        lines.append(f"  {click.style('[NOT RUN]', fg='bright_black')} {name}")

    status_colour = "green" if report.succeeded else "red"
    lines.extend([
        "",
        "Applied: {}  Skipped: {}  Failed: {}".format(
            report.applied_count,
            report.skipped_count,
            click.style(str(report.failed_count), fg=status_colour, bold=True),
        ),
    ])
    if report.aborted:
        lines.append(click.style("Plan aborted after first failure.", fg="red"))
    return "\n".join(lines)
