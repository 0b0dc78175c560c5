"""
Idempotent provisioning steps.

A step couples a read-only probe, a check on the probed state, and the
actions that bring the host into the checked state::

    step = Step(
        name="ensure-dir",
        probe=lambda: probe_path("/etc/nginx/modules-available", kind="dir"),
        check=lambda s: s.is_present,
        apply=lambda s, ctx: [command("mkdir", "-p", "/etc/nginx/modules-available")],
    )
    outcome = execute_step(step, ctx, runner)

``execute_step`` never calls ``apply`` when the check already holds, and
in a live run re-probes afterwards to verify the post-condition. Steps
are dry-run agnostic: the runner decides whether actions really happen.

A step with ``triggered_by`` (a service reload, say) is applied even when
its check holds if one of the named steps was applied earlier in the same
plan run.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from lemper.engine.actions import Action
from lemper.engine.context import ExecutionContext
from lemper.engine.errors import ExecutionError, PostconditionError, ProbeError
from lemper.engine.otel import emit_step_outcome, step_span
from lemper.engine.runner import CommandRunner
from lemper.engine.state import StateSnapshot

logger = logging.getLogger(__name__)

Probe = Callable[[], StateSnapshot]
Check = Callable[[StateSnapshot], bool]
Apply = Callable[[StateSnapshot, ExecutionContext], Sequence[Action]]


@dataclass(frozen=True)
class Step:
    """A named, idempotent unit of provisioning work."""

    name: str
    probe: Probe
    check: Check
    apply: Apply
    requires: Tuple[str, ...] = field(default=())
    description: str = ""
    triggered_by: Tuple[str, ...] = field(default=())


class OutcomeStatus(str, Enum):
    """Result of executing a single step."""
    APPLIED = "applied"
    SKIPPED = "skipped_already_satisfied"
    FAILED = "failed"


class Outcome(BaseModel):
    """Per-step outcome, owned by the plan run that produced it."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    step: str
    status: OutcomeStatus
    reason: str = ""
    error_kind: Optional[str] = Field(
        default=None, description="probe | execution | postcondition | dependency"
    )
    before: Optional[StateSnapshot] = None
    after: Optional[StateSnapshot] = None
    actions: List[str] = Field(default_factory=list)
    dry_run: bool = False
    duration_ms: float = 0.0

    @property
    def failed(self) -> bool:
        return self.status == OutcomeStatus.FAILED

    @property
    def succeeded(self) -> bool:
        return self.status != OutcomeStatus.FAILED


def _failed(step: Step, reason: str, kind: str, start: float, **extra) -> Outcome:
    return Outcome(
        step=step.name,
        status=OutcomeStatus.FAILED,
        reason=reason,
        error_kind=kind,
        duration_ms=(time.monotonic() - start) * 1000,
        **extra,
    )


def execute_step(
    step: Step,
    ctx: ExecutionContext,
    runner: CommandRunner,
    force: bool = False,
) -> Outcome:
    """
    Probe, apply if needed, verify. Never raises for step-level failures.

    With ``force`` the actions run even when the check already holds;
    the post-condition is still verified.
    """
    with step_span(step.name):
        outcome = _execute(step, ctx, runner, force)
        emit_step_outcome(outcome)
    return outcome


def _execute(step: Step, ctx: ExecutionContext, runner: CommandRunner, force: bool) -> Outcome:
    start = time.monotonic()

    try:
        before = step.probe()
    except ProbeError as e:
        logger.error("Step '%s' probe failed: %s", step.name, e)
        return _failed(step, str(e), "probe", start)

    if force:
        logger.info("Step '%s' triggered by changes earlier in the run", step.name)
    elif step.check(before):
        logger.info("Step '%s' already satisfied (%s)", step.name, before.describe())
        return Outcome(
            step=step.name,
            status=OutcomeStatus.SKIPPED,
            before=before,
            dry_run=runner.dry_run,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    actions = list(step.apply(before, ctx))
    described = [a.describe() for a in actions]
    try:
        for action in actions:
            runner.run(action)
    except ExecutionError as e:
        logger.error("Step '%s' failed: %s", step.name, e)
        return _failed(step, str(e), "execution", start, before=before, actions=described)

    if runner.dry_run:
        return Outcome(
            step=step.name,
            status=OutcomeStatus.APPLIED,
            before=before,
            actions=described,
            dry_run=True,
            duration_ms=(time.monotonic() - start) * 1000,
        )

    try:
        after = step.probe()
    except ProbeError as e:
        logger.error("Step '%s' re-probe failed: %s", step.name, e)
        return _failed(step, str(e), "probe", start, before=before, actions=described)

    if not step.check(after):
        error = PostconditionError(step.name, after.describe())
        logger.error("%s", error)
        return _failed(
            step, str(error), "postcondition", start,
            before=before, after=after, actions=described,
        )

    logger.info("Step '%s' applied (%s -> %s)", step.name, before.describe(), after.describe())
    return Outcome(
        step=step.name,
        status=OutcomeStatus.APPLIED,
        before=before,
        after=after,
        actions=described,
        duration_ms=(time.monotonic() - start) * 1000,
    )
