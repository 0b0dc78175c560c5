"""
Plans: ordered steps run under a declared failure policy.

Two policies:

- **fail_fast** -- the first FAILED outcome stops the plan; remaining steps
  are never probed and are listed in ``PlanResult.not_run``.
- **continue** -- every step runs regardless of earlier failures; all
  failures are reported at the end.

Independently of the policy, a step whose ``requires`` names a step that
did not succeed is not executed and is reported FAILED with
``error_kind="dependency"``. A step listing earlier steps in
``triggered_by`` is forced to apply when any of them was APPLIED in the
same run.

Plans are not transactional: applied steps are never rolled back.

Usage::

    plan = Plan("nginx-install", steps, policy=FailurePolicy.FAIL_FAST)
    result = plan.run(ctx, CommandRunner(dry_run=ctx.dry_run))
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from lemper.engine.context import ExecutionContext
from lemper.engine.errors import PlanDefinitionError
from lemper.engine.otel import plan_span
from lemper.engine.runner import CommandRunner
from lemper.engine.step import Outcome, OutcomeStatus, Step, execute_step

logger = logging.getLogger(__name__)


class FailurePolicy(str, Enum):
    """What a plan does after a step fails."""
    FAIL_FAST = "fail_fast"
    CONTINUE = "continue"


class PlanResult(BaseModel):
    """Ordered outcomes of a single plan run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    plan: str
    policy: FailurePolicy
    dry_run: bool
    outcomes: List[Outcome] = Field(default_factory=list)
    aborted: bool = False
    not_run: List[str] = Field(default_factory=list)

    @property
    def failed(self) -> List[Outcome]:
        return [o for o in self.outcomes if o.failed]


class Plan:
    """An ordered, validated sequence of steps."""

    def __init__(
        self,
        name: str,
        steps: Sequence[Step],
        policy: FailurePolicy | str = FailurePolicy.FAIL_FAST,
    ) -> None:
        self.name = name
        self.steps: List[Step] = list(steps)
        self.policy = FailurePolicy(policy) if isinstance(policy, str) else policy
        self._validate()

    def _validate(self) -> None:
        seen: set[str] = set()
        for step in self.steps:
            if step.name in seen:
                raise PlanDefinitionError(
                    f"Plan '{self.name}': duplicate step name '{step.name}'"
                )
            for dep in step.requires:
                if dep not in seen:
                    raise PlanDefinitionError(
                        f"Plan '{self.name}': step '{step.name}' requires '{dep}', "
                        f"which is not declared before it"
                    )
            for trigger in step.triggered_by:
                if trigger not in seen:
                    raise PlanDefinitionError(
                        f"Plan '{self.name}': step '{step.name}' is triggered by "
                        f"'{trigger}', which is not declared before it"
                    )
            seen.add(step.name)

    @property
    def step_names(self) -> List[str]:
        return [s.name for s in self.steps]

    def with_policy(self, policy: FailurePolicy | str) -> "Plan":
        """Same steps under a different failure policy."""
        return Plan(self.name, self.steps, policy)

    def run(
        self,
        ctx: ExecutionContext,
        runner: CommandRunner,
        on_outcome: Optional[Callable[[Outcome], None]] = None,
    ) -> PlanResult:
        """Execute every step in declared order under this plan's policy."""
        outcomes: List[Outcome] = []
        statuses: Dict[str, OutcomeStatus] = {}
        not_run: List[str] = []
        aborted = False

        logger.info(
            "Running plan '%s' (%d steps, policy=%s, dry_run=%s)",
            self.name, len(self.steps), self.policy.value, runner.dry_run,
        )

        with plan_span(self.name, self.policy.value, runner.dry_run):
            for step in self.steps:
                if aborted:
                    not_run.append(step.name)
                    continue

                blocked = [
                    dep for dep in step.requires
                    if statuses.get(dep, OutcomeStatus.FAILED) == OutcomeStatus.FAILED
                ]
                if blocked:
                    outcome = Outcome(
                        step=step.name,
                        status=OutcomeStatus.FAILED,
                        reason=f"dependency not satisfied: {', '.join(blocked)}",
                        error_kind="dependency",
                        dry_run=runner.dry_run,
                    )
                    logger.warning("Step '%s' not run: %s", step.name, outcome.reason)
                else:
                    force = any(
                        statuses.get(name) == OutcomeStatus.APPLIED
                        for name in step.triggered_by
                    )
                    outcome = execute_step(step, ctx, runner, force=force)

                outcomes.append(outcome)
                statuses[step.name] = outcome.status
                if on_outcome is not None:
                    on_outcome(outcome)

                if outcome.failed and self.policy == FailurePolicy.FAIL_FAST:
                    logger.error(
                        "Plan '%s' aborted at step '%s': %s",
                        self.name, step.name, outcome.reason,
                    )
                    aborted = True

        return PlanResult(
            plan=self.name,
            policy=self.policy,
            dry_run=runner.dry_run,
            outcomes=outcomes,
            aborted=aborted,
            not_run=not_run,
        )

    def __repr__(self) -> str:
        return f"Plan({self.name!r}, steps={len(self.steps)}, policy={self.policy.value})"
