"""
Idempotent provisioning-step engine.

Describe a desired change as a ``Step`` (probe + check + actions), group
steps into a ``Plan`` with a failure policy, run it through a
``CommandRunner`` (which alone knows about dry-run), and summarise the
outcomes with the reporter.

Public API::

    from lemper.engine import (
        # Context
        ExecutionContext, InstallerOptions, OSRelease,
        # Actions and runner
        Command, WriteFile, PatchLine, command, CommandRunner,
        # State
        StateKind, StateSnapshot,
        # Steps and plans
        Step, Outcome, OutcomeStatus, execute_step,
        Plan, PlanResult, FailurePolicy,
        # Reporting
        Report, summarize, summarize_result, exit_code,
        # Errors
        LemperError, ProbeError, ExecutionError, PostconditionError,
        ConfigError, PlanDefinitionError,
    )
"""

from lemper.engine.actions import Command, PatchLine, WriteFile, command
from lemper.engine.context import ExecutionContext, InstallerOptions, OSRelease
from lemper.engine.errors import (
    ConfigError,
    ExecutionError,
    LemperError,
    PlanDefinitionError,
    PostconditionError,
    ProbeError,
)
from lemper.engine.plan import FailurePolicy, Plan, PlanResult
from lemper.engine.reporter import Report, exit_code, summarize, summarize_result
from lemper.engine.runner import ActionResult, CommandRunner
from lemper.engine.state import StateKind, StateSnapshot
from lemper.engine.step import Outcome, OutcomeStatus, Step, execute_step

__all__ = [
    # Context
    "ExecutionContext",
    "InstallerOptions",
    "OSRelease",
    # Actions and runner
    "Command",
    "WriteFile",
    "PatchLine",
    "command",
    "CommandRunner",
    "ActionResult",
    # State
    "StateKind",
    "StateSnapshot",
    # Steps and plans
    "Step",
    "Outcome",
    "OutcomeStatus",
    "execute_step",
    "Plan",
    "PlanResult",
    "FailurePolicy",
    # Reporting
    "Report",
    "summarize",
    "summarize_result",
    "exit_code",
    # Errors
    "LemperError",
    "ProbeError",
    "ExecutionError",
    "PostconditionError",
    "ConfigError",
    "PlanDefinitionError",
]
