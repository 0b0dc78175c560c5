"""
Error taxonomy for the provisioning engine.

- ``ProbeError`` -- state could not be determined (I/O level, e.g. permission
  denied). "Not found" is never an error: probes report it as ``ABSENT``.
- ``ExecutionError`` -- an action handed to the command runner failed.
- ``PostconditionError`` -- an action succeeded but the step's check still
  does not hold on re-probe.
- ``ConfigError`` -- configuration is missing or invalid; raised before any
  plan runs.
- ``PlanDefinitionError`` -- a plan or step was declared inconsistently.
"""

from __future__ import annotations

from typing import Optional, Sequence


class LemperError(Exception):
    """Base class for all provisioning errors."""


class ProbeError(LemperError):
    """Raised when a probe cannot determine the state of its target."""

    def __init__(self, target: str, cause: str) -> None:
        self.target = target
        self.cause = cause
        super().__init__(f"Unable to probe '{target}': {cause}")


class ExecutionError(LemperError):
    """Raised when an action fails to execute."""

    def __init__(
        self,
        command: str,
        cause: str,
        returncode: Optional[int] = None,
        output: Optional[str] = None,
    ) -> None:
        self.command = command
        self.cause = cause
        self.returncode = returncode
        self.output = output
        super().__init__(f"Failure running '{command}': {cause}")


class PostconditionError(LemperError):
    """Raised when a step's post-condition does not hold after apply."""

    def __init__(self, step: str, state: str) -> None:
        self.step = step
        self.state = state
        super().__init__(
            f"Step '{step}' postcondition not met (observed state: {state})"
        )


class ConfigError(LemperError):
    """Raised when configuration is missing or invalid."""

    def __init__(self, message: str, fields: Sequence[str] = ()) -> None:
        self.fields = list(fields)
        super().__init__(message)


class PlanDefinitionError(LemperError, ValueError):
    """Raised when a plan or step is declared inconsistently."""
