"""State snapshots reported by probes."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class StateKind(str, Enum):
    """Observed state of a probe target."""
    ABSENT = "absent"
    PRESENT = "present"
    RUNNING = "running"
    STOPPED = "stopped"


class StateSnapshot(BaseModel):
    """
    Point-in-time observation of a target.

    ``version`` is only meaningful for ``PRESENT``. ``detail`` carries
    probe-specific evidence (the matched config line, a content digest,
    the list of missing packages) and is not interpreted by the engine.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: StateKind
    target: str = ""
    version: Optional[str] = None
    detail: Optional[str] = Field(default=None)

    @classmethod
    def absent(cls, target: str = "", detail: Optional[str] = None) -> "StateSnapshot":
        return cls(kind=StateKind.ABSENT, target=target, detail=detail)

    @classmethod
    def present(
        cls,
        target: str = "",
        version: Optional[str] = None,
        detail: Optional[str] = None,
    ) -> "StateSnapshot":
        return cls(kind=StateKind.PRESENT, target=target, version=version, detail=detail)

    @classmethod
    def running(cls, target: str = "", detail: Optional[str] = None) -> "StateSnapshot":
        return cls(kind=StateKind.RUNNING, target=target, detail=detail)

    @classmethod
    def stopped(cls, target: str = "", detail: Optional[str] = None) -> "StateSnapshot":
        return cls(kind=StateKind.STOPPED, target=target, detail=detail)

    @property
    def is_absent(self) -> bool:
        return self.kind == StateKind.ABSENT

    @property
    def is_present(self) -> bool:
        return self.kind == StateKind.PRESENT

    @property
    def is_running(self) -> bool:
        return self.kind == StateKind.RUNNING

    def describe(self) -> str:
        """Short human-readable form, e.g. ``present(1.18.0)``."""
        text = self.kind.value
        if self.version:
            text += f"({self.version})"
        return text
