"""
Action descriptors consumed by the command runner.

Actions are plain data: they say *what* should change on the host and
can describe themselves for dry-run output and logs. Only
``lemper.engine.runner.CommandRunner`` performs them.
"""

from __future__ import annotations

import shlex
from typing import Dict, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, Field


class Command(BaseModel):
    """Run an external program."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    argv: Tuple[str, ...]
    input: Optional[str] = None
    env: Optional[Dict[str, str]] = None

    def describe(self) -> str:
        return shlex.join(self.argv)


class WriteFile(BaseModel):
    """Write (or append) text content to a file."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    content: str
    append: bool = False
    mode: Optional[int] = Field(default=None, description="chmod bits, e.g. 0o600")

    def describe(self) -> str:
        verb = "append" if self.append else "write"
        return f"{verb} {len(self.content)} bytes to {self.path}"


class PatchLine(BaseModel):
    """
    Patch-or-append a single config line.

    If a line matching ``pattern`` exists it is replaced by ``line``.
    Otherwise ``line`` is inserted after the first line matching
    ``anchor`` (typically the commented-out default), or appended to
    the end of the file.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    path: str
    pattern: str
    line: str
    anchor: Optional[str] = None

    def describe(self) -> str:
        return f"set '{self.line}' in {self.path}"


Action = Union[Command, WriteFile, PatchLine]


def command(*argv: str, input: Optional[str] = None) -> Command:
    """Shorthand: ``command("apt-get", "install", "-y", "nginx")``."""
    return Command(argv=tuple(argv), input=input)
