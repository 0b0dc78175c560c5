"""
Pytest configuration and fixtures for LEMPer tests.
"""

from __future__ import annotations

import os
from typing import Callable, Generator, List, Optional
from unittest.mock import MagicMock, patch

import pytest

from lemper.config import reset_config
from lemper.engine.actions import command
from lemper.engine.context import ExecutionContext, InstallerOptions, OSRelease
from lemper.engine.errors import ProbeError
from lemper.engine.runner import CommandRunner
from lemper.engine.state import StateSnapshot
from lemper.engine.step import Step


# ============================================================================
# Environment Fixtures
# ============================================================================


@pytest.fixture(autouse=True)
def clean_lemper_env(monkeypatch, tmp_path) -> Generator[None, None, None]:
    """Isolate every test from LEMPER_* variables and any .env file."""
    for key in list(os.environ):
        if key.startswith("LEMPER_"):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    reset_config()

    yield

    reset_config()


# ============================================================================
# Context Fixtures
# ============================================================================


@pytest.fixture
def focal() -> OSRelease:
    """Ubuntu 20.04 release descriptor."""
    return OSRelease(
        distrib_name="ubuntu",
        release_name="focal",
        version_id="20.04",
        arch="x86_64",
    )


@pytest.fixture
def dry_ctx(focal) -> ExecutionContext:
    return ExecutionContext(dry_run=True, is_root=False, os_release=focal)


@pytest.fixture
def live_ctx(focal) -> ExecutionContext:
    return ExecutionContext(dry_run=False, is_root=True, os_release=focal)


@pytest.fixture
def make_ctx(focal) -> Callable[..., ExecutionContext]:
    """Build a context with custom installer options."""

    def _make(dry_run: bool = True, **options) -> ExecutionContext:
        return ExecutionContext(
            dry_run=dry_run,
            is_root=not dry_run,
            os_release=focal,
            options=InstallerOptions(**options),
        )

    return _make


@pytest.fixture
def dry_runner() -> CommandRunner:
    return CommandRunner(dry_run=True)


@pytest.fixture
def live_runner() -> CommandRunner:
    return CommandRunner(dry_run=False)


# ============================================================================
# Step Fixtures
# ============================================================================


class FakeTarget:
    """
    In-memory stand-in for a piece of host state.

    ``probe`` reports PRESENT once ``satisfied`` is set; ``satisfy`` is
    wired to the live runner through ``apply_satisfies``.
    """

    def __init__(
        self,
        name: str,
        satisfied: bool = False,
        probe_error: Optional[str] = None,
        apply_satisfies: bool = True,
    ) -> None:
        self.name = name
        self.satisfied = satisfied
        self.probe_error = probe_error
        self.apply_satisfies = apply_satisfies
        self.probe_calls = 0
        self.apply_calls = 0

    def probe(self) -> StateSnapshot:
        self.probe_calls += 1
        if self.probe_error:
            raise ProbeError(self.name, self.probe_error)
        if self.satisfied:
            return StateSnapshot.present(self.name)
        return StateSnapshot.absent(self.name)

    def apply(self, snapshot: StateSnapshot, ctx: ExecutionContext) -> List:
        self.apply_calls += 1
        if self.apply_satisfies and not ctx.dry_run:
            self.satisfied = True
        return [command("touch", f"/tmp/{self.name}")]

    def step(self, requires=()) -> Step:
        return Step(
            name=self.name,
            probe=self.probe,
            check=lambda s: s.is_present,
            apply=self.apply,
            requires=tuple(requires),
        )


@pytest.fixture
def fake_target() -> Callable[..., FakeTarget]:
    return FakeTarget


@pytest.fixture
def ok_subprocess() -> Generator[MagicMock, None, None]:
    """Patch subprocess.run in the runner so every command succeeds."""
    with patch("lemper.engine.runner.subprocess.run") as mock_run:
        mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
        yield mock_run
