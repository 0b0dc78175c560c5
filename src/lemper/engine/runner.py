"""
Command runner: the only component allowed to mutate the host.

Dry-run branching lives here and nowhere else. In dry-run mode every
action is logged as ``would run ...`` and reported as successful without
touching the system; steps and plans never need to know which mode is
active.

The runner never retries. Any failure (nonzero exit, missing program,
OS error, timeout) is raised as ``ExecutionError`` and the caller decides
whether it is fatal.

Usage::

    from lemper.engine.actions import command
    from lemper.engine.runner import CommandRunner

    runner = CommandRunner(dry_run=False, timeout=600)
    runner.run(command("apt-get", "install", "-y", "nginx"))
"""

from __future__ import annotations

import logging
import os
import re
import subprocess
import tempfile
import time
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, ConfigDict

from lemper.engine.actions import Action, Command, PatchLine, WriteFile
from lemper.engine.errors import ExecutionError

logger = logging.getLogger(__name__)

# Keep captured output in errors short enough for a terminal.
_MAX_OUTPUT_CHARS = 2000


class ActionResult(BaseModel):
    """Result of a successfully handled action."""

    model_config = ConfigDict(frozen=True)

    action: str
    dry_run: bool
    returncode: int = 0
    stdout: str = ""
    stderr: str = ""
    duration_ms: float = 0.0


def _tail(text: Optional[str]) -> str:
    if not text:
        return ""
    return text[-_MAX_OUTPUT_CHARS:]


class CommandRunner:
    """Executes actions, or logs them under dry-run."""

    def __init__(self, dry_run: bool = True, timeout: Optional[float] = None) -> None:
        """
        Args:
            dry_run: Log actions instead of performing them.
            timeout: Upper bound in seconds for each external process.
                ``None`` waits indefinitely.
        """
        self.dry_run = dry_run
        self.timeout = timeout
        self._history: List[Action] = []

    @property
    def history(self) -> List[Action]:
        """Every action handed to the runner, in order."""
        return list(self._history)

    def run(self, action: Action) -> ActionResult:
        """Perform ``action``; raise ``ExecutionError`` on any failure."""
        self._history.append(action)
        description = action.describe()

        if self.dry_run:
            logger.info("would run %s", description)
            return ActionResult(action=description, dry_run=True)

        logger.info("Executing: %s", description)
        start = time.monotonic()
        if isinstance(action, Command):
            result = self._run_command(action)
        elif isinstance(action, WriteFile):
            self._write_file(action)
            result = None
        elif isinstance(action, PatchLine):
            self._patch_line(action)
            result = None
        else:
            raise TypeError(f"Unsupported action type: {type(action).__name__}")
        duration_ms = (time.monotonic() - start) * 1000

        logger.debug("Completed in %.1fms: %s", duration_ms, description)
        if result is None:
            return ActionResult(action=description, dry_run=False, duration_ms=duration_ms)
        return ActionResult(
            action=description,
            dry_run=False,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
            duration_ms=duration_ms,
        )

    # ------------------------------------------------------------------
    # Performers
    # ------------------------------------------------------------------

    def _run_command(self, action: Command) -> subprocess.CompletedProcess:
        description = action.describe()
        env = None
        if action.env:
            env = {**os.environ, **action.env}
        try:
            result = subprocess.run(
                list(action.argv),
                input=action.input,
                capture_output=True,
                text=True,
                timeout=self.timeout,
                env=env,
            )
        except FileNotFoundError:
            raise ExecutionError(description, f"command not found: {action.argv[0]}")
        except subprocess.TimeoutExpired:
            raise ExecutionError(description, f"timed out after {self.timeout}s")
        except OSError as e:
            raise ExecutionError(description, str(e))

        if result.returncode != 0:
            stderr = _tail(result.stderr).strip()
            cause = f"exit status {result.returncode}"
            if stderr:
                cause += f": {stderr}"
            raise ExecutionError(
                description,
                cause,
                returncode=result.returncode,
                output=_tail(result.stdout),
            )
        return result

    def _write_file(self, action: WriteFile) -> None:
        path = Path(action.path)
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            if action.append:
                with open(path, "a", encoding="utf-8") as f:
                    f.write(action.content)
            else:
                _atomic_write(path, action.content)
            if action.mode is not None:
                os.chmod(path, action.mode)
        except OSError as e:
            raise ExecutionError(action.describe(), str(e))

    def _patch_line(self, action: PatchLine) -> None:
        path = Path(action.path)
        try:
            text = path.read_text(encoding="utf-8") if path.exists() else ""
            _atomic_write(path, patch_or_append(text, action.pattern, action.line, action.anchor))
        except OSError as e:
            raise ExecutionError(action.describe(), str(e))
        except re.error as e:
            raise ExecutionError(action.describe(), f"invalid pattern: {e}")


def patch_or_append(text: str, pattern: str, line: str, anchor: Optional[str] = None) -> str:
    """
    Return ``text`` with ``line`` set.

    Every line matching ``pattern`` is replaced. If none match, ``line``
    goes after the first line matching ``anchor``; failing that, at the
    end of the text.
    """
    lines = text.splitlines()
    regex = re.compile(pattern)
    replaced = False
    for i, current in enumerate(lines):
        if regex.search(current):
            lines[i] = line
            replaced = True

    if not replaced:
        position = None
        if anchor:
            anchor_re = re.compile(anchor)
            for i, current in enumerate(lines):
                if anchor_re.search(current):
                    position = i + 1
                    break
        if position is None:
            lines.append(line)
        else:
            lines.insert(position, line)

    return "\n".join(lines) + "\n"


def _atomic_write(path: Path, content: str) -> None:
    """Write via temp file + rename so readers never see a partial file."""
    path.parent.mkdir(parents=True, exist_ok=True)
    mode = None
    if path.exists():
        mode = path.stat().st_mode & 0o7777
    fd, temp_path = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}-", suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        if mode is not None:
            os.chmod(temp_path, mode)
        os.replace(temp_path, path)
    except Exception:
        if os.path.exists(temp_path):
            os.unlink(temp_path)
        raise
