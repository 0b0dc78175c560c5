"""Tests for the command runner and the patch-or-append helper."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from lemper.engine.actions import Command, PatchLine, WriteFile, command
from lemper.engine.errors import ExecutionError
from lemper.engine.runner import CommandRunner, patch_or_append


class TestDryRun:
    def test_dry_run_never_spawns_processes(self):
        """Dry-run logs the action and reports success."""
        runner = CommandRunner(dry_run=True)

        with patch("lemper.engine.runner.subprocess.run") as mock_run:
            result = runner.run(command("apt-get", "install", "-y", "nginx"))

        mock_run.assert_not_called()
        assert result.dry_run is True
        assert result.returncode == 0
        assert result.action == "apt-get install -y nginx"

    def test_dry_run_never_writes_files(self, tmp_path):
        runner = CommandRunner(dry_run=True)
        target = tmp_path / "conf"

        runner.run(WriteFile(path=str(target), content="x\n"))
        runner.run(PatchLine(path=str(target), pattern="^x", line="y"))

        assert not target.exists()

    def test_dry_run_logs_would_run(self, caplog):
        runner = CommandRunner(dry_run=True)

        with caplog.at_level("INFO", logger="lemper.engine.runner"):
            runner.run(command("systemctl", "start", "nginx"))

        assert "would run systemctl start nginx" in caplog.text

    def test_history_records_actions(self):
        runner = CommandRunner(dry_run=True)
        first = command("true")
        second = command("false")

        runner.run(first)
        runner.run(second)

        assert runner.history == [first, second]


class TestCommands:
    def test_success_returns_output(self):
        runner = CommandRunner(dry_run=False)
        completed = MagicMock(returncode=0, stdout="ok\n", stderr="")

        with patch("lemper.engine.runner.subprocess.run", return_value=completed) as mock_run:
            result = runner.run(command("echo", "ok"))

        assert result.stdout == "ok\n"
        assert result.dry_run is False
        args, kwargs = mock_run.call_args
        assert args[0] == ["echo", "ok"]
        assert kwargs["capture_output"] is True

    def test_nonzero_exit_raises(self):
        runner = CommandRunner(dry_run=False)
        completed = MagicMock(returncode=100, stdout="", stderr="E: Unable to locate package\n")

        with patch("lemper.engine.runner.subprocess.run", return_value=completed):
            with pytest.raises(ExecutionError) as exc_info:
                runner.run(command("apt-get", "install", "-y", "nope"))

        err = exc_info.value
        assert err.returncode == 100
        assert "exit status 100" in str(err)
        assert "Unable to locate package" in str(err)
        assert err.command == "apt-get install -y nope"

    def test_missing_program_raises(self):
        runner = CommandRunner(dry_run=False)

        with patch("lemper.engine.runner.subprocess.run", side_effect=FileNotFoundError()):
            with pytest.raises(ExecutionError, match="command not found: nosuchtool"):
                runner.run(command("nosuchtool"))

    def test_timeout_raises(self):
        runner = CommandRunner(dry_run=False, timeout=5)
        expired = subprocess.TimeoutExpired(cmd=["sleep", "60"], timeout=5)

        with patch("lemper.engine.runner.subprocess.run", side_effect=expired):
            with pytest.raises(ExecutionError, match="timed out after 5s"):
                runner.run(command("sleep", "60"))

    def test_env_is_merged(self, monkeypatch):
        monkeypatch.setenv("PATH", "/usr/bin")
        runner = CommandRunner(dry_run=False)
        completed = MagicMock(returncode=0, stdout="", stderr="")

        with patch("lemper.engine.runner.subprocess.run", return_value=completed) as mock_run:
            runner.run(Command(argv=("apt-get", "update"), env={"DEBIAN_FRONTEND": "noninteractive"}))

        env = mock_run.call_args.kwargs["env"]
        assert env["DEBIAN_FRONTEND"] == "noninteractive"
        assert env["PATH"] == "/usr/bin"


class TestFileActions:
    def test_write_file_creates_parents_and_mode(self, tmp_path):
        runner = CommandRunner(dry_run=False)
        target = tmp_path / "nested" / "authorized_keys"

        runner.run(WriteFile(path=str(target), content="ssh-rsa AAA\n", mode=0o600))

        assert target.read_text() == "ssh-rsa AAA\n"
        assert target.stat().st_mode & 0o777 == 0o600

    def test_append(self, tmp_path):
        runner = CommandRunner(dry_run=False)
        target = tmp_path / "list"
        target.write_text("one\n")

        runner.run(WriteFile(path=str(target), content="two\n", append=True))

        assert target.read_text() == "one\ntwo\n"

    def test_patch_line_replaces_in_place(self, tmp_path):
        runner = CommandRunner(dry_run=False)
        conf = tmp_path / "sshd_config"
        conf.write_text("Port 22\nUsePAM yes\n")

        runner.run(PatchLine(path=str(conf), pattern=r"^Port\s+", line="Port 2269"))

        assert conf.read_text() == "Port 2269\nUsePAM yes\n"

    def test_patch_line_missing_file_is_created(self, tmp_path):
        runner = CommandRunner(dry_run=False)
        conf = tmp_path / "new.conf"

        runner.run(PatchLine(path=str(conf), pattern=r"^key\s+", line="key value"))

        assert conf.read_text() == "key value\n"


class TestPatchOrAppend:
    def test_replaces_matching_line(self):
        text = "#Port 22\nPort 22\n"
        assert patch_or_append(text, r"^Port\s+", "Port 2269") == "#Port 22\nPort 2269\n"

    def test_inserts_after_anchor(self):
        """With no active line, insert right after the commented default."""
        text = "Include x\n#Port 22\nAddressFamily any\n"

        result = patch_or_append(text, r"^Port\s+", "Port 2269", anchor=r"^#\s*Port(\s|=|$)")

        assert result == "Include x\n#Port 22\nPort 2269\nAddressFamily any\n"

    def test_appends_without_anchor_match(self):
        result = patch_or_append("a\n", r"^Port\s+", "Port 2269", anchor=r"^#Port")
        assert result == "a\nPort 2269\n"

    def test_empty_text(self):
        assert patch_or_append("", r"^k", "k v") == "k v\n"
