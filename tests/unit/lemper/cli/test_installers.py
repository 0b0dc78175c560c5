"""Tests for the lemper installer commands."""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

import pytest
from click.testing import CliRunner

from lemper.cli import main
from lemper.engine.context import OSRelease
from lemper.engine.plan import FailurePolicy, Plan
from lemper.engine.runner import CommandRunner


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def host(focal):
    """A bare Ubuntu host: supported OS, nothing installed, not root."""
    absent = MagicMock(returncode=1, stdout="", stderr="")
    with patch("lemper.resolve.detect_os_release", return_value=focal), \
         patch("lemper.resolve.running_as_root", return_value=False) as as_root, \
         patch("lemper.cli.installers.configure_logging"), \
         patch("lemper.installers.nginx.module_available", return_value=False), \
         patch("lemper.engine.probes.subprocess.run", return_value=absent), \
         patch.object(CommandRunner, "_run_command") as runner_run:
        yield MagicMock(as_root=as_root, runner_run=runner_run)


def _plan_with(*targets, policy=FailurePolicy.FAIL_FAST):
    return Plan("fake", [t.step() for t in targets], policy)


# ---------------------------------------------------------------------------
# Dry runs
# ---------------------------------------------------------------------------


class TestDryRun:
    def test_nginx_dry_run_by_default(self, runner, host):
        """Without --execute nothing is executed and the exit code is 0."""
        result = runner.invoke(main, ["nginx", "-y"])

        assert result.exit_code == 0, result.output
        assert "(dry run)" in result.output
        assert "[WOULD APPLY] nginx-package" in result.output
        assert "$ apt-get install -y nginx" in result.output
        assert "Re-run with --execute" in result.output
        host.runner_run.assert_not_called()

    def test_json_format(self, runner, host):
        result = runner.invoke(main, ["php", "-y", "--php-version", "8.1", "--format", "json"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.output)
        assert data["plan"] == "php8.1-install"
        assert data["dry_run"] is True
        assert data["failed"] == 0

    def test_php_loader_flag(self, runner, host):
        result = runner.invoke(
            main, ["php", "-y", "--php-version", "8.1", "--loader", "ioncube", "--format", "json"]
        )

        assert result.exit_code == 0, result.output
        steps = [s["step"] for s in json.loads(result.output)["steps"]]
        assert "php-loader:ioncube" in steps
        assert "php-loader:sourceguardian" not in steps

    def test_swap_dry_run(self, runner, host, tmp_path):
        swap_file = tmp_path / "swapfile"
        with patch("lemper.installers.swap.memory_total_mb", return_value=1024), \
             patch("lemper.installers.swap.SWAP_FILE", str(swap_file)):
            result = runner.invoke(main, ["swap", "-y"])

        assert result.exit_code == 0, result.output
        assert f"$ fallocate -l 2048M {swap_file}" in result.output

    def test_dry_run_does_not_need_root(self, runner, host):
        result = runner.invoke(main, ["secure", "-y", "--ssh-port", "2269"])

        assert result.exit_code == 0, result.output
        assert "ufw-allow:2269/tcp" in result.output

    def test_env_dry_run_false_respected(self, runner, host, monkeypatch):
        """LEMPER_DRY_RUN=false is a live run, which requires root."""
        monkeypatch.setenv("LEMPER_DRY_RUN", "false")

        result = runner.invoke(main, ["nginx", "-y"])

        assert result.exit_code == 1
        assert "only be used by root" in result.output


# ---------------------------------------------------------------------------
# Gating and errors
# ---------------------------------------------------------------------------


class TestGating:
    def test_execute_requires_root(self, runner, host):
        result = runner.invoke(main, ["nginx", "-y", "--execute"])

        assert result.exit_code == 1
        assert "This command can only be used by root." in result.output
        host.runner_run.assert_not_called()

    def test_unsupported_os(self, runner, host):
        with patch("lemper.resolve.detect_os_release", return_value=OSRelease(distrib_name="arch")):
            result = runner.invoke(main, ["nginx", "-y"])

        assert result.exit_code == 1
        assert "isn't supported" in result.output

    def test_unsupported_os_allowed(self, runner, host, monkeypatch):
        monkeypatch.setenv("LEMPER_ALLOW_UNSUPPORTED_OS", "true")

        with patch("lemper.resolve.detect_os_release", return_value=OSRelease(distrib_name="arch")):
            result = runner.invoke(main, ["nginx", "-y"])

        assert result.exit_code == 0, result.output

    def test_invalid_config_value(self, runner, host):
        result = runner.invoke(main, ["php", "-y", "--php-version", "latest"])

        assert result.exit_code == 1
        assert "Invalid configuration" in result.output

    def test_cleanup_cannot_be_removed(self, runner, host):
        result = runner.invoke(main, ["cleanup", "-y", "--remove"])

        assert result.exit_code == 1
        assert "no remove plan" in result.output

    def test_config_file(self, runner, host, tmp_path):
        config = tmp_path / "lemper.yaml"
        config.write_text("php_version: '8.2'\nauto_install: true\n")

        result = runner.invoke(main, ["php", "--config", str(config), "--format", "json"])

        assert result.exit_code == 0, result.output
        assert json.loads(result.output)["plan"] == "php8.2-install"


# ---------------------------------------------------------------------------
# Exit codes
# ---------------------------------------------------------------------------


class TestExitCodes:
    def test_failure_exits_one(self, runner, host, fake_target):
        plan = _plan_with(fake_target("ok"), fake_target("bad", probe_error="denied"))

        with patch("lemper.cli.installers.build_plan", return_value=plan):
            result = runner.invoke(main, ["nginx", "-y"])

        assert result.exit_code == 1
        assert "[FAIL] bad" in result.output

    def test_continue_within_max_failures(self, runner, host, fake_target):
        plan = _plan_with(
            fake_target("bad", probe_error="denied"),
            fake_target("ok"),
            policy=FailurePolicy.CONTINUE,
        )

        with patch("lemper.cli.installers.build_plan", return_value=plan):
            result = runner.invoke(main, ["nginx", "-y", "--max-failures", "1"])

        assert result.exit_code == 0, result.output
        assert "Failed: 1" in result.output

    def test_policy_flag_forwarded(self, runner, host, fake_target):
        plan = _plan_with(fake_target("ok"))

        with patch("lemper.cli.installers.build_plan", return_value=plan) as build:
            runner.invoke(main, ["cleanup", "-y", "--policy", "fail_fast"])

        assert build.call_args.kwargs["policy"] == FailurePolicy.FAIL_FAST


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


class TestRemove:
    def test_remove_dry_run(self, runner, host):
        result = runner.invoke(main, ["nginx", "--uninstall", "-y"])

        assert result.exit_code == 0, result.output
        assert "nginx-remove" in result.output

    def test_live_removal_can_be_cancelled(self, runner, host):
        host.as_root.return_value = True

        result = runner.invoke(main, ["php", "--remove", "--execute"], input="n\nn\n")

        assert result.exit_code == 0
        assert "Removal cancelled." in result.output
        host.runner_run.assert_not_called()


class TestList:
    def test_lists_installers(self, runner):
        result = runner.invoke(main, ["list"])

        assert result.exit_code == 0
        for name in ("nginx", "php", "secure", "cleanup", "phalcon", "swap"):
            assert name in result.output
        assert "install only" in result.output
