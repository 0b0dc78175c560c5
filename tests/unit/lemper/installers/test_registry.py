"""Tests for the installer registry and the cleanup plan."""

from __future__ import annotations

from unittest.mock import MagicMock, patch

import pytest

from lemper.engine.errors import ConfigError
from lemper.engine.plan import FailurePolicy
from lemper.engine.step import OutcomeStatus, execute_step
from lemper.installers import INSTALLERS, build_plan, cleanup, get_installer, installer_names


class TestRegistry:
    def test_names(self):
        assert installer_names() == ["nginx", "php", "secure", "cleanup", "phalcon", "swap"]

    def test_unknown_installer(self):
        with pytest.raises(ConfigError, match="Unknown installer 'mariadb'"):
            get_installer("mariadb")

    def test_build_remove_plan(self, dry_ctx):
        plan = build_plan("php", dry_ctx, remove=True)
        assert plan.name == "php7.4-remove"

    def test_policy_override(self, dry_ctx):
        plan = build_plan("cleanup", dry_ctx, policy="fail_fast")
        assert plan.policy == FailurePolicy.FAIL_FAST

    def test_cleanup_has_no_remove(self, dry_ctx):
        assert INSTALLERS["cleanup"].remove is None
        with pytest.raises(ConfigError, match="no remove plan"):
            build_plan("cleanup", dry_ctx, remove=True)


class TestCleanupPlan:
    def test_steps(self, dry_ctx):
        plan = cleanup.install_plan(dry_ctx)

        assert plan.policy == FailurePolicy.CONTINUE
        assert plan.step_names == [
            "dpkg-consistent", "apache-stopped", "apache-purged", "apt-autoremoved",
        ]

    def test_auto_remove_drops_account(self, make_ctx):
        plan = cleanup.install_plan(make_ctx(auto_remove=True, username="deploy"))
        assert "account-removed:deploy" in plan.step_names

    def test_broken_packages_trigger_fix(self, dry_ctx, dry_runner):
        """dpkg --audit exits non-zero with a report when packages are broken."""
        step = cleanup.install_plan(dry_ctx).steps[0]
        audit = MagicMock(returncode=1, stdout="The following packages are only half configured", stderr="")

        with patch("lemper.engine.probes.subprocess.run", return_value=audit):
            outcome = execute_step(step, dry_ctx, dry_runner)

        assert outcome.status == OutcomeStatus.APPLIED
        assert outcome.actions == ["apt-get -qq --fix-broken install -y"]

    def test_clean_host_skips_fix(self, dry_ctx, dry_runner):
        step = cleanup.install_plan(dry_ctx).steps[0]
        audit = MagicMock(returncode=0, stdout="", stderr="")

        with patch("lemper.engine.probes.subprocess.run", return_value=audit):
            outcome = execute_step(step, dry_ctx, dry_runner)

        assert outcome.status == OutcomeStatus.SKIPPED
