"""Tests for the PHP-FPM install / remove plans."""

from __future__ import annotations

import subprocess
from unittest.mock import MagicMock, patch

import pytest

from lemper.engine.actions import PatchLine
from lemper.engine.context import ExecutionContext, InstallerOptions
from lemper.engine.errors import ConfigError
from lemper.engine.plan import Plan
from lemper.engine.runner import CommandRunner
from lemper.engine.state import StateSnapshot
from lemper.engine.step import OutcomeStatus
from lemper.installers import php
from lemper.primitives import ensure_service_running


class TestInstallPlan:
    def test_plan_name_and_order(self, make_ctx):
        plan = php.install_plan(make_ctx(php_version="8.1"))

        assert plan.name == "php8.1-install"
        assert plan.step_names[:4] == ["php-repo-tools", "php-repo", "php-packages", "php-log-dir"]
        assert plan.step_names[-3:] == ["php-fpm-running", "php-fpm-reloaded", "php-composer"]

    def test_ppa_list_file_uses_codename(self, dry_ctx):
        assert php.ppa_list_file("focal") == "/etc/apt/sources.list.d/ondrej-ubuntu-php-focal.list"

    def test_packages_follow_version(self):
        packages = php.php_packages("7.4")
        assert "php7.4-fpm" in packages
        assert "php7.4-opcache" in packages

    def test_fpm_config_lines(self, make_ctx):
        ctx = make_ctx(php_version="7.4")
        plan = php.install_plan(ctx)
        step = next(s for s in plan.steps if s.name == "php-fpm-conf:error_log")

        (action,) = step.apply(StateSnapshot.absent(), ctx)

        assert isinstance(action, PatchLine)
        assert action.path == "/etc/php/7.4/fpm/php-fpm.conf"
        assert action.line == "error_log = /var/log/php/php7.4-fpm.log"

    def test_pool_timezone(self, make_ctx):
        ctx = make_ctx(timezone="Asia/Jakarta")
        plan = php.install_plan(ctx)
        step = next(s for s in plan.steps if s.name == "php-fpm-pool:php_admin_value[date.timezone]")

        (action,) = step.apply(StateSnapshot.absent(), ctx)

        assert action.line == "php_admin_value[date.timezone] = Asia/Jakarta"

    def test_composer_install_actions(self, dry_ctx):
        plan = php.install_plan(dry_ctx)
        composer = plan.steps[-1]

        actions = composer.apply(StateSnapshot.absent(), dry_ctx)

        assert actions[0].argv[0] == "curl"
        assert "--filename=composer" in actions[1].argv


class TestRemovePlan:
    def test_remove(self, dry_ctx):
        plan = php.remove_plan(dry_ctx)
        assert plan.step_names == ["php-fpm-stopped", "php-purged"]

    def test_auto_remove(self, make_ctx):
        plan = php.remove_plan(make_ctx(auto_remove=True))
        assert "php-config-removed" in plan.step_names
        assert "php-composer-removed" in plan.step_names


class TestFpmReload:
    """FPM picks up changed settings in the same run."""

    @pytest.fixture
    def php_etc(self, tmp_path):
        path = tmp_path / "php"
        with patch("lemper.installers.php.PHP_ETC_DIR", str(path)):
            yield path

    @staticmethod
    def _fpm_plan(fake_target):
        fpm = php._fpm_steps("7.4", "UTC")
        return Plan("fpm", [
            fake_target("php-packages", satisfied=True).step(),
            fake_target("php-log-dir", satisfied=True).step(),
            *fpm,
            ensure_service_running("php7.4-fpm", name="php-fpm-running"),
            php.fpm_reload_step("7.4", [s.name for s in fpm]),
        ])

    @staticmethod
    def _run(plan, ctx):
        active = MagicMock(returncode=0, stdout="active\n", stderr="")
        done = subprocess.CompletedProcess([], 0, "", "")
        with patch("lemper.engine.probes.subprocess.run", return_value=active), \
             patch.object(CommandRunner, "_run_command", return_value=done) as run_command:
            result = plan.run(ctx, CommandRunner(dry_run=False))
        return result, [call.args[0].argv for call in run_command.call_args_list]

    def test_running_fpm_reloaded_after_config_change(self, live_ctx, php_etc, fake_target):
        result, commands = self._run(self._fpm_plan(fake_target), live_ctx)

        statuses = {o.step: o.status for o in result.outcomes}
        assert statuses["php-fpm-conf:error_log"] == OutcomeStatus.APPLIED
        assert statuses["php-fpm-running"] == OutcomeStatus.SKIPPED
        assert statuses["php-fpm-reloaded"] == OutcomeStatus.APPLIED
        assert commands == [("php-fpm7.4", "-t"), ("systemctl", "reload", "php7.4-fpm")]
        assert "ping.path = /ping" in (php_etc / "7.4/fpm/pool.d/www.conf").read_text()

    def test_second_run_does_not_reload(self, live_ctx, php_etc, fake_target):
        self._run(self._fpm_plan(fake_target), live_ctx)

        result, commands = self._run(self._fpm_plan(fake_target), live_ctx)

        assert all(o.status == OutcomeStatus.SKIPPED for o in result.outcomes)
        assert commands == []

    def test_install_plan_wires_reload(self, dry_ctx):
        plan = php.install_plan(dry_ctx)
        reload = next(s for s in plan.steps if s.name == "php-fpm-reloaded")

        assert "php-fpm-conf:error_log" in reload.triggered_by
        assert "php-fpm-pool:ping.path" in reload.triggered_by
        assert plan.step_names.index("php-fpm-reloaded") > plan.step_names.index("php-fpm-running")


class TestLoaders:
    def test_no_loaders_by_default(self, dry_ctx):
        assert not [n for n in php.install_plan(dry_ctx).step_names if "loader" in n]

    def test_ioncube_steps(self, make_ctx):
        ctx = make_ctx(php_version="7.4", php_loader="ioncube")

        plan = php.install_plan(ctx)

        assert {
            "php-loader:ioncube",
            "php-loader-ini:ioncube",
            "php-loader-fpm:ioncube",
            "php-loader-cli:ioncube",
        } <= set(plan.step_names)
        ini = next(s for s in plan.steps if s.name == "php-loader-ini:ioncube")
        (action,) = ini.apply(StateSnapshot.absent(), ctx)
        assert action.path == "/etc/php/7.4/mods-available/ioncube.ini"
        assert "zend_extension=/usr/lib/php/loaders/ioncube/ioncube_loader_lin_7.4.so" in action.content
        reload = next(s for s in plan.steps if s.name == "php-fpm-reloaded")
        assert "php-loader-fpm:ioncube" in reload.triggered_by

    def test_all_loaders(self, make_ctx):
        plan = php.install_plan(make_ctx(php_loader="all"))
        assert "php-loader:ioncube" in plan.step_names
        assert "php-loader:sourceguardian" in plan.step_names

    def test_download_matches_architecture(self):
        assert php.loader_archive_url("ioncube", "amd64").endswith("lin_x86-64.tar.gz")
        assert php.loader_archive_url("sourceguardian", "i686").endswith("linux-x86.tar.gz")

    def test_unknown_architecture(self, focal):
        ctx = ExecutionContext(
            os_release=focal.model_copy(update={"arch": "riscv64"}),
            options=InstallerOptions(php_loader="sourceguardian"),
        )

        with pytest.raises(ConfigError, match="riscv64"):
            php.install_plan(ctx)

    def test_auto_remove_deletes_loaders(self, make_ctx):
        plan = php.remove_plan(make_ctx(auto_remove=True))
        assert "php-loader-removed:ioncube" in plan.step_names
