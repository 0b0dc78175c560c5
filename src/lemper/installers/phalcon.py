"""
Phalcon PHP extension install / remove plans.

The extension is built with PECL against the selected PHP version and
enabled for the FPM and CLI SAPIs. FPM is reloaded when the enablement
changes.
"""

from __future__ import annotations

from typing import List

from lemper.engine.context import ExecutionContext
from lemper.engine.plan import FailurePolicy, Plan
from lemper.engine.probes import probe_command_output
from lemper.engine.step import Step
from lemper.installers import php
from lemper.primitives import (
    ensure_file,
    ensure_packages,
    ensure_path_absent,
    ensure_service_reloaded,
    ensure_service_running,
    ensure_symlink,
    shell_step,
)

# Loads after the psr extension (20-psr.ini).
CONF_PRIORITY = "30"


def build_packages(version: str) -> List[str]:
    return [
        f"php{version}-cli",
        f"php{version}-fpm",
        f"php{version}-dev",
        f"php{version}-psr",
        "php-pear",
        "build-essential",
    ]


def _ini_path(version: str) -> str:
    return f"{php.PHP_ETC_DIR}/{version}/mods-available/phalcon.ini"


def _conf_link(version: str, sapi: str) -> str:
    return f"{php.PHP_ETC_DIR}/{version}/{sapi}/conf.d/{CONF_PRIORITY}-phalcon.ini"


def install_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.FAIL_FAST) -> Plan:
    version = ctx.options.php_version
    ini = _ini_path(version)

    steps: List[Step] = [
        ensure_packages(build_packages(version), name="phalcon-build-deps"),
        shell_step(
            name="phalcon-extension",
            # Loadable from the extension dir, whether or not it is enabled yet.
            probe=lambda: probe_command_output(
                [f"php{version}", "-d", "extension=phalcon.so", "-m"], r"^phalcon$"
            ),
            check=lambda s: s.is_present,
            script=f"printf '\\n' | pecl -d php_suffix={version} install -f phalcon",
            requires=("phalcon-build-deps",),
            description=f"Phalcon built for PHP {version}",
        ),
        ensure_file(
            ini, "extension=phalcon.so\n",
            name="phalcon-ini", requires=("phalcon-extension",),
        ),
    ]
    for sapi in ("fpm", "cli"):
        steps.append(
            ensure_symlink(
                ini, _conf_link(version, sapi),
                name=f"phalcon-{sapi}", requires=("phalcon-ini",),
            )
        )
    steps.append(
        ensure_service_running(
            f"php{version}-fpm", name="php-fpm-running", requires=("phalcon-build-deps",)
        )
    )
    steps.append(php.fpm_reload_step(version, ["phalcon-ini", "phalcon-fpm", "phalcon-cli"]))
    return Plan(f"phalcon-php{version}-install", steps, policy)


def remove_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.CONTINUE) -> Plan:
    version = ctx.options.php_version
    steps: List[Step] = [
        ensure_path_absent(_conf_link(version, "fpm"), name="phalcon-fpm-disabled"),
        ensure_path_absent(_conf_link(version, "cli"), name="phalcon-cli-disabled"),
        ensure_path_absent(_ini_path(version), name="phalcon-ini-removed"),
        ensure_service_reloaded(
            f"php{version}-fpm",
            triggered_by=["phalcon-fpm-disabled"],
            name="php-fpm-reloaded",
        ),
    ]
    return Plan(f"phalcon-php{version}-remove", steps, policy)
