"""
Clean a server up before installing the stack: remove conflicting web
servers, optionally drop the default account, and autoremove leftovers.
"""

from __future__ import annotations

from typing import List

from lemper.engine.actions import Command
from lemper.engine.context import ExecutionContext
from lemper.engine.plan import FailurePolicy, Plan
from lemper.engine.probes import probe_command_output
from lemper.engine.step import Step
from lemper.primitives import (
    APT_ENV,
    ensure_packages_absent,
    ensure_service_stopped,
    ensure_user_absent,
)

APACHE_PACKAGES = ("apache2", "apache2-bin", "apache2-data", "apache2-utils")


def _apt_step(name: str, probe_argv: List[str], pattern: str, argv: tuple, description: str) -> Step:
    return Step(
        name=name,
        probe=lambda: probe_command_output(probe_argv, pattern, require_success=False),
        check=lambda s: s.is_absent,
        apply=lambda snapshot, ctx: [Command(argv=argv, env=APT_ENV)],
        description=description,
    )


def install_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.CONTINUE) -> Plan:
    steps: List[Step] = [
        _apt_step(
            "dpkg-consistent",
            ["dpkg", "--audit"],
            r"\S",
            ("apt-get", "-qq", "--fix-broken", "install", "-y"),
            "No broken or half-installed packages",
        ),
        ensure_service_stopped("apache2", name="apache-stopped"),
        ensure_packages_absent(APACHE_PACKAGES, name="apache-purged", requires=("apache-stopped",)),
    ]
    if ctx.options.auto_remove:
        steps.append(ensure_user_absent(ctx.options.username, name=f"account-removed:{ctx.options.username}"))
    steps.append(
        _apt_step(
            "apt-autoremoved",
            ["apt-get", "-s", "autoremove"],
            r"^Remv ",
            ("apt-get", "-qq", "autoremove", "-y"),
            "No unused packages left installed",
        )
    )
    return Plan("cleanup-server", steps, policy)
