"""
Basic server hardening: a sudo account, a non-default SSH port, optional
key-only SSH login and a ufw firewall that only opens the ports the
stack needs.
"""

from __future__ import annotations

import re
from typing import List

from lemper.engine.actions import command
from lemper.engine.context import ExecutionContext
from lemper.engine.errors import ConfigError
from lemper.engine.plan import FailurePolicy, Plan
from lemper.engine.probes import probe_command_output
from lemper.engine.step import Step
from lemper.primitives import (
    ensure_config_line,
    ensure_directory,
    ensure_line_in_file,
    ensure_packages,
    ensure_user,
    shell_step,
)

SSHD_CONFIG = "/etc/ssh/sshd_config"

# Ports opened besides SSH: HTTP, HTTPS, FTP (+ passive range), mail.
UFW_ALLOWED = (
    "80/tcp",
    "443/tcp",
    "21/tcp",
    "20/tcp",
    "45000:45099/tcp",
    "25/tcp",
    "465/tcp",
    "587/tcp",
    "143/tcp",
    "993/tcp",
)


def _account_steps(username: str) -> List[Step]:
    home = f"/home/{username}"
    return [
        ensure_user(username, home=home, groups=("sudo",), name=f"account:{username}"),
        ensure_directory(
            f"{home}/webapps",
            owner=f"{username}:{username}",
            name=f"account-webapps:{username}",
            requires=(f"account:{username}",),
        ),
    ]


def _ssh_steps(ctx: ExecutionContext) -> List[Step]:
    options = ctx.options
    if options.ssh_port is None:
        raise ConfigError("An SSH port is required to secure the server.", fields=("ssh_port",))

    settings = {
        "Port": str(options.ssh_port),
        "ClientAliveInterval": "600",
        "ClientAliveCountMax": "3",
    }
    steps: List[Step] = [
        ensure_config_line(SSHD_CONFIG, key, value, name=f"sshd:{key}")
        for key, value in settings.items()
    ]

    if options.ssh_passwordless:
        if not options.ssh_public_key:
            raise ConfigError(
                "Passwordless SSH needs a public key.", fields=("ssh_public_key",)
            )
        ssh_dir = f"/home/{options.username}/.ssh"
        steps.append(
            ensure_directory(
                ssh_dir,
                owner=f"{options.username}:{options.username}",
                mode="700",
                name="ssh-dir",
                requires=(f"account:{options.username}",),
            )
        )
        steps.append(
            ensure_line_in_file(
                f"{ssh_dir}/authorized_keys",
                options.ssh_public_key.strip(),
                mode=0o600,
                name="ssh-authorized-key",
                requires=("ssh-dir",),
            )
        )
        for key in ("PermitRootLogin", "PasswordAuthentication"):
            steps.append(
                ensure_config_line(
                    SSHD_CONFIG, key, "no",
                    name=f"sshd:{key}", requires=("ssh-authorized-key",),
                )
            )

    # Restart when the port is not open yet or any sshd setting changed.
    config_steps = tuple(s.name for s in steps if s.name.startswith("sshd:"))
    steps.append(
        Step(
            name="sshd-restarted",
            probe=lambda: probe_command_output(["ss", "-tln"], rf":{options.ssh_port}\b"),
            check=lambda s: s.is_present,
            apply=lambda snapshot, ctx: [
                command("sshd", "-t"),
                command("systemctl", "restart", "ssh"),
            ],
            requires=("sshd:Port",),
            description=f"sshd listening on port {options.ssh_port}",
            triggered_by=config_steps,
        )
    )
    return steps


def _ufw_rule_step(rule: str, requires: tuple) -> Step:
    pattern = rf"^{re.escape(rule)}\s+ALLOW"
    return Step(
        name=f"ufw-allow:{rule}",
        probe=lambda: probe_command_output(["ufw", "status"], pattern),
        check=lambda s: s.is_present,
        apply=lambda snapshot, ctx: [command("ufw", "allow", rule)],
        requires=requires,
        description=f"ufw allows {rule}",
    )


def _ufw_steps(ssh_port: int) -> List[Step]:
    steps: List[Step] = [
        ensure_packages(["ufw"], name="ufw-package"),
        Step(
            name="ufw-defaults",
            probe=lambda: probe_command_output(
                ["ufw", "status", "verbose"],
                r"^Default: deny \(incoming\), allow \(outgoing\)",
            ),
            check=lambda s: s.is_present,
            apply=lambda snapshot, ctx: [
                command("ufw", "default", "deny", "incoming"),
                command("ufw", "default", "allow", "outgoing"),
            ],
            requires=("ufw-package",),
            description="ufw denies incoming and allows outgoing by default",
        ),
    ]
    for rule in (f"{ssh_port}/tcp", *UFW_ALLOWED):
        steps.append(_ufw_rule_step(rule, ("ufw-package",)))
    steps.append(
        shell_step(
            name="ufw-enabled",
            probe=lambda: probe_command_output(["ufw", "status"], r"^Status: active"),
            check=lambda s: s.is_present,
            script="ufw --force enable",
            requires=(f"ufw-allow:{ssh_port}/tcp",),
            description="ufw firewall is active",
        )
    )
    return steps


def install_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.FAIL_FAST) -> Plan:
    steps: List[Step] = _account_steps(ctx.options.username)
    steps.extend(_ssh_steps(ctx))
    if ctx.options.firewall_engine == "ufw":
        steps.extend(_ufw_steps(ctx.options.ssh_port))
    return Plan("secure-server", steps, policy)


def remove_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.CONTINUE) -> Plan:
    steps: List[Step] = []
    if ctx.options.firewall_engine == "ufw":
        steps.append(
            Step(
                name="ufw-disabled",
                probe=lambda: probe_command_output(["ufw", "status"], r"^Status: active"),
                check=lambda s: s.is_absent,
                apply=lambda snapshot, ctx: [command("ufw", "disable")],
                description="ufw firewall is inactive",
            )
        )
    return Plan("secure-server-remove", steps, policy)
