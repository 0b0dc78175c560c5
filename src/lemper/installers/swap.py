"""
Swap file install / remove plans.

The swap size follows the RAM size: twice the RAM up to 2 GiB, equal to
it up to 8 GiB, and capped at 8 GiB above that. Swappiness is lowered to
10 for server workloads.
"""

from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import List

from lemper.engine.actions import PatchLine, command
from lemper.engine.context import ExecutionContext
from lemper.engine.errors import ProbeError
from lemper.engine.plan import FailurePolicy, Plan
from lemper.engine.probes import probe_command_output, probe_line_in_file, probe_path
from lemper.engine.step import Step
from lemper.primitives import ensure_config_line, ensure_line_in_file, ensure_path_absent

logger = logging.getLogger(__name__)

SWAP_FILE = "/swapfile"
FSTAB = "/etc/fstab"
SYSCTL_CONF = "/etc/sysctl.conf"
MEMINFO = "/proc/meminfo"
FSTAB_ENTRY = f"{SWAP_FILE} swap swap defaults 0 0"
SWAPPINESS = "10"
MAX_SWAP_MB = 8192


def swap_size_mb(ram_mb: int) -> int:
    if ram_mb <= 2048:
        return ram_mb * 2
    if ram_mb <= MAX_SWAP_MB:
        return ram_mb
    return MAX_SWAP_MB


def memory_total_mb(meminfo: str = MEMINFO) -> int:
    """Physical memory in MiB, from ``MemTotal`` in /proc/meminfo."""
    try:
        text = Path(meminfo).read_text(encoding="utf-8")
    except OSError as e:
        raise ProbeError(meminfo, str(e))
    match = re.search(r"^MemTotal:\s+(\d+)\s*kB", text, re.MULTILINE)
    if match is None:
        raise ProbeError(meminfo, "no MemTotal entry")
    return int(match.group(1)) // 1024


def _swap_active() -> Step:
    return Step(
        name="swap-active",
        probe=lambda: probe_command_output(
            ["swapon", "--show=NAME", "--noheadings"], rf"^{re.escape(SWAP_FILE)}$"
        ),
        check=lambda s: s.is_present,
        apply=lambda snapshot, ctx: [command("swapon", SWAP_FILE)],
        requires=("swap-file",),
        description=f"{SWAP_FILE} is in use",
    )


def install_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.FAIL_FAST) -> Plan:
    size = swap_size_mb(memory_total_mb())
    logger.debug("Swap size for this host: %dMiB", size)

    steps: List[Step] = [
        Step(
            name="swap-file",
            probe=lambda: probe_path(SWAP_FILE, kind="file"),
            check=lambda s: s.is_present,
            apply=lambda snapshot, ctx: [
                command("fallocate", "-l", f"{size}M", SWAP_FILE),
                command("chmod", "600", SWAP_FILE),
                command("chown", "root:root", SWAP_FILE),
                command("mkswap", SWAP_FILE),
            ],
            description=f"{size}MiB swap file at {SWAP_FILE}",
        ),
        _swap_active(),
        ensure_line_in_file(FSTAB, FSTAB_ENTRY, name="swap-fstab", requires=("swap-file",)),
        Step(
            name="swap-swappiness",
            probe=lambda: probe_command_output(
                ["sysctl", "-n", "vm.swappiness"], rf"^{SWAPPINESS}$"
            ),
            check=lambda s: s.is_present,
            apply=lambda snapshot, ctx: [command("sysctl", f"vm.swappiness={SWAPPINESS}")],
            description=f"vm.swappiness is {SWAPPINESS}",
        ),
        ensure_config_line(
            SYSCTL_CONF, "vm.swappiness", SWAPPINESS,
            separator="=", name="swap-swappiness-persisted",
        ),
    ]
    return Plan("swap-install", steps, policy)


def remove_plan(ctx: ExecutionContext, policy: FailurePolicy = FailurePolicy.CONTINUE) -> Plan:
    steps: List[Step] = [
        Step(
            name="swap-inactive",
            probe=lambda: probe_command_output(
                ["swapon", "--show=NAME", "--noheadings"], rf"^{re.escape(SWAP_FILE)}$"
            ),
            check=lambda s: s.is_absent,
            apply=lambda snapshot, ctx: [command("swapoff", SWAP_FILE)],
            description=f"{SWAP_FILE} is not in use",
        ),
        Step(
            name="swap-fstab-disabled",
            probe=lambda: probe_line_in_file(FSTAB, FSTAB_ENTRY),
            check=lambda s: s.is_absent,
            apply=lambda snapshot, ctx: [
                PatchLine(
                    path=FSTAB,
                    pattern=rf"^\s*{re.escape(SWAP_FILE)}\s",
                    line=f"#{FSTAB_ENTRY}",
                )
            ],
            description=f"{FSTAB} no longer mounts {SWAP_FILE}",
        ),
        ensure_path_absent(SWAP_FILE, name="swap-file-removed", requires=("swap-inactive",)),
    ]
    return Plan("swap-remove", steps, policy)
