"""
Execution context for a provisioning run.

The context is built once at startup (see ``lemper.resolve``) and never
mutated: every field is frozen. Steps and plans receive it explicitly
instead of reading exported environment variables.

OS detection follows ``/etc/os-release`` (plus ``/etc/lsb-release`` when
present). Only Ubuntu and Ubuntu-based Linux Mint releases map to a
supported release codename; everything else is ``unsupported``.
"""

from __future__ import annotations

import logging
import os
import platform
import shlex
from pathlib import Path
from typing import Dict, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from lemper.engine.errors import ConfigError

logger = logging.getLogger(__name__)

UNSUPPORTED = "unsupported"

OS_RELEASE_PATH = Path("/etc/os-release")
LSB_RELEASE_PATH = Path("/etc/lsb-release")

# Release number (or Linux Mint "LM<major>") -> Ubuntu codename.
UBUNTU_RELEASES: Dict[str, str] = {
    "16.04": "xenial",
    "LM18": "xenial",
    "18.04": "bionic",
    "LM19": "bionic",
    "19.04": "disco",
    "20.04": "focal",
    "LM20": "focal",
    "22.04": "jammy",
    "LM21": "jammy",
    "24.04": "noble",
    "LM22": "noble",
}


class OSRelease(BaseModel):
    """Target operating system descriptor."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    distrib_name: str = UNSUPPORTED
    release_name: str = UNSUPPORTED
    version_id: str = ""
    arch: str = ""

    @property
    def supported(self) -> bool:
        return self.release_name != UNSUPPORTED


class InstallerOptions(BaseModel):
    """Typed installer options resolved before any plan runs."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    auto_install: bool = False
    auto_remove: bool = False
    php_version: str = "7.4"
    php_loader: Literal["none", "ioncube", "sourceguardian", "all"] = "none"
    firewall_engine: Literal["ufw", "none"] = "ufw"
    ssh_port: Optional[int] = Field(default=None, ge=1, le=65535)
    nginx_installer: Literal["repo", "mainline"] = "repo"
    ssh_passwordless: bool = False
    ssh_public_key: Optional[str] = None
    timezone: str = "UTC"
    hostname: str = ""
    username: str = "lemper"


class ExecutionContext(BaseModel):
    """Immutable context shared by every step of a plan run."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    dry_run: bool = True
    is_root: bool = False
    os_release: OSRelease = Field(default_factory=OSRelease)
    options: InstallerOptions = Field(default_factory=InstallerOptions)


def _read_key_values(path: Path) -> Dict[str, str]:
    """Parse a shell-style ``KEY=value`` file, ignoring comments."""
    values: Dict[str, str] = {}
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return values
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        values[key.strip()] = " ".join(parts)
    return values


def detect_os_release(
    os_release_path: Path = OS_RELEASE_PATH,
    lsb_release_path: Path = LSB_RELEASE_PATH,
) -> OSRelease:
    """Detect the running distribution and map it to a release codename."""
    arch = platform.machine()
    if not os_release_path.exists():
        return OSRelease(arch=arch)

    values = _read_key_values(os_release_path)
    values.update(_read_key_values(lsb_release_path))

    dist_id = values.get("ID", "").lower()
    id_like = values.get("ID_LIKE", "").lower().split()
    distrib_name = "ubuntu" if "ubuntu" in id_like or dist_id == "ubuntu" else (dist_id or UNSUPPORTED)
    version_id = values.get("VERSION_ID") or values.get("DISTRIB_RELEASE", "")

    release_name = UNSUPPORTED
    if distrib_name == "ubuntu":
        release_key = values.get("DISTRIB_RELEASE") or version_id
        if dist_id == "linuxmint" or values.get("DISTRIB_ID") == "LinuxMint":
            release_key = f"LM{version_id.split('.')[0]}"
        if release_key in UBUNTU_RELEASES:
            release_name = values.get("UBUNTU_CODENAME") or UBUNTU_RELEASES[release_key]

    logger.debug(
        "Detected OS distrib=%s release=%s version=%s arch=%s",
        distrib_name, release_name, version_id, arch,
    )
    return OSRelease(
        distrib_name=distrib_name,
        release_name=release_name,
        version_id=version_id,
        arch=arch,
    )


def running_as_root() -> bool:
    return os.geteuid() == 0


def require_root(ctx: ExecutionContext) -> None:
    """Refuse live runs without root privileges. Dry runs are allowed."""
    if ctx.dry_run:
        return
    if not ctx.is_root:
        raise ConfigError("This command can only be used by root.")


def require_supported_os(ctx: ExecutionContext) -> None:
    """Refuse to run on distributions without a known release mapping."""
    if not ctx.os_release.supported:
        raise ConfigError(
            f"This Linux distribution isn't supported yet "
            f"(detected: {ctx.os_release.distrib_name} {ctx.os_release.version_id})."
        )
