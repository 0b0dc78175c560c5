"""
Reusable step builders.

Each builder returns a ``Step`` for one check-then-mutate idiom:
"if the directory is missing, create it", "if the symlink is missing,
link it", "if the key is set differently, patch it or append it", and
so on. Installers compose plans almost entirely from these.

Usage::

    from lemper.primitives import ensure_config_line, ensure_directory

    steps = [
        ensure_directory("/etc/nginx/modules-available"),
        ensure_config_line("/etc/ssh/sshd_config", "Port", "2269"),
    ]
"""

from __future__ import annotations

import re
import shlex
from typing import List, Optional, Sequence

from lemper.engine.actions import Action, Command, PatchLine, WriteFile, command
from lemper.engine.context import ExecutionContext
from lemper.engine.errors import PlanDefinitionError
from lemper.engine.probes import (
    PackageManager,
    active_line_pattern,
    probe_command,
    probe_config_line,
    probe_file_content,
    probe_line_in_file,
    probe_packages,
    probe_path,
    probe_service,
    probe_symlink,
    probe_user,
)
from lemper.engine.state import StateSnapshot
from lemper.engine.step import Step
from lemper.engine.version import version_older_than

# rm -rf guard: refuse to remove anything with a suspiciously short path.
MIN_REMOVAL_PATH_LENGTH = 8

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def _present(snapshot: StateSnapshot) -> bool:
    return snapshot.is_present


def _absent(snapshot: StateSnapshot) -> bool:
    return snapshot.is_absent


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


def ensure_directory(
    path: str,
    owner: Optional[str] = None,
    mode: Optional[str] = None,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Create ``path`` (and parents) if it is not a directory yet."""

    def apply(snapshot: StateSnapshot, ctx: ExecutionContext) -> List[Action]:
        actions: List[Action] = [command("mkdir", "-p", path)]
        if owner:
            actions.append(command("chown", "-hR", owner, path))
        if mode:
            actions.append(command("chmod", mode, path))
        return actions

    return Step(
        name=name or f"ensure-dir:{path}",
        probe=lambda: probe_path(path, kind="dir"),
        check=_present,
        apply=apply,
        requires=tuple(requires),
        description=f"Directory {path} exists",
    )


def ensure_file(
    path: str,
    content: str,
    mode: Optional[int] = None,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Write ``content`` to ``path`` unless the file already has exactly that content."""
    return Step(
        name=name or f"ensure-file:{path}",
        probe=lambda: probe_file_content(path, content),
        check=_present,
        apply=lambda snapshot, ctx: [WriteFile(path=path, content=content, mode=mode)],
        requires=tuple(requires),
        description=f"File {path} has the expected content",
    )


def ensure_file_copied(
    source: str,
    dest: str,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Copy ``source`` over ``dest`` unless both already have the same content."""

    def probe() -> StateSnapshot:
        src = probe_file_content(source)
        dst = probe_file_content(dest)
        if src.is_present and dst.is_present and src.detail == dst.detail:
            return StateSnapshot.present(dest, detail=dst.detail)
        return StateSnapshot.absent(dest, detail=dst.detail)

    return Step(
        name=name or f"ensure-copy:{dest}",
        probe=probe,
        check=_present,
        apply=lambda snapshot, ctx: [command("cp", "-f", source, dest)],
        requires=tuple(requires),
        description=f"{dest} is a copy of {source}",
    )


def ensure_symlink(
    target: str,
    link: str,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Point ``link`` at ``target``, replacing a link that points elsewhere."""
    return Step(
        name=name or f"ensure-link:{link}",
        probe=lambda: probe_symlink(link, target),
        check=_present,
        apply=lambda snapshot, ctx: [command("ln", "-sfn", target, link)],
        requires=tuple(requires),
        description=f"{link} -> {target}",
    )


def ensure_path_absent(
    path: str,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Remove ``path`` recursively if it exists."""
    if len(path.rstrip("/")) < MIN_REMOVAL_PATH_LENGTH:
        raise PlanDefinitionError(
            f"Not deleting {path!r}; name is suspiciously short."
        )
    return Step(
        name=name or f"ensure-absent:{path}",
        probe=lambda: probe_path(path),
        check=_absent,
        apply=lambda snapshot, ctx: [command("rm", "-rf", path)],
        requires=tuple(requires),
        description=f"{path} does not exist",
    )


def ensure_config_line(
    path: str,
    key: str,
    value: str,
    separator: str = " ",
    comment: str = "#",
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """
    Set ``key<separator>value`` in a config file.

    An active line for ``key`` is replaced in place. Otherwise the line is
    inserted right after the commented-out default (``#key ...``), or
    appended when there is none.
    """
    line = f"{key}{separator}{value}"
    anchor = rf"^{re.escape(comment)}\s*{re.escape(key)}(\s|=|$)"
    return Step(
        name=name or f"ensure-line:{path}:{key}",
        probe=lambda: probe_config_line(path, key, value, separator),
        check=_present,
        apply=lambda snapshot, ctx: [
            PatchLine(
                path=path,
                pattern=active_line_pattern(key, separator),
                line=line,
                anchor=anchor,
            )
        ],
        requires=tuple(requires),
        description=f"{path}: {line}",
    )


def ensure_line_in_file(
    path: str,
    line: str,
    mode: Optional[int] = None,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Append ``line`` to ``path`` unless it is already there."""
    return Step(
        name=name or f"ensure-has-line:{path}",
        probe=lambda: probe_line_in_file(path, line),
        check=_present,
        apply=lambda snapshot, ctx: [
            WriteFile(path=path, content=line.rstrip("\n") + "\n", append=True, mode=mode)
        ],
        requires=tuple(requires),
        description=f"{path} contains the expected line",
    )


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


def _install_command(packages: Sequence[str], manager: PackageManager) -> Command:
    if manager == "rpm":
        return Command(argv=("yum", "install", "-y", *packages))
    return Command(argv=("apt-get", "install", "-y", *packages), env=APT_ENV)


def _purge_command(packages: Sequence[str], manager: PackageManager) -> Command:
    if manager == "rpm":
        return Command(argv=("yum", "remove", "-y", *packages))
    return Command(argv=("apt-get", "purge", "-y", *packages), env=APT_ENV)


def ensure_packages(
    packages: Sequence[str],
    manager: PackageManager = "dpkg",
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Install whichever of ``packages`` are missing, in a single transaction."""
    packages = list(packages)

    def apply(snapshot: StateSnapshot, ctx: ExecutionContext) -> List[Action]:
        missing = snapshot.detail.split() if snapshot.detail else packages
        return [_install_command(missing, manager)]

    return Step(
        name=name or f"ensure-packages:{' '.join(packages)}",
        probe=lambda: probe_packages(packages, manager),
        check=_present,
        apply=apply,
        requires=tuple(requires),
        description=f"Packages installed: {', '.join(packages)}",
    )


def ensure_packages_absent(
    packages: Sequence[str],
    manager: PackageManager = "dpkg",
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Purge whichever of ``packages`` are installed."""
    packages = list(packages)

    def probe() -> StateSnapshot:
        snapshot = probe_packages(packages, manager)
        missing = set(snapshot.detail.split()) if snapshot.detail else set()
        installed = [p for p in packages if p not in missing]
        target = " ".join(packages)
        if installed:
            return StateSnapshot.present(target, detail=" ".join(installed))
        return StateSnapshot.absent(target)

    return Step(
        name=name or f"ensure-purged:{' '.join(packages)}",
        probe=probe,
        check=_absent,
        apply=lambda snapshot, ctx: [_purge_command((snapshot.detail or "").split(), manager)],
        requires=tuple(requires),
        description=f"Packages removed: {', '.join(packages)}",
    )


def ensure_apt_repository(
    repository: str,
    list_file: str,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Add an apt repository (e.g. a PPA) unless its sources list exists."""
    return Step(
        name=name or f"ensure-repo:{repository}",
        probe=lambda: probe_path(list_file, kind="file"),
        check=_present,
        apply=lambda snapshot, ctx: [
            Command(argv=("add-apt-repository", "-y", repository), env=APT_ENV),
            Command(argv=("apt-get", "update", "-q"), env=APT_ENV),
        ],
        requires=tuple(requires),
        description=f"Repository {repository} configured",
    )


# ---------------------------------------------------------------------------
# Services, commands, accounts
# ---------------------------------------------------------------------------


def ensure_service_running(
    service: str,
    validate: Optional[Command] = None,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Start ``service`` if it is not running, after ``validate`` succeeds."""
    prelude: List[Action] = [validate] if validate is not None else []
    return Step(
        name=name or f"ensure-running:{service}",
        probe=lambda: probe_service(service),
        check=lambda s: s.is_running,
        apply=lambda snapshot, ctx: prelude + [command("systemctl", "start", service)],
        requires=tuple(requires),
        description=f"Service {service} is running",
    )


def ensure_service_reloaded(
    service: str,
    triggered_by: Sequence[str],
    verb: str = "reload",
    validate: Optional[Command] = None,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """
    ``systemctl reload`` (or ``verb``) ``service`` when any of the
    ``triggered_by`` steps applied in this run. Otherwise always satisfied.

    A failing ``validate`` command (``nginx -t``) fails the step before the
    service is touched.
    """
    prelude: List[Action] = [validate] if validate is not None else []

    def apply(snapshot: StateSnapshot, ctx: ExecutionContext) -> List[Action]:
        if not snapshot.is_running:
            # A stopped service reads the new configuration when it starts.
            return []
        return prelude + [command("systemctl", verb, service)]

    return Step(
        name=name or f"ensure-{verb}ed:{service}",
        probe=lambda: probe_service(service),
        check=lambda s: True,
        apply=apply,
        requires=tuple(requires),
        description=f"Service {service} runs the current configuration",
        triggered_by=tuple(triggered_by),
    )


def ensure_service_stopped(
    service: str,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    return Step(
        name=name or f"ensure-stopped:{service}",
        probe=lambda: probe_service(service),
        check=lambda s: not s.is_running,
        apply=lambda snapshot, ctx: [command("systemctl", "stop", service)],
        requires=tuple(requires),
        description=f"Service {service} is stopped",
    )


def ensure_command(
    program: str,
    install: Sequence[Action],
    minimum_version: Optional[str] = None,
    version_args: Sequence[str] = ("--version",),
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """
    Run ``install`` unless ``program`` is on PATH (at ``minimum_version``
    or newer, when given).
    """
    install = list(install)

    def probe() -> StateSnapshot:
        if minimum_version is None:
            return probe_command(program)
        return probe_command(program, version_args=version_args)

    def check(snapshot: StateSnapshot) -> bool:
        if not snapshot.is_present:
            return False
        if minimum_version is None:
            return True
        if snapshot.version is None:
            return False
        return not version_older_than(snapshot.version, minimum_version)

    return Step(
        name=name or f"ensure-command:{program}",
        probe=probe,
        check=check,
        apply=lambda snapshot, ctx: install,
        requires=tuple(requires),
        description=f"{program} is installed"
        + (f" (>= {minimum_version})" if minimum_version else ""),
    )


def ensure_user(
    username: str,
    home: Optional[str] = None,
    shell: str = "/bin/bash",
    groups: Sequence[str] = (),
    password_hash: Optional[str] = None,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    """Create a system account with a home directory if it does not exist."""
    home = home or f"/home/{username}"

    def apply(snapshot: StateSnapshot, ctx: ExecutionContext) -> List[Action]:
        argv = ["useradd", "-d", home, "-m", "-s", shell]
        if password_hash:
            argv.extend(["-p", password_hash])
        argv.append(username)
        actions: List[Action] = [Command(argv=tuple(argv))]
        for group in groups:
            actions.append(command("usermod", "-aG", group, username))
        return actions

    return Step(
        name=name or f"ensure-user:{username}",
        probe=lambda: probe_user(username),
        check=_present,
        apply=apply,
        requires=tuple(requires),
        description=f"Account {username} exists",
    )


def ensure_user_absent(
    username: str,
    name: Optional[str] = None,
    requires: Sequence[str] = (),
) -> Step:
    return Step(
        name=name or f"ensure-no-user:{username}",
        probe=lambda: probe_user(username),
        check=_absent,
        apply=lambda snapshot, ctx: [command("userdel", "-r", username)],
        requires=tuple(requires),
        description=f"Account {username} does not exist",
    )


def shell_step(
    name: str,
    probe,
    check,
    script: str,
    requires: Sequence[str] = (),
    description: str = "",
) -> Step:
    """A step whose action is a single ``bash -c`` script, for pipelines."""
    return Step(
        name=name,
        probe=probe,
        check=check,
        apply=lambda snapshot, ctx: [command("bash", "-c", script)],
        requires=tuple(requires),
        description=description or shlex.quote(script),
    )


def module_available(path: str) -> bool:
    """True if a file exists at ``path`` at plan-construction time."""
    return probe_path(path, kind="file").is_present
