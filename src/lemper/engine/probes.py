"""
Read-only state probes.

Every probe is side-effect-free and tolerant of missing targets: a
missing file, package, service, or even a missing query tool is reported
as ``ABSENT``/``STOPPED``. Only I/O-level failures such as permission
denied raise ``ProbeError``.

Usage::

    from lemper.engine.probes import probe_package, probe_path

    probe_path("/etc/nginx/modules-available", kind="dir")
    probe_package("nginx")          # StateSnapshot(kind=PRESENT, version="1.18.0-0ubuntu1")
"""

from __future__ import annotations

import grp
import hashlib
import logging
import os
import pwd
import re
import shutil
import stat
import subprocess
from pathlib import Path
from typing import Iterable, List, Literal, Optional, Sequence

from lemper.engine.errors import ProbeError
from lemper.engine.state import StateSnapshot
from lemper.engine.version import parse_version
from lemper.timeouts import PROBE_TIMEOUT_S

logger = logging.getLogger(__name__)

PathKind = Literal["any", "file", "dir", "symlink"]
PackageManager = Literal["dpkg", "rpm"]


def _query(argv: Sequence[str]) -> Optional[subprocess.CompletedProcess]:
    """
    Run a read-only query command.

    Returns ``None`` when the query tool itself is not installed or does
    not answer in time, which callers treat as "cannot observe, so absent".
    """
    try:
        return subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=PROBE_TIMEOUT_S,
        )
    except FileNotFoundError:
        logger.debug("Probe tool not found: %s", argv[0])
        return None
    except subprocess.TimeoutExpired:
        logger.warning("Probe timed out: %s", " ".join(argv))
        return None
    except OSError as e:
        raise ProbeError(" ".join(argv), str(e))


def _lstat(path: str) -> Optional[os.stat_result]:
    try:
        return os.lstat(path)
    except (FileNotFoundError, NotADirectoryError):
        return None
    except OSError as e:
        raise ProbeError(path, str(e))


# ---------------------------------------------------------------------------
# Filesystem
# ---------------------------------------------------------------------------


def probe_path(path: str, kind: PathKind = "any") -> StateSnapshot:
    """PRESENT if ``path`` exists and is of the requested ``kind``."""
    st = _lstat(path)
    if st is None:
        return StateSnapshot.absent(path)

    if stat.S_ISLNK(st.st_mode):
        actual = "symlink"
        if kind in ("file", "dir"):
            # Follow the link for file/dir checks, like `[ -f ]` / `[ -d ]`.
            try:
                target = os.stat(path)
            except FileNotFoundError:
                return StateSnapshot.absent(path, detail="dangling symlink")
            except OSError as e:
                raise ProbeError(path, str(e))
            actual = "dir" if stat.S_ISDIR(target.st_mode) else "file"
    elif stat.S_ISDIR(st.st_mode):
        actual = "dir"
    else:
        actual = "file"

    if kind != "any" and actual != kind:
        return StateSnapshot.absent(path, detail=f"exists as {actual}")
    return StateSnapshot.present(path, detail=actual)


def content_digest(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def probe_file_content(path: str, content: Optional[str] = None) -> StateSnapshot:
    """
    PRESENT with ``detail`` set to the sha256 of the file's content.

    When ``content`` is given, a file whose content differs is reported as
    ABSENT (the desired file is not there yet).
    """
    try:
        data = Path(path).read_bytes()
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
        return StateSnapshot.absent(path)
    except OSError as e:
        raise ProbeError(path, str(e))

    digest = hashlib.sha256(data).hexdigest()
    if content is not None and digest != content_digest(content):
        return StateSnapshot.absent(path, detail=f"content differs ({digest[:12]})")
    return StateSnapshot.present(path, detail=digest)


def probe_symlink(link: str, target: Optional[str] = None) -> StateSnapshot:
    """PRESENT if ``link`` is a symlink (pointing at ``target`` when given)."""
    st = _lstat(link)
    if st is None or not stat.S_ISLNK(st.st_mode):
        return StateSnapshot.absent(link)
    try:
        points_to = os.readlink(link)
    except OSError as e:
        raise ProbeError(link, str(e))
    if target is not None and points_to != target:
        return StateSnapshot.absent(link, detail=f"points to {points_to}")
    return StateSnapshot.present(link, detail=points_to)


def probe_ownership(path: str, owner: str, group: Optional[str] = None) -> StateSnapshot:
    """PRESENT if ``path`` exists and is owned by ``owner[:group]``."""
    st = _lstat(path)
    if st is None:
        return StateSnapshot.absent(path)
    try:
        actual_owner = pwd.getpwuid(st.st_uid).pw_name
    except KeyError:
        actual_owner = str(st.st_uid)
    try:
        actual_group = grp.getgrgid(st.st_gid).gr_name
    except KeyError:
        actual_group = str(st.st_gid)
    detail = f"{actual_owner}:{actual_group}"
    if actual_owner != owner or (group is not None and actual_group != group):
        return StateSnapshot.absent(path, detail=detail)
    return StateSnapshot.present(path, detail=detail)


def active_line_pattern(key: str, separator: str) -> str:
    sep = r"\s*=\s*" if separator.strip() == "=" else r"\s+"
    return rf"^{re.escape(key)}{sep}"


def probe_config_line(
    path: str,
    key: str,
    value: Optional[str] = None,
    separator: str = " ",
) -> StateSnapshot:
    """
    Look for an active (uncommented) ``key<separator>value`` line.

    PRESENT when the key is set to ``value`` (or to anything, if ``value``
    is ``None``); ``detail`` is the matched line. A missing file or an
    unset/differently-set key is ABSENT.
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
        return StateSnapshot.absent(path)
    except OSError as e:
        raise ProbeError(path, str(e))

    regex = re.compile(active_line_pattern(key, separator))
    matched: Optional[str] = None
    for line in text.splitlines():
        if regex.match(line):
            matched = line.strip()
    target = f"{path}:{key}"
    if matched is None:
        return StateSnapshot.absent(target)
    current = regex.sub("", matched, count=1).strip()
    if value is not None and current != value:
        return StateSnapshot.absent(target, detail=matched)
    return StateSnapshot.present(target, detail=matched)


# ---------------------------------------------------------------------------
# Packages
# ---------------------------------------------------------------------------


def probe_package(name: str, manager: PackageManager = "dpkg") -> StateSnapshot:
    """PRESENT with the installed version, or ABSENT."""
    if manager == "rpm":
        result = _query(["rpm", "-q", "--queryformat", "%{VERSION}", name])
        if result is None or result.returncode != 0:
            return StateSnapshot.absent(name)
        return StateSnapshot.present(name, version=result.stdout.strip() or None)

    result = _query(["dpkg-query", "-W", "-f=${Status}\t${Version}", name])
    if result is None or result.returncode != 0:
        return StateSnapshot.absent(name)
    status, _, version = result.stdout.partition("\t")
    # Only "install ok installed" counts; removed-but-config-files is "deinstall ok config-files".
    if not status.strip().endswith(" installed"):
        return StateSnapshot.absent(name, detail=status.strip())
    return StateSnapshot.present(name, version=version.strip() or None)


def missing_packages(names: Iterable[str], manager: PackageManager = "dpkg") -> List[str]:
    return [n for n in names if probe_package(n, manager).is_absent]


def probe_packages(names: Sequence[str], manager: PackageManager = "dpkg") -> StateSnapshot:
    """PRESENT only when every package is installed; ``detail`` lists the missing ones."""
    target = " ".join(names)
    missing = missing_packages(names, manager)
    if missing:
        return StateSnapshot.absent(target, detail=" ".join(missing))
    return StateSnapshot.present(target)


# ---------------------------------------------------------------------------
# Services, commands, accounts
# ---------------------------------------------------------------------------


def probe_service(name: str) -> StateSnapshot:
    """RUNNING or STOPPED, via systemd, falling back to the process table."""
    result = _query(["systemctl", "is-active", name])
    if result is not None:
        state = result.stdout.strip()
        if state in ("active", "reloading"):
            return StateSnapshot.running(name, detail=state)
        if state:
            return StateSnapshot.stopped(name, detail=state)

    result = _query(["pgrep", "-x", name])
    if result is not None and result.returncode == 0:
        return StateSnapshot.running(name, detail="process")
    return StateSnapshot.stopped(name)


def probe_command(
    name: str,
    version_args: Sequence[str] = (),
    version_pattern: Optional[str] = None,
) -> StateSnapshot:
    """
    PRESENT if ``name`` is on PATH.

    With ``version_args`` (e.g. ``("-v",)``) the program is asked for its
    version, which is parsed from stdout or stderr (nginx prints to stderr).
    """
    location = shutil.which(name)
    if location is None:
        return StateSnapshot.absent(name)
    if not version_args:
        return StateSnapshot.present(name, detail=location)

    result = _query([location, *version_args])
    version = None
    if result is not None:
        output = f"{result.stdout}\n{result.stderr}"
        if version_pattern:
            match = re.search(version_pattern, output)
            version = match.group(1) if match else None
        else:
            version = parse_version(output)
    return StateSnapshot.present(name, version=version, detail=location)


def probe_user(name: str) -> StateSnapshot:
    """PRESENT if a system account named ``name`` exists."""
    try:
        entry = pwd.getpwnam(name)
    except KeyError:
        return StateSnapshot.absent(name)
    return StateSnapshot.present(name, detail=entry.pw_dir)


def probe_command_output(
    argv: Sequence[str],
    pattern: str,
    require_success: bool = True,
) -> StateSnapshot:
    """
    PRESENT if a read-only query's output matches ``pattern``.

    For state that is only visible through a tool's report, e.g.
    ``probe_command_output(["ufw", "status"], r"^Status: active")``. Tools
    that report problems through a non-zero exit status (``dpkg --audit``)
    pass ``require_success=False``.
    """
    target = " ".join(argv)
    result = _query(argv)
    if result is None or (require_success and result.returncode != 0):
        return StateSnapshot.absent(target)
    match = re.search(pattern, result.stdout, re.MULTILINE)
    if match is None:
        return StateSnapshot.absent(target)
    return StateSnapshot.present(target, detail=match.group(0))


def probe_line_in_file(path: str, line: str) -> StateSnapshot:
    """PRESENT if ``path`` contains ``line`` verbatim (ignoring surrounding whitespace)."""
    try:
        text = Path(path).read_text(encoding="utf-8")
    except (FileNotFoundError, IsADirectoryError, NotADirectoryError):
        return StateSnapshot.absent(path)
    except OSError as e:
        raise ProbeError(path, str(e))
    wanted = line.strip()
    if any(current.strip() == wanted for current in text.splitlines()):
        return StateSnapshot.present(path, detail=wanted)
    return StateSnapshot.absent(path)
