"""
Version string helpers.

Handles dotted numeric versions of up to four components (``A.B.C.D``),
which covers nginx (three) and its modules (four). Non-numeric suffixes
such as ``-0ubuntu1`` are ignored when comparing.
"""

from __future__ import annotations

import re
from typing import Iterable, List, Optional, Tuple

_VERSION_RE = re.compile(r"(\d+(?:\.\d+){0,3})")

MAX_COMPONENTS = 4


def parse_version(text: str) -> Optional[str]:
    """Return the first dotted version found in ``text``, or ``None``.

    >>> parse_version("nginx version: nginx/1.18.0 (Ubuntu)")
    '1.18.0'
    """
    if not text:
        return None
    match = _VERSION_RE.search(text)
    return match.group(1) if match else None


def version_key(version: str) -> Tuple[int, ...]:
    """Sortable key for a version string, padded to four components."""
    parsed = parse_version(version)
    if parsed is None:
        raise ValueError(f"Not a version string: {version!r}")
    parts = [int(p) for p in parsed.split(".")][:MAX_COMPONENTS]
    parts.extend([0] * (MAX_COMPONENTS - len(parts)))
    return tuple(parts)


def sort_versions(versions: Iterable[str]) -> List[str]:
    """Sort versions in ascending order."""
    return sorted(versions, key=version_key)


def version_older_than(version: str, compare_to: str) -> bool:
    """True if ``version`` is strictly older than ``compare_to``."""
    return version_key(version) < version_key(compare_to)


def latest_version(versions: Iterable[str]) -> Optional[str]:
    ordered = sort_versions(versions)
    return ordered[-1] if ordered else None
