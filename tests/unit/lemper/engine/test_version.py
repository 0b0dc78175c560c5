"""Tests for version parsing and comparison helpers."""

from __future__ import annotations

import pytest

from lemper.engine.state import StateSnapshot
from lemper.engine.version import (
    latest_version,
    parse_version,
    sort_versions,
    version_key,
    version_older_than,
)


class TestParseVersion:
    @pytest.mark.parametrize(
        "text,expected",
        [
            ("nginx version: nginx/1.18.0 (Ubuntu)", "1.18.0"),
            ("PHP 7.4.3 (cli) (built: Nov 25 2021)", "7.4.3"),
            ("1.19.6.1", "1.19.6.1"),
            ("no digits here", None),
            ("", None),
        ],
    )
    def test_parse(self, text, expected):
        assert parse_version(text) == expected


class TestCompare:
    def test_key_is_padded(self):
        assert version_key("1.18") == (1, 18, 0, 0)

    def test_debian_suffix_ignored(self):
        assert version_key("1.18.0-0ubuntu1") == (1, 18, 0, 0)

    def test_numeric_not_lexical(self):
        assert version_older_than("1.9.0", "1.10.0")

    def test_strictly_older(self):
        assert not version_older_than("1.18.0", "1.18.0")
        assert not version_older_than("1.19.0", "1.18.0")

    def test_sort(self):
        assert sort_versions(["8.0", "7.4", "5.6", "7.10"]) == ["5.6", "7.4", "7.10", "8.0"]

    def test_latest(self):
        assert latest_version(["1.2", "1.10", "1.9"]) == "1.10"
        assert latest_version([]) is None

    def test_invalid_version(self):
        with pytest.raises(ValueError):
            version_key("latest")


class TestStateSnapshot:
    def test_describe(self):
        assert StateSnapshot.present("nginx", version="1.18.0").describe() == "present(1.18.0)"
        assert StateSnapshot.absent("nginx").describe() == "absent"

    def test_kind_helpers(self):
        assert StateSnapshot.running("nginx").is_running
        assert not StateSnapshot.stopped("nginx").is_running
        assert StateSnapshot.absent().is_absent
