"""Tests for the canonical model helpers."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from scmkit.models import (
    CommitListOptions,
    ListOptions,
    Perm,
    Permission,
    Repository,
    parse_time,
    split_repo,
)


class TestSplitRepo:
    def test_simple(self) -> None:
        assert split_repo("octocat/hello") == ("octocat", "hello")

    def test_nested_namespace(self) -> None:
        assert split_repo("group/sub/project") == ("group/sub", "project")

    def test_bare_name(self) -> None:
        assert split_repo("project") == ("", "project")

    def test_surrounding_slashes(self) -> None:
        assert split_repo("/a/b/") == ("a", "b")


class TestParseTime:
    def test_iso_with_z(self) -> None:
        assert parse_time("2024-03-01T10:20:30Z") == datetime(2024, 3, 1, 10, 20, 30, tzinfo=UTC)

    def test_epoch_millis(self) -> None:
        assert parse_time(1_700_000_000_000) == datetime.fromtimestamp(1_700_000_000, tz=UTC)

    @pytest.mark.parametrize("value", [None, "", 0, "yesterday"])
    def test_missing_or_invalid(self, value: object) -> None:
        assert parse_time(value) is None


class TestPerm:
    @pytest.mark.parametrize(
        ("level", "expected"),
        [
            (Permission.NONE, Perm(False, False, False)),
            (Permission.READ, Perm(True, False, False)),
            (Permission.WRITE, Perm(True, True, False)),
            (Permission.ADMIN, Perm(True, True, True)),
        ],
    )
    def test_from_level(self, level: Permission, expected: Perm) -> None:
        assert Perm.from_level(level) == expected
        assert expected.level is level

    def test_from_flags_strongest_wins(self) -> None:
        assert Perm.from_flags(pull=False, push=False, admin=True) == Perm(True, True, True)
        assert Perm.from_flags(pull=False, push=True, admin=False) == Perm(True, True, False)
        assert Perm.from_flags(pull=False, push=False, admin=False) == Perm()

    def test_permission_ordering(self) -> None:
        assert Permission.NONE < Permission.READ < Permission.WRITE < Permission.ADMIN
        assert max(Permission.READ, Permission.ADMIN) is Permission.ADMIN


class TestOptions:
    @pytest.mark.parametrize(("page", "current"), [(0, 1), (-3, 1), (1, 1), (7, 7)])
    def test_current_page(self, page: int, current: int) -> None:
        assert ListOptions(page=page).current == current

    def test_commit_options_carry_paging(self) -> None:
        opts = CommitListOptions(ref="main", page=2, size=50)
        assert opts.list_options() == ListOptions(page=2, size=50)


def test_repository_full_name() -> None:
    repo = Repository(id="1", namespace="group/sub", name="proj")
    assert repo.full_name == "group/sub/proj"
