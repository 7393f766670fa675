from __future__ import annotations

import grp
import os
import pwd
from pathlib import Path

import pytest

from dotm.config import PackageConfig
from dotm.metadata import apply_mode, apply_ownership, modes_equal, read_file_metadata, resolve_metadata
from dotm.models import ResolvedMetadata


def test_preserve_owner_keeps_group_override() -> None:
    pkg = PackageConfig(
        ownership={"etc/shadow": "root:shadow"},
        preserve={"etc/shadow": ("owner",)},
    )

    metadata = resolve_metadata(pkg, "etc/shadow")

    assert metadata == ResolvedMetadata(owner=None, group="shadow", mode=None)


def test_per_file_override_beats_package_defaults() -> None:
    pkg = PackageConfig(
        owner="alice",
        group="users",
        ownership={"special": "bob:wheel"},
        permissions={"special": "600"},
    )

    assert resolve_metadata(pkg, "special") == ResolvedMetadata("bob", "wheel", "600")
    assert resolve_metadata(pkg, "other") == ResolvedMetadata("alice", "users", None)


def test_preserve_mode_drops_permission() -> None:
    pkg = PackageConfig(group="staff", preserve={"f": ("mode", "group")})

    metadata = resolve_metadata(pkg, "f")

    assert metadata.group is None
    assert metadata.mode is None


def test_nothing_configured_is_empty() -> None:
    assert resolve_metadata(PackageConfig(), "f").is_empty()


def test_read_and_apply_mode(tmp_path: Path) -> None:
    path = tmp_path / "file"
    path.write_text("x")

    apply_mode(path, "640")

    owner, group, mode = read_file_metadata(path)
    assert mode == "640"
    assert owner == pwd.getpwuid(os.getuid()).pw_name
    assert group == grp.getgrgid(os.getgid()).gr_name


def test_apply_ownership_to_current_user(tmp_path: Path) -> None:
    path = tmp_path / "file"
    path.write_text("x")
    user = pwd.getpwuid(os.getuid()).pw_name
    group = grp.getgrgid(os.getgid()).gr_name

    apply_ownership(path, user, group)

    assert read_file_metadata(path)[:2] == (user, group)


def test_apply_ownership_unknown_user(tmp_path: Path) -> None:
    path = tmp_path / "file"
    path.write_text("x")

    with pytest.raises(LookupError, match="user 'no-such-user-dotm' not found"):
        apply_ownership(path, "no-such-user-dotm", None)


def test_modes_equal_ignores_leading_zeros() -> None:
    assert modes_equal("0644", "644")
    assert not modes_equal("600", "644")
