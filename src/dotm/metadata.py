"""Ownership and permission handling for deployed files."""

from __future__ import annotations

import grp
import os
import pwd
import shutil
from pathlib import Path

from .config import PackageConfig
from .models import ResolvedMetadata


def resolve_metadata(pkg: PackageConfig, rel_path: str) -> ResolvedMetadata:
    """Work out which owner, group and mode dotm should enforce on ``rel_path``.

    Each field is resolved independently:

    1. a ``preserve`` entry for the field leaves it alone;
    2. a per-file ``ownership``/``permissions`` override wins;
    3. the package-level ``owner``/``group`` applies (there is no package-level mode);
    4. otherwise the field is left alone.
    """

    preserved = set(pkg.preserve.get(rel_path, ()))
    ownership = pkg.ownership.get(rel_path)
    owner_override, group_override = _split_ownership(ownership) if ownership is not None else (None, None)

    if "owner" in preserved:
        owner = None
    elif ownership is not None:
        owner = owner_override
    else:
        owner = pkg.owner

    if "group" in preserved:
        group = None
    elif ownership is not None:
        group = group_override
    else:
        group = pkg.group

    mode = None if "mode" in preserved else pkg.permissions.get(rel_path)

    return ResolvedMetadata(owner=owner, group=group, mode=mode)


def read_file_metadata(path: Path) -> tuple[str, str, str]:
    """Return ``(owner, group, mode)`` of ``path``; ids without a name are returned as digits."""

    stat_result = path.stat()
    try:
        owner = pwd.getpwuid(stat_result.st_uid).pw_name
    except KeyError:
        owner = str(stat_result.st_uid)
    try:
        group = grp.getgrgid(stat_result.st_gid).gr_name
    except KeyError:
        group = str(stat_result.st_gid)
    mode = format(stat_result.st_mode & 0o7777, "o")
    return owner, group, mode


def apply_ownership(path: Path, owner: str | None, group: str | None) -> None:
    """Change the owner and/or group of ``path``; ``None`` fields are left untouched."""

    if owner is None and group is None:
        return
    user_arg = _lookup_id(owner, pwd.getpwnam, "user") if owner is not None else None
    group_arg = _lookup_id(group, grp.getgrnam, "group") if group is not None else None
    shutil.chown(path, user=user_arg, group=group_arg)


def apply_mode(path: Path, mode: str) -> None:
    os.chmod(path, parse_mode(mode))


def parse_mode(mode: str) -> int:
    return int(mode, 8)


def modes_equal(left: str, right: str) -> bool:
    return parse_mode(left) == parse_mode(right)


def _split_ownership(value: str) -> tuple[str | None, str | None]:
    parts = value.split(":")
    owner = parts[0] if parts and parts[0] else None
    group = parts[1] if len(parts) > 1 and parts[1] else None
    return owner, group


def _lookup_id(name: str, lookup, kind: str) -> int:
    try:
        entry = lookup(name)
    except KeyError:
        if name.isdigit():
            return int(name)
        raise LookupError(f"{kind} '{name}' not found") from None
    return entry[2]
