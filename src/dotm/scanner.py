"""Package scanning and override resolution."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Sequence

from .logging import get_logger
from .models import EntryKind, FileAction

VARIANT_SEPARATOR = "##"
HOST_PREFIX = "host."
ROLE_PREFIX = "role."
TEMPLATE_SUFFIX = ".tera"

logger = get_logger("scanner")


def canonical_target_path(rel_path: Path) -> Path:
    """Strip the ``##`` variant suffix and ``.tera`` extension from ``rel_path``."""

    name = rel_path.name.split(VARIANT_SEPARATOR, 1)[0]
    if name.endswith(TEMPLATE_SUFFIX):
        name = name[: -len(TEMPLATE_SUFFIX)]
    return rel_path.with_name(name)


def scan_package(pkg_dir: Path, hostname: str, roles: Sequence[str]) -> list[FileAction]:
    """Walk ``pkg_dir`` and pick one source file per target path.

    Priority: host override, then the override of the last matching role in
    ``roles``, then a ``.tera`` template, then the plain base file. A path with
    only non-matching overrides falls back to the first of them. The result is
    sorted by target path.
    """

    groups = _collect_files(pkg_dir)
    actions = [
        _resolve_variant(target_rel_path, variants, hostname, roles) for target_rel_path, variants in groups.items()
    ]

    actions.sort(key=lambda item: item.target_rel_path.as_posix())
    return actions


def _collect_files(pkg_dir: Path) -> dict[Path, list[Path]]:
    if not pkg_dir.is_dir():
        raise NotADirectoryError(f"package directory not found: {pkg_dir}")

    groups: dict[Path, list[Path]] = {}
    for dirpath, dirnames, filenames in os.walk(pkg_dir):
        dirnames.sort()
        current = Path(dirpath)
        for name in sorted(filenames):
            path = current / name
            if not path.is_file():
                continue
            canonical = canonical_target_path(path.relative_to(pkg_dir))
            groups.setdefault(canonical, []).append(path)
    return groups


def _variant_of(path: Path) -> str | None:
    parts = path.name.split(VARIANT_SEPARATOR, 1)
    return parts[1] if len(parts) == 2 else None


def _resolve_variant(
    target_rel_path: Path,
    variants: list[Path],
    hostname: str,
    roles: Sequence[str],
) -> FileAction:
    by_variant = {_variant_of(path): path for path in variants}

    host_source = by_variant.get(f"{HOST_PREFIX}{hostname}")
    if host_source is not None:
        return FileAction(host_source, target_rel_path, EntryKind.OVERRIDE)

    for role in reversed(roles):
        role_source = by_variant.get(f"{ROLE_PREFIX}{role}")
        if role_source is not None:
            return FileAction(role_source, target_rel_path, EntryKind.OVERRIDE)

    plain = [path for path in variants if _variant_of(path) is None]
    for path in plain:
        if path.name.endswith(TEMPLATE_SUFFIX):
            return FileAction(path, target_rel_path, EntryKind.TEMPLATE)
    if plain:
        return FileAction(plain[0], target_rel_path, EntryKind.BASE)

    logger.debug(
        "No variant of %s applies to host '%s'; using %s", target_rel_path.as_posix(), hostname, variants[0].name
    )
    return FileAction(variants[0], target_rel_path, EntryKind.BASE)
