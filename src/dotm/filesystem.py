"""Filesystem helpers for dotm."""

from __future__ import annotations

import os
import shutil
from hashlib import sha256
from pathlib import Path


def ensure_parent(path: Path) -> None:
    """Ensure the parent directory exists."""

    path.parent.mkdir(parents=True, exist_ok=True)


def hash_content(content: bytes) -> str:
    """Return the SHA-256 hex digest of ``content``."""

    return sha256(content).hexdigest()


def hash_file(path: Path) -> str:
    """Return the SHA-256 hex digest of the file at ``path`` (symlinks are followed)."""

    hasher = sha256()
    with path.open("rb") as handle:
        for chunk in iter(lambda: handle.read(1024 * 1024), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


def path_present(path: Path) -> bool:
    """Return ``True`` if ``path`` exists or is a (possibly dangling) symlink."""

    return path.exists() or path.is_symlink()


def is_regular_file(path: Path) -> bool:
    return path.is_file() and not path.is_symlink()


def write_file(destination: Path, *, source: Path | None = None, content: str | None = None) -> None:
    """Replace ``destination`` with ``content`` or a copy of ``source``."""

    ensure_parent(destination)
    remove_path(destination)
    if content is not None:
        destination.write_text(content, encoding="utf-8")
    elif source is not None:
        shutil.copy2(source, destination)
    else:
        raise ValueError("write_file needs either source or content")


def ensure_symlink(link: Path, target: Path) -> bool:
    """Ensure ``link`` is a symlink to the absolute path ``target``.

    Returns ``True`` if a change was made.
    """

    if link.is_symlink():
        if symlink_points_to(link, target):
            return False
        link.unlink()
    elif link.exists():
        remove_path(link)

    ensure_parent(link)
    link.symlink_to(target)
    return True


def symlink_points_to(link: Path, target: Path) -> bool:
    """Return ``True`` if ``link`` is a symlink that resolves to ``target``."""

    if not link.is_symlink():
        return False
    current = Path(os.readlink(link))
    current_resolved = (link.parent / current).resolve(strict=False)
    target_resolved = target.resolve(strict=False)
    return current_resolved == target_resolved


def remove_path(path: Path) -> bool:
    """Delete ``path`` whether it is a file, directory, or symlink.

    Returns ``True`` if something was removed.
    """

    if not path_present(path):
        return False
    if path.is_symlink() or not path.is_dir():
        path.unlink()
        return True
    shutil.rmtree(path)
    return True


def cleanup_empty_parents(path: Path) -> None:
    """Remove empty ancestor directories of ``path`` up to the first non-empty one."""

    current = path.parent
    while current != current.parent:
        try:
            current.rmdir()
        except OSError:
            return
        current = current.parent
