"""Deployment state persistence for dotm."""

from __future__ import annotations

import fcntl
import shutil
import tomllib
from dataclasses import replace
from pathlib import Path
from types import TracebackType
from typing import IO, Iterable

from tomli_w import dump as toml_dump

from .filesystem import cleanup_empty_parents, ensure_parent, hash_file, path_present
from .logging import get_logger
from .metadata import apply_mode, apply_ownership, modes_equal, read_file_metadata
from .models import DeployEntry, EntryKind, FileStatus

STATE_FILENAME = "dotm-state.toml"
LOCK_FILENAME = ".lock"
DEPLOYED_DIRNAME = "deployed"
ORIGINALS_DIRNAME = "originals"
CURRENT_VERSION = 2

logger = get_logger("state")

_OPTIONAL_FIELDS = (
    "original_hash",
    "owner",
    "group",
    "mode",
    "original_owner",
    "original_group",
    "original_mode",
)


class StateError(RuntimeError):
    """Raised when the state directory cannot be read or is incompatible."""


class DeployState:
    """Tracks every deployed file plus the content-addressed blob stores.

    Use :meth:`load_locked` as a context manager for anything that mutates
    state; the advisory lock is released when the ``with`` block exits.
    """

    def __init__(
        self,
        state_dir: Path,
        entries: Iterable[DeployEntry] | None = None,
        *,
        version: int = CURRENT_VERSION,
    ) -> None:
        self.state_dir = Path(state_dir)
        self.version = version
        self._entries: list[DeployEntry] = list(entries or [])
        self._lock_handle: IO[str] | None = None

    # ------------------------------------------------------------------
    # Loading, locking and saving

    @classmethod
    def load(cls, state_dir: Path) -> "DeployState":
        state_dir = Path(state_dir)
        path = state_dir / STATE_FILENAME
        if not path.exists():
            return cls(state_dir)

        try:
            with path.open("rb") as handle:
                data = tomllib.load(handle)
        except (OSError, tomllib.TOMLDecodeError) as exc:
            raise StateError(f"failed to read state file {path}: {exc}") from exc

        version = data.get("version", 1)
        if not isinstance(version, int):
            raise StateError(f"state file {path} has an invalid version: {version!r}")
        if version > CURRENT_VERSION:
            raise StateError(
                f"state file {path} has version {version}, but this dotm only supports up to "
                f"version {CURRENT_VERSION}; upgrade dotm"
            )

        try:
            entries = [_entry_from_dict(item) for item in data.get("entries", [])]
        except (KeyError, TypeError, ValueError) as exc:
            raise StateError(f"malformed entry in state file {path}: {exc}") from exc

        state = cls(state_dir, entries, version=version)
        if version < CURRENT_VERSION:
            state._migrate_layout()
            state.version = CURRENT_VERSION
        return state

    @classmethod
    def load_locked(cls, state_dir: Path) -> "DeployState":
        """Acquire the state directory lock, then load."""

        state_dir = Path(state_dir)
        state_dir.mkdir(parents=True, exist_ok=True)
        handle = (state_dir / LOCK_FILENAME).open("a+", encoding="utf-8")
        try:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            state = cls.load(state_dir)
        except BaseException:
            handle.close()
            raise
        state._lock_handle = handle
        return state

    @staticmethod
    def exists(state_dir: Path) -> bool:
        return (Path(state_dir) / STATE_FILENAME).exists()

    @property
    def state_path(self) -> Path:
        return self.state_dir / STATE_FILENAME

    @property
    def deployed_dir(self) -> Path:
        return self.state_dir / DEPLOYED_DIRNAME

    @property
    def originals_dir(self) -> Path:
        return self.state_dir / ORIGINALS_DIRNAME

    @property
    def is_locked(self) -> bool:
        return self._lock_handle is not None

    def close(self) -> None:
        if self._lock_handle is None:
            return
        try:
            fcntl.flock(self._lock_handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._lock_handle.close()
            self._lock_handle = None

    def __enter__(self) -> "DeployState":
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        traceback: TracebackType | None,
    ) -> None:
        self.close()

    def save(self) -> None:
        self.state_dir.mkdir(parents=True, exist_ok=True)
        payload = {
            "version": self.version,
            "entries": [_entry_to_dict(entry) for entry in self._entries],
        }
        with self.state_path.open("wb") as handle:
            toml_dump(payload, handle)

    # ------------------------------------------------------------------
    # Entries

    def record(self, entry: DeployEntry) -> None:
        """Insert ``entry``, replacing any existing entry for the same target."""

        for index, existing in enumerate(self._entries):
            if existing.target == entry.target:
                self._entries[index] = entry
                return
        self._entries.append(entry)

    def get(self, target: Path) -> DeployEntry | None:
        for entry in self._entries:
            if entry.target == target:
                return entry
        return None

    def entries(self) -> list[DeployEntry]:
        return list(self._entries)

    def update_hash(self, target: Path, content_hash: str) -> DeployEntry:
        entry = self.get(target)
        if entry is None:
            raise StateError(f"'{target}' is not tracked")
        updated = replace(entry, content_hash=content_hash)
        self.record(updated)
        return updated

    def check_entry_status(self, entry: DeployEntry) -> FileStatus:
        """Compare the file on disk with what was recorded at deploy time.

        Only the metadata fields dotm set itself are compared.
        """

        if not path_present(entry.target) or not entry.staged.is_file():
            return FileStatus.missing()

        content_modified = hash_file(entry.staged) != entry.content_hash

        owner_changed = group_changed = mode_changed = False
        if entry.owner is not None or entry.group is not None or entry.mode is not None:
            owner, group, mode = read_file_metadata(entry.staged)
            owner_changed = entry.owner is not None and owner != entry.owner
            group_changed = entry.group is not None and group != entry.group
            mode_changed = entry.mode is not None and not modes_equal(mode, entry.mode)

        return FileStatus(
            exists=True,
            content_modified=content_modified,
            owner_changed=owner_changed,
            group_changed=group_changed,
            mode_changed=mode_changed,
        )

    # ------------------------------------------------------------------
    # Blob stores

    def store_deployed(self, content_hash: str, content: bytes) -> None:
        _store_blob(self.deployed_dir, content_hash, content)

    def load_deployed(self, content_hash: str) -> bytes:
        return _load_blob(self.deployed_dir, content_hash)

    def store_original(self, content_hash: str, content: bytes) -> None:
        _store_blob(self.originals_dir, content_hash, content)

    def load_original(self, content_hash: str) -> bytes:
        return _load_blob(self.originals_dir, content_hash)

    # ------------------------------------------------------------------
    # Removal

    def restore(self, package: str | None = None, *, dry_run: bool = False) -> int:
        """Put back pre-existing files (or delete dotm-created ones) for matching entries.

        A full restore (no ``package``) also removes the blob stores and the
        state file. Returns the number of entries restored.
        """

        selected = self._select(package)
        if dry_run:
            return len(selected)

        for entry in selected:
            self._restore_entry(entry)
            logger.debug("Restored %s", entry.target)

        self._forget(selected)
        if package is None:
            self._purge()
        else:
            self.save()
        return len(selected)

    def undeploy(self, package: str | None = None) -> int:
        """Remove matching targets and staged files without restoring anything.

        Returns the number of targets removed from disk.
        """

        selected = self._select(package)
        removed = sum(1 for entry in selected if self._discard_files(entry))

        self._forget(selected)
        if package is None:
            self._purge()
        else:
            self.save()
        return removed

    def remove_entries(self, targets: Iterable[Path]) -> list[Path]:
        """Delete the files of the entries for ``targets`` and stop tracking them.

        The caller is responsible for saving.
        """

        wanted = set(targets)
        selected = [entry for entry in self._entries if entry.target in wanted]
        for entry in selected:
            self._discard_files(entry)
            logger.debug("Pruned %s", entry.target)
        self._forget(selected)
        return [entry.target for entry in selected]

    # ------------------------------------------------------------------
    # Internal helpers

    def _select(self, package: str | None) -> list[DeployEntry]:
        return [entry for entry in self._entries if package is None or entry.package == package]

    def _forget(self, entries: Iterable[DeployEntry]) -> None:
        targets = {entry.target for entry in entries}
        self._entries = [entry for entry in self._entries if entry.target not in targets]

    def _restore_entry(self, entry: DeployEntry) -> None:
        if entry.original_hash is not None:
            content = self.load_original(entry.original_hash)
            _remove_file(entry.target)
            ensure_parent(entry.target)
            entry.target.write_bytes(content)
            self._restore_metadata(entry)
        elif _remove_file(entry.target):
            cleanup_empty_parents(entry.target)

        if entry.staged != entry.target and _remove_file(entry.staged):
            cleanup_empty_parents(entry.staged)

    def _restore_metadata(self, entry: DeployEntry) -> None:
        if entry.original_owner is not None or entry.original_group is not None:
            try:
                apply_ownership(entry.target, entry.original_owner, entry.original_group)
            except (OSError, LookupError) as exc:
                logger.warning("Failed to restore ownership of %s: %s", entry.target, exc)
        if entry.original_mode is not None:
            apply_mode(entry.target, entry.original_mode)

    def _discard_files(self, entry: DeployEntry) -> bool:
        removed = _remove_file(entry.target)
        if removed:
            cleanup_empty_parents(entry.target)
        if entry.staged != entry.target and _remove_file(entry.staged):
            cleanup_empty_parents(entry.staged)
        return removed

    def _purge(self) -> None:
        for directory in (self.deployed_dir, self.originals_dir):
            if directory.exists():
                shutil.rmtree(directory)
        self.state_path.unlink(missing_ok=True)

    def _migrate_layout(self) -> None:
        # Version 1 kept deployed snapshots under originals/.
        legacy = self.originals_dir
        if legacy.is_dir() and not self.deployed_dir.exists():
            logger.info("Migrating %s to %s", legacy, self.deployed_dir)
            legacy.rename(self.deployed_dir)


def _remove_file(path: Path) -> bool:
    if path.is_symlink() or path.is_file():
        path.unlink()
        return True
    return False


def _store_blob(directory: Path, content_hash: str, content: bytes) -> None:
    path = directory / content_hash
    if path.exists():
        return
    directory.mkdir(parents=True, exist_ok=True)
    path.write_bytes(content)


def _load_blob(directory: Path, content_hash: str) -> bytes:
    path = directory / content_hash
    try:
        return path.read_bytes()
    except FileNotFoundError:
        raise StateError(f"missing blob {content_hash} in {directory}") from None


def _entry_from_dict(item: dict[str, object]) -> DeployEntry:
    optional = {name: item.get(name) for name in _OPTIONAL_FIELDS}
    return DeployEntry(
        target=Path(str(item["target"])),
        staged=Path(str(item["staged"])),
        source=Path(str(item["source"])),
        content_hash=str(item["content_hash"]),
        kind=EntryKind(item["kind"]),
        package=str(item["package"]),
        **optional,  # type: ignore[arg-type]
    )


def _entry_to_dict(entry: DeployEntry) -> dict[str, object]:
    payload: dict[str, object] = {
        "target": str(entry.target),
        "staged": str(entry.staged),
        "source": str(entry.source),
        "content_hash": entry.content_hash,
        "kind": entry.kind.value,
        "package": entry.package,
    }
    for name in _OPTIONAL_FIELDS:
        value = getattr(entry, name)
        if value is not None:
            payload[name] = value
    return payload
