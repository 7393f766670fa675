"""Shared models and enums for dotm."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path


class EntryKind(str, Enum):
    """Which variant of a file was selected for deployment."""

    BASE = "base"
    OVERRIDE = "override"
    TEMPLATE = "template"


class DeployStrategy(str, Enum):
    """How a package's files reach their target paths."""

    STAGE = "stage"
    COPY = "copy"


@dataclass(frozen=True, slots=True)
class FileAction:
    """A single file selected by the scanner for deployment."""

    source: Path
    target_rel_path: Path
    kind: EntryKind


@dataclass(frozen=True, slots=True)
class ResolvedMetadata:
    """Owner, group and mode dotm should enforce on a file (``None`` leaves it alone)."""

    owner: str | None = None
    group: str | None = None
    mode: str | None = None

    def is_empty(self) -> bool:
        return self.owner is None and self.group is None and self.mode is None


@dataclass(frozen=True, slots=True)
class DeployEntry:
    """Recorded state about one deployed file."""

    target: Path
    staged: Path
    source: Path
    content_hash: str
    kind: EntryKind
    package: str
    original_hash: str | None = None
    owner: str | None = None
    group: str | None = None
    mode: str | None = None
    original_owner: str | None = None
    original_group: str | None = None
    original_mode: str | None = None


class DeployOutcome(str, Enum):
    """Outcome of deploying a single file."""

    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    CONFLICT = "conflict"
    DRY_RUN = "dry_run"


@dataclass(slots=True)
class DeployReport:
    """Summary of a deploy run."""

    created: list[Path] = field(default_factory=list)
    updated: list[Path] = field(default_factory=list)
    unchanged: list[Path] = field(default_factory=list)
    conflicts: list[tuple[Path, str]] = field(default_factory=list)
    dry_run_actions: list[Path] = field(default_factory=list)
    orphaned: list[Path] = field(default_factory=list)
    pruned: list[Path] = field(default_factory=list)

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def record(self, outcome: DeployOutcome, path: Path, reason: str | None = None) -> None:
        if outcome is DeployOutcome.CREATED:
            self.created.append(path)
        elif outcome is DeployOutcome.UPDATED:
            self.updated.append(path)
        elif outcome is DeployOutcome.UNCHANGED:
            self.unchanged.append(path)
        elif outcome is DeployOutcome.CONFLICT:
            self.conflicts.append((path, reason or "conflict"))
        else:
            self.dry_run_actions.append(path)


class StatusState(str, Enum):
    """High-level states reported by ``dotm status``."""

    OK = "ok"
    MODIFIED = "modified"
    MISSING = "missing"


@dataclass(frozen=True, slots=True)
class FileStatus:
    """Result of comparing a deployed file against its recorded entry."""

    exists: bool
    content_modified: bool = False
    owner_changed: bool = False
    group_changed: bool = False
    mode_changed: bool = False

    @classmethod
    def missing(cls) -> "FileStatus":
        return cls(exists=False)

    @property
    def is_missing(self) -> bool:
        return not self.exists

    @property
    def has_metadata_drift(self) -> bool:
        return self.owner_changed or self.group_changed or self.mode_changed

    @property
    def is_modified(self) -> bool:
        return self.exists and (self.content_modified or self.has_metadata_drift)

    @property
    def is_ok(self) -> bool:
        return self.exists and not self.is_modified

    @property
    def state(self) -> StatusState:
        if self.is_missing:
            return StatusState.MISSING
        if self.is_modified:
            return StatusState.MODIFIED
        return StatusState.OK

    def drifted_fields(self) -> list[str]:
        fields: list[str] = []
        if self.content_modified:
            fields.append("content")
        if self.owner_changed:
            fields.append("owner")
        if self.group_changed:
            fields.append("group")
        if self.mode_changed:
            fields.append("mode")
        return fields
