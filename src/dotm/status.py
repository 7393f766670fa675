"""Status grouping and rendering."""

from __future__ import annotations

import os
from collections import defaultdict
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .models import DeployEntry, FileStatus, StatusState
from .state import DeployState

_MARKERS = {
    StatusState.OK: "~",
    StatusState.MODIFIED: "M",
    StatusState.MISSING: "!",
}


@dataclass(frozen=True, slots=True)
class FileReport:
    entry: DeployEntry
    status: FileStatus

    @property
    def display_path(self) -> str:
        return display_path(self.entry.target)

    @property
    def marker(self) -> str:
        return _MARKERS[self.status.state]


@dataclass(frozen=True, slots=True)
class PackageStatus:
    """Health summary of one package's deployed files."""

    name: str
    files: tuple[FileReport, ...]

    @property
    def total(self) -> int:
        return len(self.files)

    @property
    def ok(self) -> int:
        return sum(1 for item in self.files if item.status.is_ok)

    @property
    def modified(self) -> int:
        return sum(1 for item in self.files if item.status.is_modified)

    @property
    def missing(self) -> int:
        return sum(1 for item in self.files if item.status.is_missing)

    @property
    def healthy(self) -> bool:
        return self.modified == 0 and self.missing == 0

    def summary(self) -> str:
        if self.healthy:
            return "ok"
        return _problem_summary(self.modified, self.missing)


def collect_status(state: DeployState, package: str | None = None) -> list[PackageStatus]:
    """Check every tracked entry and group the results by package."""

    entries = [entry for entry in state.entries() if package is None or entry.package == package]
    statuses = [state.check_entry_status(entry) for entry in entries]
    return group_by_package(entries, statuses)


def group_by_package(entries: Sequence[DeployEntry], statuses: Sequence[FileStatus]) -> list[PackageStatus]:
    groups: dict[str, list[FileReport]] = defaultdict(list)
    for entry, status in zip(entries, statuses):
        groups[entry.package].append(FileReport(entry, status))
    return [PackageStatus(name, tuple(groups[name])) for name in sorted(groups)]


def display_path(path: Path) -> str:
    home = os.environ.get("HOME")
    if home:
        try:
            rest = path.relative_to(home)
        except ValueError:
            return str(path)
        return f"~/{rest.as_posix()}"
    return str(path)


def files_label(count: int) -> str:
    return "1 file" if count == 1 else f"{count} files"


def render_default(groups: Sequence[PackageStatus], *, verbose: bool = False) -> str:
    """Package headers plus problem files (all files with ``verbose``)."""

    lines: list[str] = []
    for pkg in groups:
        lines.append(f"{pkg.name} ({files_label(pkg.total)}, {pkg.summary()})")
        for item in pkg.files:
            if item.status.is_ok and not verbose:
                continue
            line = f"  {item.marker} {item.display_path}"
            drifted = [name for name in item.status.drifted_fields() if name != "content"]
            if drifted:
                line += f" ({', '.join(drifted)} changed)"
            lines.append(line)
    return "".join(f"{line}\n" for line in lines)


def render_short(groups: Sequence[PackageStatus]) -> str:
    modified = sum(pkg.modified for pkg in groups)
    missing = sum(pkg.missing for pkg in groups)
    if modified == 0 and missing == 0:
        return ""
    return f"dotm: {_problem_summary(modified, missing)}\n"


def render_footer(groups: Sequence[PackageStatus]) -> str:
    total = sum(pkg.total for pkg in groups)
    modified = sum(pkg.modified for pkg in groups)
    missing = sum(pkg.missing for pkg in groups)
    if modified == 0 and missing == 0:
        return f"{total} managed, all ok.\n"
    return f"{total} managed, {_problem_summary(modified, missing)}.\n"


def _problem_summary(modified: int, missing: int) -> str:
    parts: list[str] = []
    if modified:
        parts.append(f"{modified} modified")
    if missing:
        parts.append(f"{missing} missing")
    return ", ".join(parts)
