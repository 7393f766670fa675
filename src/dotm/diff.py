"""Unified diffs and hunk handling for deployed files."""

from __future__ import annotations

import difflib
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from .models import DeployEntry
from .state import DeployState, StateError
from .status import display_path

CONTEXT_LINES = 3


@dataclass(frozen=True, slots=True)
class Hunk:
    """One localized change between two texts.

    ``old_start``/``old_end`` index into the original's lines; ``new_lines``
    replaces that range when the hunk is accepted.
    """

    header: str
    display: str
    old_start: int
    old_end: int
    old_lines: tuple[str, ...]
    new_lines: tuple[str, ...]


def format_unified_diff(original: str, modified: str, label_a: str, label_b: str) -> str:
    """Return ``--- label_a`` / ``+++ label_b`` headers followed by any hunks."""

    output = [f"--- {label_a}\n", f"+++ {label_b}\n"]
    lines = difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        n=CONTEXT_LINES,
    )
    for index, line in enumerate(lines):
        if index < 2:
            continue
        output.append(line if line.endswith("\n") else f"{line}\n")
    return "".join(output)


def extract_hunks(original: str, modified: str) -> list[Hunk]:
    old = original.splitlines(keepends=True)
    new = modified.splitlines(keepends=True)
    matcher = difflib.SequenceMatcher(None, old, new, autojunk=False)

    hunks: list[Hunk] = []
    for group in matcher.get_grouped_opcodes(CONTEXT_LINES):
        if all(tag == "equal" for tag, *_ in group):
            continue
        old_start, old_end = group[0][1], group[-1][2]
        new_start, new_end = group[0][3], group[-1][4]
        header = f"@@ -{old_start + 1},{old_end - old_start} +{new_start + 1},{new_end - new_start} @@"

        display = [header]
        for tag, i1, i2, j1, j2 in group:
            if tag == "equal":
                display.extend(f" {line}" for line in old[i1:i2])
                continue
            if tag in ("replace", "delete"):
                display.extend(f"-{line}" for line in old[i1:i2])
            if tag in ("replace", "insert"):
                display.extend(f"+{line}" for line in new[j1:j2])

        hunks.append(
            Hunk(
                header=header,
                display="".join(line if line.endswith("\n") else f"{line}\n" for line in display),
                old_start=old_start,
                old_end=old_end,
                old_lines=tuple(old[old_start:old_end]),
                new_lines=tuple(new[new_start:new_end]),
            )
        )
    return hunks


def apply_hunks(original: str, hunks: Sequence[Hunk], accepted: Sequence[bool]) -> str:
    """Rebuild ``original`` with the accepted hunks replaced by their new lines."""

    if len(hunks) != len(accepted):
        raise ValueError("accepted must have one flag per hunk")

    lines = original.splitlines(keepends=True)
    result: list[str] = []
    position = 0
    for hunk, take in zip(hunks, accepted):
        result.extend(lines[position : hunk.old_start])
        result.extend(hunk.new_lines if take else lines[hunk.old_start : hunk.old_end])
        position = hunk.old_end
    result.extend(lines[position:])
    return "".join(result)


def diff_entries(state: DeployState, path_filter: Path | None = None) -> list[tuple[DeployEntry, str]]:
    """Diff every content-modified entry against what dotm last deployed.

    The deployed blob is the baseline; if it is gone the package source is
    used instead.
    """

    wanted = Path(path_filter).expanduser().absolute() if path_filter is not None else None
    results: list[tuple[DeployEntry, str]] = []
    for entry in state.entries():
        if wanted is not None and entry.target != wanted:
            continue
        if not state.check_entry_status(entry).content_modified:
            continue

        try:
            baseline = state.load_deployed(entry.content_hash)
        except StateError:
            baseline = entry.source.read_bytes()
        current = entry.staged.read_bytes()

        label = display_path(entry.target)
        text = format_unified_diff(
            baseline.decode("utf-8", errors="replace"),
            current.decode("utf-8", errors="replace"),
            f"deployed: {label}",
            f"current: {label}",
        )
        results.append((entry, text))
    return results
