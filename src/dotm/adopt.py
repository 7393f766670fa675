"""Merge edits made to deployed files back into the package sources."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable

from .diff import Hunk, apply_hunks, extract_hunks
from .filesystem import hash_content
from .logging import get_logger
from .models import EntryKind
from .state import DeployState

logger = get_logger("adopt")


class Decision(str, Enum):
    """Answer to a single hunk prompt."""

    ACCEPT = "y"
    REJECT = "n"
    ACCEPT_ALL = "a"
    QUIT = "q"


# (file label, hunk, 1-based index, hunk count) -> decision
Decider = Callable[[str, Hunk, int, int], Decision]


@dataclass(slots=True)
class AdoptReport:
    adopted: list[Path] = field(default_factory=list)
    skipped: list[Path] = field(default_factory=list)
    quit: bool = False


def choose_hunks(label: str, hunks: list[Hunk], decide: Decider) -> tuple[list[bool], bool]:
    """Ask ``decide`` about each hunk; returns the flags and whether the user quit."""

    accepted = [False] * len(hunks)
    for index, hunk in enumerate(hunks):
        decision = decide(label, hunk, index + 1, len(hunks))
        if decision is Decision.ACCEPT:
            accepted[index] = True
        elif decision is Decision.ACCEPT_ALL:
            for rest in range(index, len(hunks)):
                accepted[rest] = True
            break
        elif decision is Decision.QUIT:
            return accepted, True
    return accepted, False


def adopt(state: DeployState, decide: Decider, *, label: Callable[[Path], str] = str) -> AdoptReport:
    """Offer the on-disk changes of each modified entry for adoption into its source.

    Only entries with at least one accepted hunk are updated: the source file is
    patched, and the entry's hash plus deployed blob move to the current content.
    The caller saves ``state``.
    """

    report = AdoptReport()
    for entry in state.entries():
        if not state.check_entry_status(entry).content_modified:
            continue
        if entry.kind is EntryKind.TEMPLATE:
            logger.warning("Skipping template %s; edit %s by hand", entry.target, entry.source)
            report.skipped.append(entry.target)
            continue

        current_bytes = entry.staged.read_bytes()
        try:
            current_text = current_bytes.decode("utf-8")
            source_text = entry.source.read_bytes().decode("utf-8")
        except UnicodeDecodeError:
            logger.warning("Skipping binary file %s; copy it into %s by hand", entry.target, entry.source)
            report.skipped.append(entry.target)
            continue
        hunks = extract_hunks(source_text, current_text)
        if not hunks:
            continue

        accepted, quit_requested = choose_hunks(label(entry.target), hunks, decide)
        if any(accepted):
            entry.source.write_text(apply_hunks(source_text, hunks, accepted), encoding="utf-8")
            new_hash = hash_content(current_bytes)
            state.store_deployed(new_hash, current_bytes)
            state.update_hash(entry.target, new_hash)
            report.adopted.append(entry.target)
            logger.debug("Adopted changes from %s into %s", entry.target, entry.source)

        if quit_requested:
            report.quit = True
            break
    return report
