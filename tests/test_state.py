from __future__ import annotations

import fcntl
import os
import tomllib
from pathlib import Path

import pytest

from dotm.filesystem import hash_content
from dotm.models import DeployEntry, EntryKind
from dotm.state import (
    CURRENT_VERSION,
    LOCK_FILENAME,
    STATE_FILENAME,
    DeployState,
    StateError,
)


def _deploy_file(tmp_path: Path, state: DeployState, name: str, content: str, **extra: object) -> DeployEntry:
    """Lay out a staged file plus a symlink the way a deploy would."""

    staged = tmp_path / "staged" / name
    staged.parent.mkdir(parents=True, exist_ok=True)
    staged.write_text(content)
    target = tmp_path / "target" / name
    target.parent.mkdir(parents=True, exist_ok=True)
    target.symlink_to(staged)

    content_hash = hash_content(content.encode())
    state.store_deployed(content_hash, content.encode())
    entry = DeployEntry(
        target=target,
        staged=staged,
        source=tmp_path / "src" / name,
        content_hash=content_hash,
        kind=EntryKind.BASE,
        package=str(extra.pop("package", "shell")),
        **extra,  # type: ignore[arg-type]
    )
    state.record(entry)
    return entry


def test_load_missing_state_is_empty(tmp_path: Path) -> None:
    state = DeployState.load(tmp_path / "state")
    assert state.entries() == []
    assert state.version == CURRENT_VERSION
    assert not DeployState.exists(tmp_path / "state")


def test_save_and_load_round_trip(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state = DeployState(state_dir)
    first = _deploy_file(tmp_path, state, "zshrc", "export A=1\n", original_hash="abc", mode="644")
    second = _deploy_file(tmp_path, state, "vimrc", "set nu\n", package="editor", owner="root", group="wheel")

    state.save()
    loaded = DeployState.load(state_dir)

    assert loaded.entries() == [first, second]
    with (state_dir / STATE_FILENAME).open("rb") as handle:
        data = tomllib.load(handle)
    assert data["version"] == CURRENT_VERSION
    assert "original_hash" not in data["entries"][1]


def test_record_replaces_by_target(tmp_path: Path) -> None:
    state = DeployState(tmp_path / "state")
    entry = _deploy_file(tmp_path, state, "zshrc", "a\n")

    state.update_hash(entry.target, "deadbeef")

    assert len(state.entries()) == 1
    assert state.get(entry.target).content_hash == "deadbeef"
    with pytest.raises(StateError):
        state.update_hash(tmp_path / "unknown", "x")


def test_newer_version_is_rejected(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    (state_dir / STATE_FILENAME).write_text(f"version = {CURRENT_VERSION + 1}\nentries = []\n")

    with pytest.raises(StateError, match="upgrade dotm"):
        DeployState.load(state_dir)


def test_version_one_layout_is_migrated(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    (state_dir / "originals").mkdir(parents=True)
    (state_dir / "originals" / "abc").write_text("snapshot")
    (state_dir / STATE_FILENAME).write_text("version = 1\nentries = []\n")

    state = DeployState.load(state_dir)

    assert state.version == CURRENT_VERSION
    assert (state_dir / "deployed" / "abc").read_text() == "snapshot"
    assert not (state_dir / "originals").exists()


def test_malformed_state_file(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state_dir.mkdir()
    (state_dir / STATE_FILENAME).write_text("version = 2\n[[entries]]\ntarget = '/x'\n")

    with pytest.raises(StateError, match="malformed entry"):
        DeployState.load(state_dir)


def test_load_locked_holds_exclusive_lock(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"

    with DeployState.load_locked(state_dir) as state:
        assert state.is_locked
        with (state_dir / LOCK_FILENAME).open("a") as other:
            with pytest.raises(BlockingIOError):
                fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)

    assert not state.is_locked
    with (state_dir / LOCK_FILENAME).open("a") as other:
        fcntl.flock(other.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        fcntl.flock(other.fileno(), fcntl.LOCK_UN)


def test_blob_store_is_write_if_absent(tmp_path: Path) -> None:
    state = DeployState(tmp_path / "state")
    state.store_original("h1", b"first")
    state.store_original("h1", b"second")

    assert state.load_original("h1") == b"first"
    with pytest.raises(StateError, match="missing blob"):
        state.load_deployed("nope")


def test_entry_status_ok_modified_missing(tmp_path: Path) -> None:
    state = DeployState(tmp_path / "state")
    entry = _deploy_file(tmp_path, state, "zshrc", "a\n")

    assert state.check_entry_status(entry).is_ok

    entry.staged.write_text("edited\n")
    status = state.check_entry_status(entry)
    assert status.content_modified
    assert status.is_modified

    entry.target.unlink()
    assert state.check_entry_status(entry).is_missing


def test_entry_status_metadata_drift_only_for_managed_fields(tmp_path: Path) -> None:
    state = DeployState(tmp_path / "state")
    managed = _deploy_file(tmp_path, state, "managed", "a\n", mode="600")
    unmanaged = _deploy_file(tmp_path, state, "unmanaged", "b\n")
    os.chmod(managed.staged, 0o600)

    assert state.check_entry_status(managed).is_ok

    os.chmod(managed.staged, 0o644)
    os.chmod(unmanaged.staged, 0o600)

    status = state.check_entry_status(managed)
    assert status.mode_changed
    assert status.drifted_fields() == ["mode"]
    assert state.check_entry_status(unmanaged).is_ok


def test_restore_brings_back_original(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state = DeployState(state_dir)
    original = b"original content\n"
    original_hash = hash_content(original)
    state.store_original(original_hash, original)
    entry = _deploy_file(
        tmp_path,
        state,
        "bashrc",
        "managed\n",
        original_hash=original_hash,
        original_mode="600",
    )
    state.save()

    restored = state.restore()

    assert restored == 1
    assert not entry.target.is_symlink()
    assert entry.target.read_bytes() == original
    assert oct(entry.target.stat().st_mode & 0o777) == "0o600"
    assert not entry.staged.exists()
    assert not (state_dir / STATE_FILENAME).exists()
    assert not (state_dir / "originals").exists()


def test_restore_removes_new_files(tmp_path: Path) -> None:
    state = DeployState(tmp_path / "state")
    entry = _deploy_file(tmp_path, state, "new.conf", "x\n")

    assert state.restore(dry_run=True) == 1
    assert entry.target.is_symlink()

    assert state.restore() == 1
    assert not entry.target.is_symlink()
    assert not entry.target.exists()


def test_filtered_restore_keeps_other_packages(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state = DeployState(state_dir)
    shell = _deploy_file(tmp_path, state, "zshrc", "a\n")
    editor = _deploy_file(tmp_path, state, "vimrc", "b\n", package="editor")

    assert state.restore("shell") == 1

    assert not shell.target.is_symlink()
    assert editor.target.is_symlink()
    assert [entry.target for entry in DeployState.load(state_dir).entries()] == [editor.target]


def test_undeploy_counts_removed_targets(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state = DeployState(state_dir)
    first = _deploy_file(tmp_path, state, "one", "1\n")
    second = _deploy_file(tmp_path, state, "two", "2\n")
    second.target.unlink()
    state.save()

    assert state.undeploy() == 1

    assert not first.target.is_symlink()
    assert not first.staged.exists()
    assert not (state_dir / STATE_FILENAME).exists()
    assert not (state_dir / "deployed").exists()


def test_remove_entries_leaves_saving_to_caller(tmp_path: Path) -> None:
    state_dir = tmp_path / "state"
    state = DeployState(state_dir)
    keep = _deploy_file(tmp_path, state, "keep", "k\n")
    drop = _deploy_file(tmp_path, state, "drop", "d\n")
    state.save()

    removed = state.remove_entries([drop.target])

    assert removed == [drop.target]
    assert not drop.target.is_symlink()
    assert [entry.target for entry in state.entries()] == [keep.target]
    assert len(DeployState.load(state_dir).entries()) == 2
