from __future__ import annotations

from pathlib import Path

import pytest
from typer.testing import CliRunner

from dotm.cli import app

runner = CliRunner()


def _write(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(body)
    return path


def _write_dotfiles(root: Path, target: Path) -> Path:
    _write(
        root / "dotm.toml",
        f"""
[dotm]
target = "{target}"

[packages.util]
description = "shared helpers"

[packages.shell]
depends = ["util"]

[packages.git]
""",
    )
    _write(root / ".gitignore", ".staged/\n")
    _write(root / "roles" / "base.toml", 'packages = ["shell", "git"]\n\n[vars.git]\nemail = "me@home"\n')
    _write(root / "roles" / "desktop.toml", 'packages = []\n')
    _write(root / "hosts" / "laptop.toml", 'hostname = "laptop"\nroles = ["base", "desktop"]\n')
    _write(
        root / "hosts" / "work.toml",
        'hostname = "work"\nroles = ["base"]\n\n[vars.git]\nemail = "me@work"\n',
    )

    packages = root / "packages"
    _write(packages / "util" / ".local" / "bin" / "helper", "#!/bin/sh\necho help\n")
    _write(packages / "shell" / ".zshrc", "# base\n")
    _write(packages / "shell" / ".zshrc##role.desktop", "# desktop\n")
    _write(packages / "shell" / ".zshrc##host.work", "# work\n")
    _write(packages / "git" / ".gitconfig.tera", "[user]\n  email = {{ git.email }}\n")
    return root


@pytest.fixture
def env(tmp_path: Path, fake_home: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    return _write_dotfiles(tmp_path / "dotfiles", fake_home)


def test_cli_full_cycle(env: Path, fake_home: Path) -> None:
    (fake_home / ".gitconfig").write_text("[user]\n  email = old@example.com\n")

    first = runner.invoke(app, ["deploy", "--host", "laptop", "--dir", str(env)])
    assert first.exit_code == 1
    assert "1 conflict(s)" in first.stdout
    assert (fake_home / ".zshrc").read_text() == "# desktop\n"
    assert (fake_home / ".local" / "bin" / "helper").is_symlink()

    forced = runner.invoke(app, ["deploy", "--host", "laptop", "--dir", str(env), "--force"])
    assert forced.exit_code == 0, forced.output
    assert (fake_home / ".gitconfig").read_text() == "[user]\n  email = me@home\n"

    again = runner.invoke(app, ["deploy", "--host", "laptop", "--dir", str(env)])
    assert again.exit_code == 0
    assert "0 created, 0 updated, 3 unchanged, 0 conflict(s)." in again.stdout

    status_result = runner.invoke(app, ["status"])
    assert status_result.exit_code == 0
    assert "git (1 file, ok)" in status_result.stdout
    assert "util (1 file, ok)" in status_result.stdout
    assert "3 managed, all ok." in status_result.stdout

    switched = runner.invoke(app, ["deploy", "--host", "work", "--dir", str(env)])
    assert switched.exit_code == 0, switched.output
    assert (fake_home / ".zshrc").read_text() == "# work\n"
    assert (fake_home / ".gitconfig").read_text() == "[user]\n  email = me@work\n"

    restored = runner.invoke(app, ["restore"])
    assert restored.exit_code == 0
    assert "Restored 3 file(s)." in restored.stdout
    assert (fake_home / ".gitconfig").read_text() == "[user]\n  email = old@example.com\n"
    assert not (fake_home / ".gitconfig").is_symlink()
    assert not (fake_home / ".zshrc").exists()


def test_cli_check_and_list(env: Path) -> None:
    check_result = runner.invoke(app, ["check", "--dir", str(env), "--warn-suggestions"])
    assert check_result.exit_code == 0, check_result.output

    packages = runner.invoke(app, ["list", "packages", "--dir", str(env)])
    assert packages.stdout == "git\nshell\nutil - shared helpers\n"

    roles = runner.invoke(app, ["list", "roles", "--dir", str(env), "--verbose"])
    assert roles.stdout == "base [shell, git]\ndesktop []\n"
