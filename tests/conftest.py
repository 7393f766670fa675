from __future__ import annotations

import logging
from pathlib import Path

import pytest
import tomli_w


@pytest.fixture
def fake_home(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))
    monkeypatch.setenv("USERPROFILE", str(home))
    monkeypatch.delenv("XDG_STATE_HOME", raising=False)
    monkeypatch.delenv("DOTM_DIR", raising=False)
    return home


@pytest.fixture(autouse=True)
def _reset_dotm_logger():
    yield
    logger = logging.getLogger("dotm")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


class DotfilesTree:
    """Builds a dotfiles directory on disk for a test."""

    def __init__(self, root: Path, target: Path, state_dir: Path) -> None:
        self.root = root
        self.target = target
        self.state_dir = state_dir
        self.root.mkdir(parents=True, exist_ok=True)
        (self.root / ".gitignore").write_text(".staged/\n")
        self._settings: dict[str, object] = {"target": str(target)}
        self._packages: dict[str, dict[str, object]] = {}
        self._flush()

    @property
    def staging_dir(self) -> Path:
        return self.root / ".staged"

    def settings(self, **values: object) -> None:
        self._settings.update(values)
        self._flush()

    def package(self, name: str, **values: object) -> Path:
        self._packages[name] = dict(values)
        self._flush()
        pkg_dir = self.root / "packages" / name
        pkg_dir.mkdir(parents=True, exist_ok=True)
        return pkg_dir

    def file(self, package: str, rel_path: str, content: str) -> Path:
        path = self.root / "packages" / package / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content)
        return path

    def host(self, hostname: str, roles: list[str], **variables: object) -> Path:
        return self._write(self.root / "hosts" / f"{hostname}.toml", {"hostname": hostname, "roles": roles, "vars": variables})

    def role(self, name: str, packages: list[str], **variables: object) -> Path:
        return self._write(self.root / "roles" / f"{name}.toml", {"packages": packages, "vars": variables})

    def _flush(self) -> None:
        self._write(self.root / "dotm.toml", {"dotm": self._settings, "packages": self._packages})

    @staticmethod
    def _write(path: Path, data: dict[str, object]) -> Path:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(tomli_w.dumps(data))
        return path


@pytest.fixture
def dotfiles(tmp_path: Path, fake_home: Path) -> DotfilesTree:
    return DotfilesTree(tmp_path / "dotfiles", fake_home, tmp_path / "state")
