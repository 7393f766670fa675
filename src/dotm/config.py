"""TOML configuration loading for dotm."""

from __future__ import annotations

import os
import re
import tomllib
from pathlib import Path
from typing import Any, Dict, Type, TypeVar

import tomli_w
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import DeployStrategy

ROOT_CONFIG_FILENAME = "dotm.toml"
HOSTS_DIRNAME = "hosts"
ROLES_DIRNAME = "roles"
PRESERVE_FIELDS = ("owner", "group", "mode")

_VAR_PATTERN = re.compile(r"\$\{([^}]*)\}|\$([A-Za-z_][A-Za-z0-9_]*)")
_PACKAGE_NAME_PATTERN = re.compile(r"[A-Za-z0-9_-]+")
_OCTAL_MODE_PATTERN = re.compile(r"[0-7]{3,4}")

_ModelT = TypeVar("_ModelT", bound=BaseModel)


class ConfigError(RuntimeError):
    """Raised when a configuration document cannot be read, parsed or validated."""


def expand_path(raw: str | os.PathLike[str], context: str | None = None) -> Path:
    """Expand ``$VAR``/``${VAR}`` references and a leading ``~`` in ``raw``.

    Unlike :func:`os.path.expandvars`, an undefined variable is an error rather
    than being left in place.
    """

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1) or match.group(2)
        try:
            return os.environ[name]
        except KeyError:
            prefix = f"{context}: " if context else "path expansion failed: "
            raise ConfigError(f"{prefix}environment variable '{name}' is not defined") from None

    expanded = _VAR_PATTERN.sub(_substitute, str(raw))
    return Path(expanded).expanduser()


class Settings(BaseModel):
    """The ``[dotm]`` table of the root document."""

    model_config = ConfigDict(frozen=True)

    target: str
    packages_dir: str = "packages"
    auto_prune: bool = False


class PackageConfig(BaseModel):
    """A ``[packages.<name>]`` declaration."""

    model_config = ConfigDict(frozen=True)

    description: str | None = None
    depends: tuple[str, ...] = ()
    suggests: tuple[str, ...] = ()
    target: str | None = None
    strategy: DeployStrategy | None = None
    system: bool = False
    owner: str | None = None
    group: str | None = None
    permissions: Dict[str, str] = Field(default_factory=dict)
    ownership: Dict[str, str] = Field(default_factory=dict)
    preserve: Dict[str, tuple[str, ...]] = Field(default_factory=dict)
    pre_deploy: str | None = None
    post_deploy: str | None = None

    @property
    def effective_strategy(self) -> DeployStrategy:
        return self.strategy or DeployStrategy.STAGE


class RootConfig(BaseModel):
    """Fully parsed ``dotm.toml``."""

    model_config = ConfigDict(frozen=True)

    dotm: Settings
    packages: Dict[str, PackageConfig] = Field(default_factory=dict)

    def package(self, name: str) -> PackageConfig:
        try:
            return self.packages[name]
        except KeyError as exc:
            raise ConfigError(f"Unknown package '{name}'") from exc


class HostConfig(BaseModel):
    """A ``hosts/<hostname>.toml`` document."""

    model_config = ConfigDict(frozen=True)

    hostname: str
    roles: tuple[str, ...]
    vars: Dict[str, Any] = Field(default_factory=dict)


class RoleConfig(BaseModel):
    """A ``roles/<name>.toml`` document."""

    model_config = ConfigDict(frozen=True)

    packages: tuple[str, ...]
    vars: Dict[str, Any] = Field(default_factory=dict)


class ConfigLoader:
    """Loads the root, host and role documents of a dotfiles directory."""

    def __init__(self, base_dir: Path) -> None:
        self.base_dir = Path(base_dir)
        self.root = _read_document(self.base_dir / ROOT_CONFIG_FILENAME, RootConfig, kind="root")

    @property
    def packages_dir(self) -> Path:
        return self.base_dir / self.root.dotm.packages_dir

    def package_dir(self, name: str) -> Path:
        return self.packages_dir / name

    def load_host(self, hostname: str) -> HostConfig:
        path = self.base_dir / HOSTS_DIRNAME / f"{hostname}.toml"
        return _read_document(path, HostConfig, kind="host")

    def load_role(self, name: str) -> RoleConfig:
        path = self.base_dir / ROLES_DIRNAME / f"{name}.toml"
        return _read_document(path, RoleConfig, kind="role")

    def list_hosts(self) -> list[str]:
        return _list_documents(self.base_dir / HOSTS_DIRNAME)

    def list_roles(self) -> list[str]:
        return _list_documents(self.base_dir / ROLES_DIRNAME)


def package_format_errors(name: str, pkg: PackageConfig) -> list[str]:
    """Return malformed ownership, permission and preserve values of one package."""

    errors: list[str] = []
    for path, value in sorted(pkg.ownership.items()):
        parts = value.split(":")
        if len(parts) != 2 or not all(parts):
            errors.append(
                f"package '{name}': invalid ownership format for '{path}': expected 'user:group', got '{value}'"
            )
    for path, value in sorted(pkg.permissions.items()):
        if not _is_octal_mode(value):
            errors.append(f"package '{name}': invalid permission for '{path}': '{value}' is not valid octal")
    for path, fields in sorted(pkg.preserve.items()):
        for field in fields:
            if field not in PRESERVE_FIELDS:
                errors.append(f"package '{name}': file '{path}': unknown preserve field '{field}'")
    return errors


def validate_packages(root: RootConfig) -> list[str]:
    """Collect every declaration problem across all packages."""

    errors: list[str] = []
    for name in sorted(root.packages):
        pkg = root.packages[name]
        if pkg.system:
            if pkg.target is None:
                errors.append(f"system package '{name}' must specify a target directory")
            if pkg.strategy is None:
                errors.append(f"system package '{name}' must specify a deployment strategy")

        errors.extend(package_format_errors(name, pkg))

        for path, fields in sorted(pkg.preserve.items()):
            for field in fields:
                if field in ("owner", "group") and path in pkg.ownership:
                    errors.append(
                        f"package '{name}': file '{path}' has both preserve {field} and ownership override"
                    )
                elif field == "mode" and path in pkg.permissions:
                    errors.append(f"package '{name}': file '{path}' has both preserve mode and permission override")
    return errors


def init_package(base_dir: Path, name: str) -> Path:
    """Create ``packages/<name>`` and declare it in ``dotm.toml``."""

    if not _PACKAGE_NAME_PATTERN.fullmatch(name):
        raise ConfigError(f"invalid package name '{name}': use letters, digits, '-' and '_'")

    loader = ConfigLoader(base_dir)
    if name in loader.root.packages:
        raise ConfigError(f"package '{name}' is already declared")
    pkg_dir = loader.package_dir(name)
    if pkg_dir.exists():
        raise ConfigError(f"package directory '{pkg_dir}' already exists")

    pkg_dir.mkdir(parents=True)
    config_path = loader.base_dir / ROOT_CONFIG_FILENAME
    text = config_path.read_text(encoding="utf-8")
    separator = "\n" if text.endswith("\n") else "\n\n"
    config_path.write_text(text + separator + tomli_w.dumps({"packages": {name: {}}}), encoding="utf-8")
    return pkg_dir


def _is_octal_mode(value: str) -> bool:
    return _OCTAL_MODE_PATTERN.fullmatch(value) is not None


def _read_document(path: Path, model: Type[_ModelT], *, kind: str) -> _ModelT:
    if not path.is_file():
        raise ConfigError(f"{kind} config not found: {path}")

    try:
        with path.open("rb") as handle:
            data = tomllib.load(handle)
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"failed to parse {path}: {exc}") from exc
    except OSError as exc:
        raise ConfigError(f"failed to read {path}: {exc}") from exc

    try:
        return model.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"invalid {kind} config {path}: {exc}") from exc


def _list_documents(directory: Path) -> list[str]:
    if not directory.is_dir():
        return []
    return sorted(path.stem for path in directory.glob("*.toml") if path.is_file())
