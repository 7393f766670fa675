"""Core package for the dotm project."""

from .cli import app, run
from .config import ConfigError, ConfigLoader, HostConfig, PackageConfig, RoleConfig, RootConfig, Settings
from .hooks import HookError
from .models import (
    DeployEntry,
    DeployOutcome,
    DeployReport,
    DeployStrategy,
    EntryKind,
    FileAction,
    FileStatus,
    ResolvedMetadata,
    StatusState,
)
from .orchestrator import CollisionError, DotmError, Orchestrator
from .resolver import CircularDependencyError, ResolutionError, UnknownPackageError, resolve_packages
from .scanner import scan_package
from .state import DeployState, StateError
from .template import TemplateError

__all__ = [
    "ConfigError",
    "ConfigLoader",
    "HostConfig",
    "PackageConfig",
    "RoleConfig",
    "RootConfig",
    "Settings",
    "HookError",
    "DeployEntry",
    "DeployOutcome",
    "DeployReport",
    "DeployStrategy",
    "EntryKind",
    "FileAction",
    "FileStatus",
    "ResolvedMetadata",
    "StatusState",
    "CollisionError",
    "DotmError",
    "Orchestrator",
    "CircularDependencyError",
    "ResolutionError",
    "UnknownPackageError",
    "resolve_packages",
    "scan_package",
    "DeployState",
    "StateError",
    "TemplateError",
    "app",
    "run",
]
