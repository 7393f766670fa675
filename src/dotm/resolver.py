"""Package dependency resolution."""

from __future__ import annotations

from typing import Iterable

from .config import RootConfig


class ResolutionError(RuntimeError):
    """Raised when the requested packages cannot be expanded into a valid order."""


class UnknownPackageError(ResolutionError):
    """A requested package, or a dependency of one, is not declared."""

    def __init__(self, name: str, dependent: str | None = None) -> None:
        self.name = name
        self.dependent = dependent
        if dependent is None:
            message = f"unknown package: '{name}'"
        else:
            message = f"package '{dependent}' depends on unknown package '{name}'"
        super().__init__(message)


class CircularDependencyError(ResolutionError):
    """The ``depends`` graph contains a cycle."""

    def __init__(self, cycle: list[str]) -> None:
        self.cycle = cycle
        super().__init__(f"circular dependency detected: {' -> '.join(cycle)}")


def resolve_packages(root: RootConfig, requested: Iterable[str]) -> list[str]:
    """Expand ``requested`` into a dependency-ordered, deduplicated list.

    Dependencies always come before the packages that depend on them. A package
    shared by several requested names appears once, ahead of its first
    dependent. ``suggests`` entries are never followed.
    """

    resolved: list[str] = []
    seen: set[str] = set()

    for name in requested:
        _resolve_one(root, name, resolved, seen, [], dependent=None)

    return resolved


def _resolve_one(
    root: RootConfig,
    name: str,
    resolved: list[str],
    seen: set[str],
    stack: list[str],
    *,
    dependent: str | None,
) -> None:
    if name in seen:
        return

    if name in stack:
        start = stack.index(name)
        raise CircularDependencyError(stack[start:] + [name])

    pkg = root.packages.get(name)
    if pkg is None:
        raise UnknownPackageError(name, dependent)

    stack.append(name)
    for dep in pkg.depends:
        _resolve_one(root, dep, resolved, seen, stack, dependent=name)
    stack.pop()

    seen.add(name)
    resolved.append(name)
