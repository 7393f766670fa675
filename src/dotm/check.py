"""Aggregate validation of a dotfiles directory."""

from __future__ import annotations

from dataclasses import dataclass, field

from .config import ConfigError, ConfigLoader, HostConfig, validate_packages
from .resolver import CircularDependencyError, ResolutionError, resolve_packages


@dataclass(slots=True)
class CheckReport:
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def run_check(loader: ConfigLoader, *, warn_suggestions: bool = False) -> CheckReport:
    """Collect every problem instead of stopping at the first one."""

    root = loader.root
    report = CheckReport()
    report.errors.extend(validate_packages(root))

    for name in sorted(root.packages):
        for dep in root.packages[name].depends:
            if dep not in root.packages:
                report.errors.append(f"package '{name}' depends on unknown package '{dep}'")

    seen_cycles: set[frozenset[str]] = set()
    for name in sorted(root.packages):
        try:
            resolve_packages(root, [name])
        except CircularDependencyError as exc:
            members = frozenset(exc.cycle)
            if members not in seen_cycles:
                seen_cycles.add(members)
                report.errors.append(str(exc))
        except ResolutionError:
            # unknown dependencies are reported above
            continue

    for name in sorted(root.packages):
        pkg_dir = loader.package_dir(name)
        if not pkg_dir.is_dir():
            report.errors.append(f"package '{name}': directory not found: {pkg_dir}")

    known_roles = set(loader.list_roles())
    for role_name in sorted(known_roles):
        try:
            role = loader.load_role(role_name)
        except ConfigError as exc:
            report.errors.append(str(exc))
            continue
        for pkg_name in role.packages:
            if pkg_name not in root.packages:
                report.errors.append(f"role '{role_name}' references unknown package '{pkg_name}'")

    for hostname in loader.list_hosts():
        try:
            host = loader.load_host(hostname)
        except ConfigError as exc:
            report.errors.append(str(exc))
            continue
        for role_name in host.roles:
            if role_name not in known_roles:
                report.errors.append(f"host '{hostname}' references missing role '{role_name}'")
        if warn_suggestions:
            report.warnings.extend(_suggestion_warnings(loader, hostname, host))

    return report


def _suggestion_warnings(loader: ConfigLoader, hostname: str, host: HostConfig) -> list[str]:
    requested: list[str] = []
    try:
        for role_name in host.roles:
            requested.extend(loader.load_role(role_name).packages)
        deployed = resolve_packages(loader.root, requested)
    except (ConfigError, ResolutionError):
        return []

    warnings: list[str] = []
    for name in deployed:
        for suggested in loader.root.packages[name].suggests:
            if suggested not in deployed:
                warnings.append(f"host '{hostname}': package '{name}' suggests '{suggested}', which is not deployed")
    return warnings
