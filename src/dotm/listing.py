"""Text and tree views of packages, roles and hosts."""

from __future__ import annotations

from rich.tree import Tree

from .config import ConfigError, ConfigLoader, RootConfig


def render_packages(root: RootConfig, *, verbose: bool = False) -> str:
    lines: list[str] = []
    for name in sorted(root.packages):
        pkg = root.packages[name]
        lines.append(f"{name} - {pkg.description}" if pkg.description else name)
        if not verbose:
            continue
        if pkg.depends:
            lines.append(f"  depends: {', '.join(pkg.depends)}")
        if pkg.suggests:
            lines.append(f"  suggests: {', '.join(pkg.suggests)}")
        if pkg.target is not None:
            lines.append(f"  target: {pkg.target}")
        if pkg.strategy is not None:
            lines.append(f"  strategy: {pkg.strategy.value}")
        if pkg.system:
            lines.append("  system: true")
    return "".join(f"{line}\n" for line in lines)


def render_roles(loader: ConfigLoader, *, verbose: bool = False) -> str:
    lines: list[str] = []
    for name in loader.list_roles():
        if verbose:
            try:
                role = loader.load_role(name)
            except ConfigError:
                lines.append(f"{name} [invalid]")
                continue
            lines.append(f"{name} [{', '.join(role.packages)}]")
        else:
            lines.append(name)
    return "".join(f"{line}\n" for line in lines)


def render_hosts(loader: ConfigLoader, *, verbose: bool = False) -> str:
    lines: list[str] = []
    for name in loader.list_hosts():
        if verbose:
            try:
                host = loader.load_host(name)
            except ConfigError:
                lines.append(f"{name} [invalid]")
                continue
            lines.append(f"{name} [{', '.join(host.roles)}]")
        else:
            lines.append(name)
    return "".join(f"{line}\n" for line in lines)


def build_tree(loader: ConfigLoader) -> Tree:
    """Host -> role -> package hierarchy; unreadable documents become leaves."""

    tree = Tree("hosts", hide_root=True)
    for host_name in loader.list_hosts():
        host_node = tree.add(host_name)
        try:
            host = loader.load_host(host_name)
        except ConfigError:
            continue
        for role_name in host.roles:
            role_node = host_node.add(role_name)
            try:
                role = loader.load_role(role_name)
            except ConfigError:
                continue
            for pkg_name in role.packages:
                role_node.add(pkg_name)
    return tree
