"""Command-line interface for dotm."""

from __future__ import annotations

import os
import socket
from enum import Enum
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path

import typer
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from .adopt import Decision, adopt as adopt_changes
from .check import run_check
from .config import ConfigError, ConfigLoader, expand_path, init_package
from .diff import Hunk, diff_entries
from .hooks import HookError
from .listing import build_tree, render_hosts, render_packages, render_roles
from .logging import configure_logging
from .models import DeployReport
from .orchestrator import DotmError, Orchestrator
from .resolver import ResolutionError
from .state import DeployState, StateError
from .status import collect_status, display_path, render_default, render_footer, render_short
from .template import TemplateError

app = typer.Typer(help="Host- and role-aware dotfiles deployment")
console = Console()

SYSTEM_STATE_DIR = Path("/var/lib/dotm")

_DIR_HELP = "Dotfiles directory (default: $DOTM_DIR or ~/dotfiles)"
_SYSTEM_HELP = "Operate on system packages (requires root)"

_ANSWERS = {
    "y": Decision.ACCEPT,
    "yes": Decision.ACCEPT,
    "n": Decision.REJECT,
    "no": Decision.REJECT,
    "a": Decision.ACCEPT_ALL,
    "all": Decision.ACCEPT_ALL,
    "q": Decision.QUIT,
    "quit": Decision.QUIT,
}


class ListKind(str, Enum):
    PACKAGES = "packages"
    ROLES = "roles"
    HOSTS = "hosts"
    TREE = "tree"


def _dotfiles_dir(directory: Path | None) -> Path:
    if directory is not None:
        return directory.expanduser()
    env_dir = os.environ.get("DOTM_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / "dotfiles"


def _state_dir(system: bool) -> Path:
    if system:
        return SYSTEM_STATE_DIR
    xdg_state = os.environ.get("XDG_STATE_HOME")
    if xdg_state:
        return Path(xdg_state) / "dotm"
    return Path.home() / ".local" / "state" / "dotm"


def _require_root(system: bool) -> None:
    if system and os.geteuid() != 0:
        raise DotmError("system mode requires root; re-run with sudo")


def _load_orchestrator(directory: Path | None, system: bool) -> Orchestrator:
    _require_root(system)
    dotfiles_dir = _dotfiles_dir(directory)
    loader = ConfigLoader(dotfiles_dir)
    target_dir = expand_path(loader.root.dotm.target, context="[dotm].target")
    return Orchestrator(dotfiles_dir, target_dir, _state_dir(system), system_mode=system)


def _emit(text: str) -> None:
    if text:
        console.print(text, end="", markup=False, highlight=False, soft_wrap=True)


def _handle_error(exc: Exception) -> None:
    if isinstance(exc, PermissionError):
        console.print(f"[red]Permission denied:[/red] {escape(str(exc))}")
        console.print("[yellow]Tip: re-run with elevated privileges (e.g. `sudo`) or fix the path's ownership.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, ConfigError):
        message = str(exc)
        console.print(f"[red]{escape(message)}[/red]", soft_wrap=True)
        if "root config not found" in message:
            console.print("[yellow]Point --dir (or $DOTM_DIR) at the directory containing dotm.toml.[/yellow]")
        elif "host config not found" in message:
            console.print("[yellow]Create hosts/<hostname>.toml or pass --host.[/yellow]")
        raise typer.Exit(code=1)
    if isinstance(exc, (ResolutionError, TemplateError, StateError, HookError, DotmError)):
        console.print(f"[red]{escape(str(exc))}[/red]", soft_wrap=True)
        raise typer.Exit(code=1)
    raise exc


def _format_deploy_report(report: DeployReport, *, dry_run: bool) -> None:
    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Target", overflow="fold")
    table.add_column("Action")
    table.add_column("Details", overflow="fold")

    rows: list[tuple[str, str, str]] = []
    rows.extend((display_path(path), "[green]created[/green]", "") for path in report.created)
    rows.extend((display_path(path), "[cyan]updated[/cyan]", "") for path in report.updated)
    rows.extend((display_path(path), "would deploy", "") for path in report.dry_run_actions)
    rows.extend((display_path(path), "[red]conflict[/red]", reason) for path, reason in report.conflicts)
    rows.extend((display_path(path), "[yellow]pruned[/yellow]", "") for path in report.pruned)

    if rows:
        for target, action, details in rows:
            table.add_row(escape(target), action, escape(details))
        console.print(table)

    if dry_run:
        console.print(
            f"Dry run: {len(report.dry_run_actions)} to deploy, {len(report.conflicts)} conflict(s).",
            soft_wrap=True,
        )
    else:
        console.print(
            f"{len(report.created)} created, {len(report.updated)} updated, "
            f"{len(report.unchanged)} unchanged, {len(report.conflicts)} conflict(s).",
            soft_wrap=True,
        )

    unpruned = [path for path in report.orphaned if path not in report.pruned]
    if unpruned:
        console.print(f"[yellow]{len(unpruned)} orphaned file(s) are no longer produced by this host:[/yellow]")
        for path in unpruned:
            console.print(f"  {escape(display_path(path))}", soft_wrap=True)
        console.print("[yellow]Run 'dotm prune' to remove them.[/yellow]")


def _prompt_decision(label: str, hunk: Hunk, index: int, total: int) -> Decision:
    if index == 1:
        console.print(f"\n[bold]--- {escape(label)}[/bold]")
    console.print(f"\nHunk {index}/{total}")
    for line in hunk.display.splitlines():
        if line.startswith("@@"):
            console.print(f"[cyan]{escape(line)}[/cyan]", soft_wrap=True)
        elif line.startswith("+"):
            console.print(f"[green]{escape(line)}[/green]", soft_wrap=True)
        elif line.startswith("-"):
            console.print(f"[red]{escape(line)}[/red]", soft_wrap=True)
        else:
            console.print(escape(line), soft_wrap=True, highlight=False)

    while True:
        answer = typer.prompt("Accept this change? [y/n/a/q]", default="", show_default=False)
        decision = _ANSWERS.get(answer.strip().lower())
        if decision is not None:
            return decision
        console.print("  y = accept, n = reject, a = accept all remaining, q = quit")


def _version_callback(value: bool) -> None:
    if not value:
        return
    try:
        current = version("dotm")
    except PackageNotFoundError:
        current = "unknown"
    console.print(f"dotm {current}")
    raise typer.Exit()


@app.callback()
def main(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write logs to this file"),
    show_version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show the version and exit",
    ),
) -> None:
    configure_logging(verbose=verbose, log_file=log_file)


@app.command()
def deploy(
    host: str | None = typer.Option(None, "--host", help="Host to deploy (default: this machine's hostname)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would change without touching files"),
    force: bool = typer.Option(False, "--force", help="Overwrite unmanaged and modified files"),
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
    package: list[str] = typer.Option(None, "--package", "-p", help="Limit to specific package(s)"),
    directory: Path | None = typer.Option(None, "--dir", "-d", help=_DIR_HELP),
) -> None:
    """Deploy the packages of a host into the target directory."""

    try:
        orchestrator = _load_orchestrator(directory, system)
        report = orchestrator.deploy(
            host or socket.gethostname(),
            dry_run=dry_run,
            force=force,
            packages=package or None,
        )
        _format_deploy_report(report, dry_run=dry_run)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    if report.has_conflicts:
        console.print("[red]Some files were skipped.[/red] Review them with 'dotm diff' or re-run with --force.")
        raise typer.Exit(code=1)


@app.command()
def undeploy(
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
    package: str | None = typer.Option(None, "--package", "-p", help="Only undeploy this package"),
) -> None:
    """Remove deployed files without restoring what was there before."""

    try:
        _require_root(system)
        state_dir = _state_dir(system)
        if not DeployState.exists(state_dir):
            console.print("Nothing is deployed.")
            return
        with DeployState.load_locked(state_dir) as state:
            removed = state.undeploy(package)
        console.print(f"Removed {removed} file(s).")
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def status(
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
    package: str | None = typer.Option(None, "--package", "-p", help="Only show this package"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="List every file, not just problems"),
    short: bool = typer.Option(False, "--short", "-s", help="One-line summary (empty when clean)"),
) -> None:
    """Report the health of deployed files."""

    try:
        _require_root(system)
        groups = collect_status(DeployState.load(_state_dir(system)), package)
        if short:
            _emit(render_short(groups))
            return
        if not groups:
            console.print("No files are managed.")
            return
        _emit(render_default(groups, verbose=verbose))
        _emit("\n" + render_footer(groups))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def diff(
    path: Path | None = typer.Argument(None, help="Only diff this target path"),
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
) -> None:
    """Show how deployed files differ from what dotm last wrote."""

    try:
        _require_root(system)
        results = diff_entries(DeployState.load(_state_dir(system)), path)
        if not results:
            console.print("No modified files.")
            return
        for _, text in results:
            _emit(text)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def adopt(
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
) -> None:
    """Interactively copy edits of deployed files back into the package sources."""

    try:
        _require_root(system)
        state_dir = _state_dir(system)
        if not DeployState.exists(state_dir):
            console.print("Nothing is deployed.")
            return
        with DeployState.load_locked(state_dir) as state:
            report = adopt_changes(state, _prompt_decision, label=display_path)
            state.save()
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    for target in report.adopted:
        console.print(f"[green]Adopted[/green] {escape(display_path(target))}", soft_wrap=True)
    for target in report.skipped:
        console.print(
            f"[yellow]Skipped[/yellow] {escape(display_path(target))} (edit its source by hand)", soft_wrap=True
        )
    if not report.adopted and not report.skipped:
        console.print("Nothing adopted.")


@app.command()
def restore(
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
    package: str | None = typer.Option(None, "--package", "-p", help="Only restore this package"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only report how many files would be restored"),
) -> None:
    """Put back the files that existed before dotm deployed over them."""

    try:
        _require_root(system)
        state_dir = _state_dir(system)
        if not DeployState.exists(state_dir):
            console.print("[red]No deployment state found.[/red] Nothing to restore.")
            raise typer.Exit(code=1)
        if dry_run:
            count = DeployState.load(state_dir).restore(package, dry_run=True)
            console.print(f"Would restore {count} file(s).")
            return
        with DeployState.load_locked(state_dir) as state:
            count = state.restore(package)
        console.print(f"Restored {count} file(s).")
    except typer.Exit:
        raise
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


@app.command()
def check(
    warn_suggestions: bool = typer.Option(
        False,
        "--warn-suggestions",
        help="Warn about suggested packages a host does not deploy",
    ),
    directory: Path | None = typer.Option(None, "--dir", "-d", help=_DIR_HELP),
) -> None:
    """Validate the dotfiles configuration and report every problem found."""

    try:
        report = run_check(ConfigLoader(_dotfiles_dir(directory)), warn_suggestions=warn_suggestions)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    for warning in report.warnings:
        console.print(f"[yellow]warning:[/yellow] {escape(warning)}", soft_wrap=True)
    for error in report.errors:
        console.print(f"[red]error:[/red] {escape(error)}", soft_wrap=True)

    if not report.ok:
        console.print(f"[red]{len(report.errors)} problem(s) found.[/red]")
        raise typer.Exit(code=1)
    console.print("[green]Configuration is valid.[/green]")


@app.command()
def add(
    package: str = typer.Argument(..., help="Package to move the files into"),
    files: list[Path] = typer.Argument(..., help="Files under the package's target directory"),
    force: bool = typer.Option(False, "--force", help="Overwrite files already in the package"),
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
    directory: Path | None = typer.Option(None, "--dir", "-d", help=_DIR_HELP),
) -> None:
    """Move existing files into a package."""

    try:
        orchestrator = _load_orchestrator(directory, system)
        moved = orchestrator.add(package, files, force=force)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    for destination in moved:
        console.print(f"[green]Added[/green] {escape(str(destination))}", soft_wrap=True)
    console.print("Run 'dotm deploy' to deploy them.")


@app.command()
def prune(
    host: str | None = typer.Option(None, "--host", help="Host whose configuration is current"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Only list what would be removed"),
    system: bool = typer.Option(False, "--system", help=_SYSTEM_HELP),
    directory: Path | None = typer.Option(None, "--dir", "-d", help=_DIR_HELP),
) -> None:
    """Remove deployed files the configuration no longer produces."""

    try:
        orchestrator = _load_orchestrator(directory, system)
        paths = orchestrator.prune(host or socket.gethostname(), dry_run=dry_run)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return

    verb = "Would remove" if dry_run else "Removed"
    for path in paths:
        console.print(f"{verb} {escape(display_path(path))}", soft_wrap=True)
    console.print(f"{verb} {len(paths)} orphaned file(s).")


@app.command()
def init(
    name: str = typer.Argument(..., help="Name of the new package"),
    directory: Path | None = typer.Option(None, "--dir", "-d", help=_DIR_HELP),
) -> None:
    """Create a new empty package and declare it in dotm.toml."""

    try:
        pkg_dir = init_package(_dotfiles_dir(directory), name)
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)
        return
    console.print(f"[green]Created package '{escape(name)}'[/green] at {escape(str(pkg_dir))}", soft_wrap=True)


@app.command("list")
def list_command(
    kind: ListKind = typer.Argument(ListKind.PACKAGES, help="What to list"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show details"),
    directory: Path | None = typer.Option(None, "--dir", "-d", help=_DIR_HELP),
) -> None:
    """List packages, roles, hosts, or the host/role/package tree."""

    try:
        loader = ConfigLoader(_dotfiles_dir(directory))
        if kind is ListKind.PACKAGES:
            _emit(render_packages(loader.root, verbose=verbose))
        elif kind is ListKind.ROLES:
            _emit(render_roles(loader, verbose=verbose))
        elif kind is ListKind.HOSTS:
            _emit(render_hosts(loader, verbose=verbose))
        else:
            console.print(build_tree(loader))
    except Exception as exc:  # noqa: BLE001
        _handle_error(exc)


def run() -> None:
    """Entry point used for console_script bindings."""

    app()
