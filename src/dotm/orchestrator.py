"""High level orchestration for dotm deployments."""

from __future__ import annotations

import shutil
from dataclasses import dataclass
from itertools import groupby
from operator import attrgetter
from pathlib import Path
from typing import Iterable, Sequence

from .config import ConfigLoader, ConfigError, PackageConfig, RootConfig, expand_path, package_format_errors
from .filesystem import (
    ensure_parent,
    ensure_symlink,
    hash_content,
    hash_file,
    is_regular_file,
    path_present,
    remove_path,
    symlink_points_to,
    write_file,
)
from .hooks import run_hook
from .logging import get_logger
from .metadata import apply_mode, apply_ownership, read_file_metadata, resolve_metadata
from .models import (
    DeployEntry,
    DeployOutcome,
    DeployReport,
    DeployStrategy,
    EntryKind,
    FileAction,
    ResolvedMetadata,
)
from .resolver import resolve_packages
from .scanner import scan_package
from .state import DeployState
from .template import render_file
from .vars import merge_vars

STAGING_DIRNAME = ".staged"

logger = get_logger("orchestrator")


class DotmError(RuntimeError):
    """Raised when dotm encounters an unrecoverable state."""


class CollisionError(DotmError):
    """Two packages would write the same staged path."""


@dataclass(frozen=True, slots=True)
class PendingAction:
    """A planned file deployment, with template output already rendered."""

    package: str
    action: FileAction
    target_dir: Path
    strategy: DeployStrategy
    metadata: ResolvedMetadata
    rendered: str | None = None

    @property
    def target_path(self) -> Path:
        return self.target_dir / self.action.target_rel_path

    def content(self) -> bytes:
        if self.rendered is not None:
            return self.rendered.encode("utf-8")
        return self.action.source.read_bytes()


class Orchestrator:
    """Plans and applies deployments for one dotfiles directory.

    ``target_dir``, ``state_dir`` and the staging root are passed in by the
    caller; nothing here looks at the environment.
    """

    def __init__(
        self,
        dotfiles_dir: Path,
        target_dir: Path,
        state_dir: Path,
        *,
        staging_dir: Path | None = None,
        system_mode: bool = False,
    ) -> None:
        self.dotfiles_dir = Path(dotfiles_dir).absolute()
        self.loader = ConfigLoader(self.dotfiles_dir)
        self.target_dir = Path(target_dir).absolute()
        self.state_dir = Path(state_dir).absolute()
        self.system_mode = system_mode
        if staging_dir is None:
            staging_dir = (self.state_dir if system_mode else self.dotfiles_dir) / STAGING_DIRNAME
        self.staging_dir = Path(staging_dir).absolute()

    @property
    def root(self) -> RootConfig:
        return self.loader.root

    def plan(self, hostname: str, packages: Iterable[str] | None = None) -> list[PendingAction]:
        """Resolve, scan and render everything ``hostname`` should receive.

        Has no filesystem effects. Only packages matching the current privilege
        mode are included.
        """

        host = self.loader.load_host(hostname)

        requested: list[str] = []
        variables: dict[str, object] = {}
        for role_name in host.roles:
            role = self.loader.load_role(role_name)
            for name in role.packages:
                if name not in requested:
                    requested.append(name)
            variables = merge_vars(variables, role.vars)
        variables = merge_vars(variables, host.vars)

        resolved = resolve_packages(self.root, requested)
        if packages is not None:
            wanted = list(packages)
            missing = [name for name in wanted if name not in resolved]
            if missing:
                raise DotmError(f"host '{hostname}' does not deploy package(s): {', '.join(missing)}")
            resolved = [name for name in resolved if name in wanted]

        pending: list[PendingAction] = []
        for name in resolved:
            pkg = self.root.packages[name]
            if pkg.system != self.system_mode:
                continue

            errors = package_format_errors(name, pkg)
            if errors:
                raise ConfigError("; ".join(errors))

            pkg_dir = self.loader.package_dir(name)
            if not pkg_dir.is_dir():
                logger.warning("Package directory not found: %s", pkg_dir)
                continue

            target_dir = self._package_target(name, pkg)
            for action in scan_package(pkg_dir, hostname, host.roles):
                rendered = render_file(action.source, variables) if action.kind is EntryKind.TEMPLATE else None
                pending.append(
                    PendingAction(
                        package=name,
                        action=action,
                        target_dir=target_dir,
                        strategy=pkg.effective_strategy,
                        metadata=resolve_metadata(pkg, action.target_rel_path.as_posix()),
                        rendered=rendered,
                    )
                )

        return pending

    def deploy(
        self,
        hostname: str,
        *,
        dry_run: bool = False,
        force: bool = False,
        packages: Iterable[str] | None = None,
    ) -> DeployReport:
        package_filter = list(packages) if packages is not None else None
        pending = self.plan(hostname, package_filter)
        self.check_collisions(pending)

        report = DeployReport()
        if dry_run:
            state = DeployState.load(self.state_dir)
            for item in pending:
                reason = self._conflict_reason(item, state.get(item.target_path), force=force)
                outcome = DeployOutcome.CONFLICT if reason else DeployOutcome.DRY_RUN
                report.record(outcome, item.target_path, reason)
            return report

        with DeployState.load_locked(self.state_dir) as state:
            try:
                for name, group in groupby(pending, key=attrgetter("package")):
                    actions = list(group)
                    pkg = self.root.packages[name]
                    self._run_package_hook(pkg.pre_deploy, actions[0].target_dir, name, "pre_deploy")
                    for item in actions:
                        outcome, reason = self._apply(item, state, force=force)
                        logger.debug("%s: %s", outcome.value, item.target_path)
                        report.record(outcome, item.target_path, reason)
                    self._run_package_hook(pkg.post_deploy, actions[0].target_dir, name, "post_deploy")

                if package_filter is None:
                    report.orphaned.extend(self._find_orphans(pending, state))
                    if report.orphaned and self.root.dotm.auto_prune:
                        report.pruned.extend(state.remove_entries(report.orphaned))
            finally:
                state.save()

        if not self.system_mode:
            self._warn_unignored_staging()
        return report

    def prune(self, hostname: str, *, dry_run: bool = False) -> list[Path]:
        """Remove tracked files the current configuration no longer produces."""

        pending = self.plan(hostname)
        if dry_run:
            return self._find_orphans(pending, DeployState.load(self.state_dir))

        with DeployState.load_locked(self.state_dir) as state:
            pruned = state.remove_entries(self._find_orphans(pending, state))
            state.save()
        return pruned

    def add(self, package: str, files: Sequence[Path], *, force: bool = False) -> list[Path]:
        """Move existing files into ``package`` so the next deploy manages them."""

        pkg = self.root.package(package)
        target_dir = self._package_target(package, pkg).absolute()
        pkg_dir = self.loader.package_dir(package)

        moves: list[tuple[Path, Path]] = []
        for raw in files:
            path = Path(raw).expanduser().absolute()
            if path.is_symlink():
                raise DotmError(f"'{path}' is a symlink; it may already be managed")
            if not path.is_file():
                raise DotmError(f"'{path}' is not a regular file")
            try:
                rel_path = path.relative_to(target_dir)
            except ValueError:
                raise DotmError(f"'{path}' is not inside the target directory '{target_dir}'") from None
            destination = pkg_dir / rel_path
            if path_present(destination) and not force:
                raise DotmError(f"'{destination}' already exists in package '{package}'; use --force to overwrite")
            moves.append((path, destination))

        for path, destination in moves:
            ensure_parent(destination)
            remove_path(destination)
            shutil.move(str(path), str(destination))
            logger.info("Moved %s to %s", path, destination)

        return [destination for _, destination in moves]

    def check_collisions(self, pending: Sequence[PendingAction]) -> None:
        """Fail if two staged actions would share a staged path."""

        owners: dict[Path, str] = {}
        for item in pending:
            if item.strategy is not DeployStrategy.STAGE:
                continue
            key = self._staged_path(item)
            existing = owners.get(key)
            if existing is not None:
                raise CollisionError(
                    f"staging collision -- packages '{existing}' and '{item.package}' both deploy "
                    f"{item.action.target_rel_path.as_posix()}"
                )
            owners[key] = item.package

    # ------------------------------------------------------------------
    # Internal helpers

    def _package_target(self, name: str, pkg: PackageConfig) -> Path:
        if pkg.target is not None:
            return expand_path(pkg.target, context=f"package '{name}'")
        return self.target_dir

    def _staged_path(self, item: PendingAction) -> Path:
        if item.strategy is DeployStrategy.COPY:
            return item.target_path
        return self.staging_dir / item.action.target_rel_path

    def _conflict_reason(self, item: PendingAction, previous: DeployEntry | None, *, force: bool) -> str | None:
        target = item.target_path

        if previous is not None and not force and previous.staged.is_file():
            if hash_file(previous.staged) != previous.content_hash:
                return "modified since last deploy"

        if target.is_symlink() or not target.exists():
            return None
        if target.is_dir():
            return "target exists and is a directory"
        if item.strategy is DeployStrategy.COPY and previous is not None:
            return None
        if not force:
            return "file already exists and is not managed by dotm"
        return None

    def _apply(self, item: PendingAction, state: DeployState, *, force: bool) -> tuple[DeployOutcome, str | None]:
        target = item.target_path
        previous = state.get(target)

        reason = self._conflict_reason(item, previous, force=force)
        if reason is not None:
            logger.warning("Skipping %s: %s", target, reason)
            return DeployOutcome.CONFLICT, reason

        staged = self._staged_path(item)
        content = item.content()
        content_hash = hash_content(content)

        if previous is not None:
            original = (
                previous.original_hash,
                previous.original_owner,
                previous.original_group,
                previous.original_mode,
            )
        elif is_regular_file(target):
            original = self._snapshot_original(target, state)
        else:
            original = (None, None, None, None)

        if previous is not None and self._is_current(item, previous, staged, content_hash):
            self._apply_metadata(staged, item.metadata)
            outcome = DeployOutcome.UNCHANGED
        else:
            if item.strategy is DeployStrategy.STAGE:
                self._write(item, staged)
                ensure_symlink(target, staged.resolve())
            else:
                self._write(item, target)
            outcome = DeployOutcome.CREATED if previous is None else DeployOutcome.UPDATED

        state.store_deployed(content_hash, content)
        original_hash, original_owner, original_group, original_mode = original
        state.record(
            DeployEntry(
                target=target,
                staged=staged,
                source=item.action.source.resolve(),
                content_hash=content_hash,
                kind=item.action.kind,
                package=item.package,
                original_hash=original_hash,
                owner=item.metadata.owner,
                group=item.metadata.group,
                mode=item.metadata.mode,
                original_owner=original_owner,
                original_group=original_group,
                original_mode=original_mode,
            )
        )
        return outcome, None

    def _is_current(self, item: PendingAction, previous: DeployEntry, staged: Path, content_hash: str) -> bool:
        if previous.content_hash != content_hash or previous.staged != staged:
            return False
        if not staged.is_file() or hash_file(staged) != content_hash:
            return False
        if item.strategy is DeployStrategy.STAGE:
            return symlink_points_to(item.target_path, staged)
        return True

    def _write(self, item: PendingAction, destination: Path) -> None:
        if item.rendered is not None:
            write_file(destination, content=item.rendered)
        else:
            write_file(destination, source=item.action.source)
        self._apply_metadata(destination, item.metadata)

    def _snapshot_original(
        self, target: Path, state: DeployState
    ) -> tuple[str | None, str | None, str | None, str | None]:
        content = target.read_bytes()
        original_hash = hash_content(content)
        state.store_original(original_hash, content)
        owner, group, mode = read_file_metadata(target)
        logger.debug("Saved original %s as %s", target, original_hash)
        return original_hash, owner, group, mode

    def _apply_metadata(self, path: Path, metadata: ResolvedMetadata) -> None:
        if metadata.owner is not None or metadata.group is not None:
            try:
                apply_ownership(path, metadata.owner, metadata.group)
            except (OSError, LookupError) as exc:
                logger.warning("Failed to set ownership on %s: %s", path, exc)
        if metadata.mode is not None:
            apply_mode(path, metadata.mode)

    def _find_orphans(self, pending: Sequence[PendingAction], state: DeployState) -> list[Path]:
        desired = {item.target_path for item in pending}
        return [
            entry.target
            for entry in state.entries()
            if entry.target not in desired and self._in_current_mode(entry.package)
        ]

    def _in_current_mode(self, package: str) -> bool:
        pkg = self.root.packages.get(package)
        return pkg is None or pkg.system == self.system_mode

    def _run_package_hook(self, command: str | None, target_dir: Path, package: str, action: str) -> None:
        if not command:
            return
        target_dir.mkdir(parents=True, exist_ok=True)
        run_hook(command, target_dir, package, action)

    def _warn_unignored_staging(self) -> None:
        gitignore = self.dotfiles_dir / ".gitignore"
        if gitignore.is_file():
            lines = {line.strip() for line in gitignore.read_text(encoding="utf-8").splitlines()}
            if lines & {STAGING_DIRNAME, f"{STAGING_DIRNAME}/", f"/{STAGING_DIRNAME}", f"/{STAGING_DIRNAME}/"}:
                return
        logger.warning("'%s/' is not in your .gitignore; add it to avoid committing staged files", STAGING_DIRNAME)
