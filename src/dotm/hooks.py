"""Package hook execution."""

from __future__ import annotations

import os
import subprocess
from pathlib import Path

from .logging import get_logger

logger = get_logger("hooks")


class HookError(RuntimeError):
    """Raised when a hook command exits with a non-zero status."""


def run_hook(command: str | None, cwd: Path, package: str, action: str) -> None:
    """Run ``command`` through ``sh -c`` inside ``cwd``.

    ``DOTM_PACKAGE``, ``DOTM_TARGET`` and ``DOTM_ACTION`` are exported to the
    hook. Empty commands are no-ops.
    """

    if not command:
        return

    env = dict(os.environ)
    env.update({"DOTM_PACKAGE": package, "DOTM_TARGET": str(cwd), "DOTM_ACTION": action})

    logger.debug("Running %s hook for '%s': %s", action, package, command)
    result = subprocess.run(["sh", "-c", command], cwd=cwd, env=env, check=False)
    if result.returncode != 0:
        raise HookError(
            f"hook failed for package '{package}' ({action}): command '{command}' exited with {result.returncode}"
        )
