from __future__ import annotations
from pathlib import Path
from typing import List, Mapping, Optional, Sequence

import structlog

from ..core.errors import DependencyInstallError
from ..core.models import SandboxLayout
from ..core.utils import read_lines
from ..executor.base import Executor

log = structlog.get_logger(__name__)

APT_ENV = {"DEBIAN_FRONTEND": "noninteractive"}


def read_manifest(path: Path) -> List[str]:
    """One package per line. Missing file -> empty list."""
    return read_lines(Path(path))


class DependencyInstaller:
    def __init__(self, executor: Executor, env: Optional[Mapping[str, str]] = None):
        self.executor = executor
        self.env = {**APT_ENV, **(env or {})}

    def _apt(self, layout: SandboxLayout, *args: str):
        return self.executor.run(layout, "apt-get", list(args), workdir=Path("/"), env=self.env)

    def install_all(self, layout: SandboxLayout, package_names: Sequence[str]) -> None:
        names = [n for n in package_names if n]
        if not names:
            return

        res = self._apt(layout, "update", "-q")
        if not res.ok:
            # a stale index can still satisfy the install
            log.warning("apt_update_failed", exit_code=res.exit_code)
            log.debug("apt_update_output", output=res.output)

        res = self._apt(layout, "install", "-y", "-q", "--no-install-recommends", *names)
        if not res.ok:
            raise DependencyInstallError(
                code="deps.install_failed",
                message=f"apt-get install exited {res.exit_code} for: {' '.join(names)}",
                data={"exit_code": res.exit_code, "packages": names, "output": res.output},
            )
        log.info("deps_installed", packages=names)
        log.debug("apt_install_output", output=res.output)

        # prune caches/indices, they only bloat the tree
        res = self.executor.run(
            layout, "/bin/sh", ["-c", "apt-get clean && rm -rf /var/lib/apt/lists/*"],
            workdir=Path("/"), env=self.env,
        )
        if not res.ok:
            log.warning("apt_prune_failed", exit_code=res.exit_code)
