from __future__ import annotations
import shlex
from pathlib import Path
from typing import List

from .base import ExecSpec, Executor
from ..core.models import ROOT_DIRNAME, TOOLS_DIRNAME, SandboxLayout


class FakechrootExecutor(Executor):
    """
    fakechroot + fakeroot shipped in the tool root, no privileges needed.

    The build dir itself is excluded from path translation, so the application
    directory has the same absolute path inside and outside the sandbox.
    """

    name = "fakechroot"
    control_files = (
        "usr/bin/fakechroot",
        "usr/bin/fakeroot",
        "etc/fakechroot/chroot.env",
    )

    EXCLUDE = ("/dev", "/proc", "/sys", "/tmp")

    def _chroot_argv(self, base: Path) -> List[str]:
        tools = base / TOOLS_DIRNAME
        exclude = ":".join([str(base), *self.EXCLUDE])
        return [
            str(tools / "usr/bin/fakechroot"),
            "-c", str(tools / "etc/fakechroot"),
            "-e", "chroot",
            str(tools / "usr/bin/fakeroot"),
            "--",
            "env", f"FAKECHROOT_EXCLUDE_PATH={exclude}",
            "chroot", str(base / ROOT_DIRNAME),
        ]

    def _argv(self, layout: SandboxLayout, spec: ExecSpec) -> List[str]:
        inner = f"cd {shlex.quote(str(spec.workdir))} && exec {shlex.join(spec.cmd)}"
        return [
            *self._chroot_argv(layout.base),
            "/usr/bin/env", "-i", *self.sandbox_env(spec.env),
            "/bin/sh", "-c", inner,
        ]

    def wrapper_argv(self, base: Path, command: str) -> List[str]:
        return [*self._chroot_argv(base), command]
