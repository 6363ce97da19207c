# src/chrootbuild/executor/ns_chroot.py
from __future__ import annotations
import shlex
from pathlib import Path
from typing import List

from .base import ExecSpec, Executor
from ..core.models import ROOT_DIRNAME, SandboxLayout


class NsChrootExecutor(Executor):
    """
    unshare (user + mount namespace, root mapped) then chroot.

    The build dir is bind-mounted at the same path inside the root, so nothing in
    the tool root embeds the location and there are no control files to rewrite.
    """

    name = "unshare"
    control_files = ()

    def _shell(self, base: Path, payload: str) -> str:
        root = base / ROOT_DIRNAME
        mnt_app = str(root) + str(base)
        mnt_proc = str(root / "proc")
        return (
            "set -e;"
            f"mkdir -p {shlex.quote(mnt_app)} {shlex.quote(mnt_proc)};"
            f"mount --bind {shlex.quote(str(base))} {shlex.quote(mnt_app)};"
            f"mount -t proc proc {shlex.quote(mnt_proc)} || true;"
            f"exec chroot {shlex.quote(str(root))} {payload}"
        )

    def _argv(self, layout: SandboxLayout, spec: ExecSpec) -> List[str]:
        inner = f"cd {shlex.quote(str(spec.workdir))} && exec {shlex.join(spec.cmd)}"
        payload = shlex.join(["/usr/bin/env", "-i", *self.sandbox_env(spec.env), "/bin/sh", "-c", inner])
        return [
            "unshare", "--user", "--map-root-user", "--mount", "--fork",
            "sh", "-c", self._shell(layout.base, payload),
        ]

    def wrapper_argv(self, base: Path, command: str) -> List[str]:
        # "$@" is appended by the wrapper script; sh -c gets them as positional args
        return [
            "unshare", "--user", "--map-root-user", "--mount", "--fork",
            "sh", "-c", self._shell(base, f'{shlex.quote(command)} "$@"'), "sh",
        ]
