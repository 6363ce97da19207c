from __future__ import annotations
import os, signal, subprocess, time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

import structlog

from ..core.errors import RewriteError
from ..core.models import CommandResult, SandboxLayout

log = structlog.get_logger(__name__)

TIMEOUT_EXIT_CODE = 124
SPAWN_FAILED_EXIT_CODE = 127

BASE_ENV = {
    "HOME": "/root",
    "PATH": "/usr/local/sbin:/usr/local/bin:/usr/sbin:/usr/bin:/sbin:/bin",
    "LANG": "C.UTF-8",
}


@dataclass
class ExecSpec:
    cmd: List[str]
    workdir: Path
    env: Dict[str, str] = field(default_factory=dict)
    timeout_s: Optional[int] = None


class Executor:
    """
    Runs a command as if the process root were `layout.root`.

    Subclasses only decide the host argv (`_argv`) and which tool-root files embed
    the sandbox location (`control_files`); spawning, capture and timeouts live here.
    """

    name = "base"
    control_files: Tuple[str, ...] = ()

    def __init__(self, *, timeout_s: Optional[int] = None, control_files: Sequence[str] = ()):
        self.timeout_s = timeout_s
        if control_files:
            self.control_files = tuple(control_files)

    # ---------- command builders ----------

    def _argv(self, layout: SandboxLayout, spec: ExecSpec) -> List[str]:
        raise NotImplementedError

    def wrapper_argv(self, base: Path, command: str) -> List[str]:
        """Host argv that runs `command` inside the tree once it lives at `base` (run time)."""
        raise NotImplementedError

    @staticmethod
    def sandbox_env(extra: Mapping[str, str]) -> List[str]:
        env = dict(BASE_ENV)
        env.update(extra or {})
        return [f"{k}={v}" for k, v in env.items()]

    # ---------- run ----------

    def run(
        self,
        layout: SandboxLayout,
        command: str,
        args: Sequence[str] = (),
        workdir: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
    ) -> CommandResult:
        if not layout.anchored:
            raise RewriteError(
                code="sandbox.not_anchored",
                message=f"control files point at {layout.anchored_at}, sandbox lives at {layout.base}",
                data={"anchored_at": str(layout.anchored_at), "base": str(layout.base)},
            )
        spec = ExecSpec(
            cmd=[command, *args],
            workdir=Path(workdir) if workdir else layout.base,
            env=dict(env or {}),
            timeout_s=self.timeout_s,
        )
        argv = self._argv(layout, spec)
        log.info("sandbox_exec", strategy=self.name, cmd=spec.cmd, workdir=str(spec.workdir))
        return self._spawn(argv, cwd=layout.base, timeout_s=spec.timeout_s)

    @staticmethod
    def _spawn(argv: List[str], cwd: Path, timeout_s: Optional[int]) -> CommandResult:
        start = time.time()
        try:
            p = subprocess.Popen(
                argv,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace",
                cwd=str(cwd),
                start_new_session=True,
            )
        except OSError as e:
            # missing or non-executable sandbox tool: reported like a shell would
            log.warning("sandbox_spawn_failed", argv0=argv[0], error=str(e))
            return CommandResult(exit_code=SPAWN_FAILED_EXIT_CODE, output=f"{argv[0]}: {e}\n",
                                 duration_s=time.time() - start)
        try:
            out, _ = p.communicate(timeout=timeout_s)
        except subprocess.TimeoutExpired:
            os.killpg(p.pid, signal.SIGKILL)
            out, _ = p.communicate()
            out = (out or "") + f"\nTIMEOUT after {timeout_s}s\n"
            return CommandResult(exit_code=TIMEOUT_EXIT_CODE, output=out, timed_out=True,
                                 duration_s=time.time() - start)
        return CommandResult(exit_code=p.returncode, output=out or "", duration_s=time.time() - start)
