from __future__ import annotations
from pathlib import Path
from typing import Mapping, Optional

import structlog

from ..core.errors import InitScriptError
from ..core.models import InitResult, InitStatus, SandboxLayout
from ..executor.base import Executor

log = structlog.get_logger(__name__)

WRAPPER_NAME = ".chrootbuild-init.R"
SENTINEL_NAME = ".chrootbuild-init.ok"

# The sentinel is only written once the user's script has been sourced without error;
# Rscript may exit 0 even when it didn't get that far under fakechroot/fakeroot.
WRAPPER_TEMPLATE = """\
# generated by chrootbuild, removed after the run
local({{
  options(repos = c(CRAN = "{mirror_url}"))
  Sys.setenv(CRAN_MIRROR = "{mirror_url}")
  setwd("{app_dir}")
  source("{init_script}", echo = TRUE, max.deparse.length = Inf)
  file.create("{sentinel}")
}})
"""


def _r_str(value: str) -> str:
    return value.replace("\\", "\\\\").replace('"', '\\"')


def render_wrapper(init_script: Path, app_dir: Path, mirror_url: str) -> str:
    return WRAPPER_TEMPLATE.format(
        mirror_url=_r_str(mirror_url),
        app_dir=_r_str(str(app_dir)),
        init_script=_r_str(str(init_script)),
        sentinel=_r_str(str(app_dir / SENTINEL_NAME)),
    )


class InitRunner:
    """
    Runs the application's init script inside the sandbox.

    Success is the sentinel file, not the exit code: present -> SUCCEEDED even if the
    command exited non-zero, absent -> FAILED even if it exited 0.
    """

    def __init__(self, executor: Executor, interpreter: str = "Rscript"):
        self.executor = executor
        self.interpreter = interpreter

    def execute(
        self,
        layout: SandboxLayout,
        init_script: Path,
        mirror_url: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> InitResult:
        if not init_script.is_file():
            return InitResult(InitStatus.NOT_RUN)

        # build dir is visible at the same path inside the sandbox
        app_dir = layout.base
        wrapper = app_dir / WRAPPER_NAME
        sentinel = app_dir / SENTINEL_NAME
        sentinel.unlink(missing_ok=True)
        wrapper.write_text(render_wrapper(init_script, app_dir, mirror_url), encoding="utf-8")

        try:
            res = self.executor.run(layout, self.interpreter, [str(wrapper)], workdir=app_dir, env=env)
        finally:
            wrapper.unlink(missing_ok=True)

        if not sentinel.exists():
            return InitResult(InitStatus.FAILED, exit_code=res.exit_code, output=res.output)

        sentinel.unlink()
        if res.exit_code != 0:
            log.warning("init_nonzero_with_sentinel", exit_code=res.exit_code)
        log.debug("init_output", output=res.output)
        return InitResult(InitStatus.SUCCEEDED, exit_code=res.exit_code, output=res.output)

    def run(
        self,
        layout: SandboxLayout,
        init_script: Path,
        mirror_url: str,
        env: Optional[Mapping[str, str]] = None,
    ) -> InitResult:
        result = self.execute(layout, init_script, mirror_url, env=env)
        if result.status == InitStatus.FAILED:
            raise InitScriptError(
                code="init.failed",
                message=f"{init_script.name} did not complete (exit code {result.exit_code}, no sentinel)",
                data={"exit_code": result.exit_code, "output": result.output},
            )
        if result.succeeded:
            log.info("init_succeeded", script=init_script.name)
        return result
