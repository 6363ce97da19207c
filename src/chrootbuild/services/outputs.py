from __future__ import annotations
import shlex
import shutil
from pathlib import Path
from typing import Dict, List, Sequence

import structlog

from ..core.models import ROOT_DIRNAME, TOOLS_DIRNAME, BuildContext
from ..executor.base import Executor

log = structlog.get_logger(__name__)

STATIC_DIR = Path(__file__).resolve().parent.parent / "static"
ENTRY_POINTS = ("R", "Rscript")
PROFILE_NAME = "chrootbuild.sh"
PROXY_CONF = "nginx.conf"
EXPORT_HEADER = (
    "# control files under CHROOTBUILD_TOOLS_DIR point at CHROOTBUILD_DEPLOY_DIR;\n"
    "# relocate them to CHROOTBUILD_TOOLS_DIR's parent before running the sandbox from here"
)


def write_wrappers(ctx: BuildContext, executor: Executor, entry_points: Sequence[str] = ENTRY_POINTS) -> List[Path]:
    """bin/<entry> scripts that exec the entry point inside the tree at its deploy location."""
    bin_dir = ctx.build_dir / "bin"
    bin_dir.mkdir(parents=True, exist_ok=True)
    written = []
    for entry in entry_points:
        argv = executor.wrapper_argv(ctx.deploy_dir, entry)
        script = "#!/bin/sh\n" f'exec {shlex.join(argv)} "$@"\n'
        p = bin_dir / entry
        p.write_text(script, encoding="utf-8")
        p.chmod(0o755)
        written.append(p)
    return written


def write_profile(ctx: BuildContext) -> Path:
    profile_dir = ctx.build_dir / ".profile.d"
    profile_dir.mkdir(parents=True, exist_ok=True)
    p = profile_dir / PROFILE_NAME
    p.write_text(
        f'export PATH="{ctx.deploy_dir}/bin:$PATH"\n'
        f"export R_VERSION={shlex.quote(ctx.runtime_version)}\n"
        f"export CRAN_MIRROR={shlex.quote(ctx.mirror_url)}\n",
        encoding="utf-8",
    )
    return p


def export_vars(ctx: BuildContext) -> Dict[str, str]:
    # build-time locations: later build stages run before the slug is moved to deploy_dir
    return {
        "CHROOTBUILD_PLATFORM": ctx.platform_id,
        "CHROOTBUILD_TOOLS_DIR": str(ctx.build_dir / TOOLS_DIRNAME),
        "CHROOTBUILD_ROOT_DIR": str(ctx.build_dir / ROOT_DIRNAME),
        "CHROOTBUILD_DEPLOY_DIR": str(ctx.deploy_dir),
        "CHROOTBUILD_VERSION": ctx.builder_version,
        "CRAN_MIRROR": ctx.mirror_url,
        "R_VERSION": ctx.runtime_version,
    }


def write_export(ctx: BuildContext) -> Path:
    p = ctx.build_dir / ".chrootbuild" / "export"
    p.parent.mkdir(parents=True, exist_ok=True)
    lines = [EXPORT_HEADER] + [f"export {k}={shlex.quote(v)}" for k, v in export_vars(ctx).items()]
    p.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return p


def copy_default_proxy_conf(ctx: BuildContext) -> bool:
    dest = ctx.build_dir / PROXY_CONF
    if dest.exists():
        return False
    shutil.copyfile(STATIC_DIR / PROXY_CONF, dest)
    return True


def write_all(ctx: BuildContext, executor: Executor) -> None:
    write_wrappers(ctx, executor)
    write_profile(ctx)
    write_export(ctx)
    copied = copy_default_proxy_conf(ctx)
    log.info("outputs_written", default_proxy_conf=copied)
