from __future__ import annotations

import tarfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Dict, List, Optional

import pytest

from chrootbuild.core.errors import FetchError
from chrootbuild.core.models import BuildContext, CommandResult, SandboxLayout
from chrootbuild.executor.fakechroot import FakechrootExecutor
from chrootbuild.services.archive import extract_dirs
from chrootbuild.settings import Settings

DEPLOY = Path("/app")


def make_tree(base: Path, anchor: Path = DEPLOY) -> SandboxLayout:
    """Minimal .root/.tools pair whose control files embed `anchor`, like a fresh download."""
    root = base / ".root"
    tools = base / ".tools"
    (root / "usr/bin").mkdir(parents=True, exist_ok=True)
    (root / "usr/bin/R").write_text("#!/bin/sh\necho R\n")
    (root / "etc").mkdir(exist_ok=True)
    (root / "etc/os-release").write_text("NAME=test\n")
    (tools / "usr/bin").mkdir(parents=True, exist_ok=True)
    (tools / "etc/fakechroot").mkdir(parents=True, exist_ok=True)
    (tools / "usr/bin/fakechroot").write_text(
        f"#!/bin/sh\nFAKECHROOT_BASE={anchor}/.root\nLIB={anchor}/.tools/usr/lib/libfakechroot.so\n"
    )
    (tools / "usr/bin/fakechroot").chmod(0o755)
    (tools / "usr/bin/fakeroot").write_text(f"#!/bin/sh\nPATHS={anchor}/.tools/usr/lib/libfakeroot\n")
    (tools / "usr/bin/fakeroot").chmod(0o755)
    (tools / "etc/fakechroot/chroot.env").write_text(f"FAKECHROOT_EXCLUDE_PATH={anchor}/.tools:/proc\n")
    return SandboxLayout(base=base, anchored_at=anchor)


def make_artifact(path: Path, workdir: Path) -> Path:
    src = workdir / "artifact-src"
    layout = make_tree(src)
    with tarfile.open(path, "w:gz") as tar:
        for d in layout.dirs:
            tar.add(str(d), arcname=d.name)
    return path


@dataclass
class Call:
    command: str
    args: List[str]
    workdir: Optional[Path]
    env: Dict[str, str]
    layout: SandboxLayout


class StubExecutor(FakechrootExecutor):
    """Records sandbox commands instead of spawning fakechroot; `handler` decides the result."""

    def __init__(self, handler: Optional[Callable[[Call], CommandResult]] = None):
        super().__init__()
        self.calls: List[Call] = []
        self.handler = handler or (lambda call: CommandResult(0, ""))

    def run(self, layout, command, args=(), workdir=None, env=None):
        assert layout.anchored, "sandbox command issued before control files were rewritten"
        call = Call(command, list(args), workdir, dict(env or {}), layout)
        self.calls.append(call)
        return self.handler(call)


class StubFetcher:
    def __init__(self, artifact: Optional[Path] = None):
        self.artifact = artifact
        self.calls = 0

    def fetch(self, ctx: BuildContext, dest_dir: Path) -> str:
        self.calls += 1
        if self.artifact is None:
            raise FetchError(code="fetch.failed", message="no artifact", data={"url": "stub://"})
        extract_dirs(self.artifact, dest_dir, expect=(".root", ".tools"))
        return "stub://"


@pytest.fixture
def settings() -> Settings:
    return Settings(
        platform="heroku-22",
        builder_version="9.9.9",
        mirror_url="https://cran.example.org",
        deploy_dir=DEPLOY,
        fetch_retries=1,
    )


@pytest.fixture
def dirs(tmp_path):
    build = tmp_path / "build"
    cache = tmp_path / "cache"
    env = tmp_path / "env"
    for d in (build, cache, env):
        d.mkdir()
    return build, cache, env


@pytest.fixture
def artifact(tmp_path) -> Path:
    return make_artifact(tmp_path / "runtime.tar.gz", tmp_path)


@pytest.fixture
def ctx(dirs) -> BuildContext:
    build, cache, env = dirs
    return BuildContext(
        build_dir=build, cache_dir=cache, env_dir=env,
        platform_id="heroku-22", runtime_version="4.0.2", builder_version="9.9.9",
        mirror_url="https://cran.example.org", deploy_dir=DEPLOY,
    )
