from __future__ import annotations
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Mapping, Optional

ROOT_DIRNAME = ".root"
TOOLS_DIRNAME = ".tools"


class Phase(str, Enum):
    VALIDATE = "VALIDATE"
    PROVISION = "PROVISION"
    VIRTUALIZE_IN = "VIRTUALIZE_IN"
    INSTALL = "INSTALL"
    INIT = "INIT"
    OUTPUTS = "OUTPUTS"
    VIRTUALIZE_OUT = "VIRTUALIZE_OUT"
    CACHE = "CACHE"
    CLEANUP = "CLEANUP"
    DONE = "DONE"


class InitStatus(str, Enum):
    NOT_RUN = "NOT_RUN"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


@dataclass(frozen=True)
class BuildContext:
    build_dir: Path
    cache_dir: Path
    env_dir: Path
    platform_id: str
    runtime_version: str
    builder_version: str
    mirror_url: str
    deploy_dir: Path = Path("/app")
    env: Mapping[str, str] = field(default_factory=dict)


@dataclass
class SandboxLayout:
    """
    .root (the chroot tree) and .tools (fakechroot/fakeroot) side by side in `base`.
    `anchored_at` is the directory currently baked into the tool root's control files.
    """
    base: Path
    anchored_at: Path

    @property
    def root(self) -> Path:
        return self.base / ROOT_DIRNAME

    @property
    def tools(self) -> Path:
        return self.base / TOOLS_DIRNAME

    @property
    def dirs(self) -> List[Path]:
        return [self.root, self.tools]

    def exists(self) -> bool:
        return self.root.is_dir() and self.tools.is_dir()

    @property
    def anchored(self) -> bool:
        return self.anchored_at == self.base


@dataclass
class CommandResult:
    exit_code: int
    output: str
    timed_out: bool = False
    duration_s: float = 0.0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0 and not self.timed_out


@dataclass
class InitResult:
    status: InitStatus
    exit_code: Optional[int] = None
    output: str = ""

    @property
    def succeeded(self) -> bool:
        return self.status == InitStatus.SUCCEEDED


@dataclass
class BuildReport:
    phases: List[Phase] = field(default_factory=list)
    cache_key: Optional[str] = None
    restored: bool = False
    fetched: bool = False
    cache_saved: bool = False
    packages: List[str] = field(default_factory=list)
    init_result: InitResult = field(default_factory=lambda: InitResult(InitStatus.NOT_RUN))
    warnings: List[str] = field(default_factory=list)
