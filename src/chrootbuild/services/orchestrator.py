from __future__ import annotations
import re
import shutil
from dataclasses import replace
from pathlib import Path
from typing import MutableMapping, Optional

import structlog

from ..core.errors import CacheWriteWarning, ConfigurationError
from ..core.models import BuildContext, BuildReport, Phase, SandboxLayout
from ..core.utils import read_first_line
from ..executor.base import Executor
from ..executor.fakechroot import FakechrootExecutor
from ..executor.ns_chroot import NsChrootExecutor
from ..isolation import env_filter
from ..isolation.path_rewriter import relocate
from ..runner.dependency_installer import DependencyInstaller, read_manifest
from ..runner.init_runner import InitRunner
from ..settings import Settings, load_settings
from . import outputs
from .cache_store import CacheStore, compute_key
from .fetcher import Fetcher

log = structlog.get_logger(__name__)

EXECUTORS = {
    FakechrootExecutor.name: FakechrootExecutor,
    NsChrootExecutor.name: NsChrootExecutor,
}


def make_executor(s: Settings) -> Executor:
    cls = EXECUTORS.get(s.strategy)
    if cls is None:
        raise ConfigurationError(
            code="config.strategy",
            message=f"unknown sandbox strategy '{s.strategy}' (expected one of: {', '.join(EXECUTORS)})",
        )
    return cls(timeout_s=s.command_timeout_s, control_files=s.control_files)


class BuildOrchestrator:
    """
    One build: VALIDATE -> PROVISION -> VIRTUALIZE_IN -> INSTALL -> INIT -> OUTPUTS
    -> VIRTUALIZE_OUT -> CACHE -> CLEANUP. Fatal errors propagate and nothing is cached.
    """

    def __init__(
        self,
        build_dir: Path,
        cache_dir: Path,
        env_dir: Path,
        settings: Optional[Settings] = None,
        *,
        executor: Optional[Executor] = None,
        fetcher: Optional[Fetcher] = None,
        cache: Optional[CacheStore] = None,
        environ: Optional[MutableMapping[str, str]] = None,
    ):
        self.s = settings or load_settings()
        self.build_dir = Path(build_dir).resolve()
        self.cache_dir = Path(cache_dir).resolve()
        self.env_dir = Path(env_dir).resolve()
        self._executor = executor
        self.fetcher = fetcher or Fetcher(
            self.s.artifact_url_template,
            retries=self.s.fetch_retries,
            backoff_s=self.s.fetch_backoff_s,
            timeout_s=self.s.fetch_timeout_s,
        )
        self.cache = cache or CacheStore(self.cache_dir)
        self.environ = environ

    @property
    def executor(self) -> Executor:
        if self._executor is None:
            self._executor = make_executor(self.s)
        return self._executor

    def _enter(self, report: BuildReport, phase: Phase) -> None:
        report.phases.append(phase)
        log.info("phase", phase=phase.value)

    # ---------- validation ----------

    def validate(self) -> BuildContext:
        platform = self.s.platform
        if not platform:
            raise ConfigurationError(code="config.platform", message="no platform id set (STACK)")
        if platform not in self.s.supported_platforms:
            raise ConfigurationError(
                code="config.platform",
                message=f"unsupported platform '{platform}' (supported: {', '.join(self.s.supported_platforms)})",
                data={"platform": platform},
            )
        version_file = self.build_dir / self.s.version_file
        version = read_first_line(version_file)
        if version is None:
            raise ConfigurationError(
                code="config.version",
                message=f"{self.s.version_file} missing or empty in {self.build_dir}; pin a runtime version, e.g. 4.0.2",
                data={"path": str(version_file)},
            )
        self._check_env_patterns()
        # executor strategy is config too, fail before touching anything
        _ = self.executor
        return BuildContext(
            build_dir=self.build_dir,
            cache_dir=self.cache_dir,
            env_dir=self.env_dir,
            platform_id=platform,
            runtime_version=version,
            builder_version=self.s.builder_version,
            mirror_url=self.s.mirror_url,
            deploy_dir=Path(self.s.deploy_dir),
        )

    def _check_env_patterns(self) -> None:
        for key, pattern in (("env_allow_pattern", self.s.env_allow_pattern),
                             ("env_deny_pattern", self.s.env_deny_pattern)):
            if not pattern:
                continue
            try:
                re.compile(pattern)
            except re.error as e:
                raise ConfigurationError(
                    code="config.env_pattern",
                    message=f"{key} {pattern!r} is not a valid regular expression: {e}",
                    data={"setting": key, "pattern": pattern},
                ) from e

    # ---------- build ----------

    def build(self) -> BuildReport:
        report = BuildReport()
        try:
            self._build(report)
        finally:
            # releases the cache index even when a phase failed
            self.cache.close()
        self._enter(report, Phase.DONE)
        return report

    def _build(self, report: BuildReport) -> None:
        self._enter(report, Phase.VALIDATE)
        ctx = self.validate()
        imported = env_filter.import_from(
            ctx.env_dir, self.s.env_allow_pattern, self.s.env_deny_pattern, target=self.environ,
        )
        ctx = replace(ctx, env=imported)
        log.info("build_context", platform=ctx.platform_id, runtime_version=ctx.runtime_version,
                 builder_version=ctx.builder_version, build_dir=str(ctx.build_dir))

        self._enter(report, Phase.PROVISION)
        report.cache_key = key = compute_key(ctx)
        report.restored = self.cache.restore(key, ctx.build_dir)
        if not report.restored:
            self.fetcher.fetch(ctx, ctx.build_dir)
            report.fetched = True

        # archives and downloads are always in deploy form
        layout = SandboxLayout(base=ctx.build_dir, anchored_at=ctx.deploy_dir)
        control_files = self.executor.control_files

        self._enter(report, Phase.VIRTUALIZE_IN)
        relocate(layout, ctx.build_dir, control_files)

        self._enter(report, Phase.INSTALL)
        report.packages = read_manifest(ctx.build_dir / self.s.manifest_file)
        DependencyInstaller(self.executor, env=ctx.env).install_all(layout, report.packages)

        self._enter(report, Phase.INIT)
        report.init_result = InitRunner(self.executor).run(
            layout, ctx.build_dir / self.s.init_script, ctx.mirror_url, env=ctx.env,
        )

        self._enter(report, Phase.OUTPUTS)
        outputs.write_all(ctx, self.executor)

        self._enter(report, Phase.VIRTUALIZE_OUT)
        relocate(layout, ctx.deploy_dir, control_files)

        self._enter(report, Phase.CACHE)
        try:
            self.cache.save(key, layout.dirs, ctx)
            report.cache_saved = True
        except CacheWriteWarning as w:
            log.warning("cache_write_warning", code=w.code, message=w.message)
            report.warnings.append(str(w))

        self._enter(report, Phase.CLEANUP)
        # staging dirs left behind by an interrupted earlier build
        for stale in ctx.build_dir.glob(".chrootbuild-extract-*"):
            shutil.rmtree(stale, ignore_errors=True)
