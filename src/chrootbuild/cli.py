from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path
from typing import List, Optional

from .core.errors import ChrootBuildError
from .logging import setup_logging
from .services.orchestrator import BuildOrchestrator
from .settings import load_settings


def _parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(
        prog="chrootbuild",
        description="Provision a relocatable R chroot tree into BUILD_DIR, reusing CACHE_DIR.",
    )
    ap.add_argument("build_dir", type=Path)
    ap.add_argument("cache_dir", type=Path)
    ap.add_argument("env_dir", type=Path)
    return ap


def _report(e: ChrootBuildError) -> int:
    print(f"chrootbuild: error: {e}", file=sys.stderr)
    if e.output:
        print("----- captured output -----", file=sys.stderr)
        print(e.output.rstrip("\n"), file=sys.stderr)
    return 1


def main(argv: Optional[List[str]] = None) -> int:
    args = _parser().parse_args(argv)
    try:
        s = load_settings()
    except ChrootBuildError as e:
        return _report(e)
    log = setup_logging(s.log_level, s.log_format)

    orc = BuildOrchestrator(args.build_dir, args.cache_dir, args.env_dir, s, environ=os.environ)
    try:
        report = orc.build()
    except ChrootBuildError as e:
        return _report(e)

    for w in report.warnings:
        print(f"chrootbuild: warning: {w}", file=sys.stderr)
    log.info("build_finished", restored=report.restored, fetched=report.fetched,
             cache_saved=report.cache_saved, packages=len(report.packages),
             init=report.init_result.status.value)
    return 0


if __name__ == "__main__":
    sys.exit(main())
