from __future__ import annotations
import re
from pathlib import Path
from typing import Dict, MutableMapping, Optional

import structlog

from ..core.utils import is_env_name

log = structlog.get_logger(__name__)

# search path, dynamic linker, compiler search paths, source control checkout
DEFAULT_DENY_PATTERN = (
    r"^(PATH|GIT_DIR|GIT_WORK_TREE|CPATH|CPPATH|LD_PRELOAD|LD_LIBRARY_PATH"
    r"|LIBRARY_PATH|LD_AUDIT|DYLD_[A-Z_]*)$"
)
DEFAULT_ALLOW_PATTERN = r".*"

_DEFAULT_DENY = re.compile(DEFAULT_DENY_PATTERN)


def is_importable(name: str, allow: re.Pattern, deny: Optional[re.Pattern] = None) -> bool:
    if _DEFAULT_DENY.search(name):
        return False
    if deny is not None and deny.search(name):
        return False
    return bool(allow.search(name))


def import_from(
    env_dir: Path,
    allow_pattern: Optional[str] = None,
    deny_pattern: Optional[str] = None,
    target: Optional[MutableMapping[str, str]] = None,
) -> Dict[str, str]:
    """
    Import `<env_dir>/<NAME>` files as NAME=<first line>.

    The built-in deny list always applies; `deny_pattern` only adds to it.
    A missing env dir imports nothing.
    """
    env_dir = Path(env_dir)
    if not env_dir.is_dir():
        return {}

    allow = re.compile(allow_pattern or DEFAULT_ALLOW_PATTERN)
    deny = re.compile(deny_pattern) if deny_pattern else None

    imported: Dict[str, str] = {}
    for entry in sorted(env_dir.iterdir()):
        if not entry.is_file():
            continue
        name = entry.name
        if not is_env_name(name):
            continue
        if not is_importable(name, allow, deny):
            log.debug("env_skipped", name=name)
            continue
        lines = entry.read_text(encoding="utf-8", errors="replace").splitlines()
        imported[name] = lines[0].strip() if lines else ""

    if target is not None:
        target.update(imported)
    log.info("env_imported", count=len(imported), names=sorted(imported))
    return imported
