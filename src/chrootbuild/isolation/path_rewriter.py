from __future__ import annotations
import os
import re
from pathlib import Path
from typing import Callable, Iterable, Sequence, Tuple

import structlog

from ..core.errors import RewriteError
from ..core.models import SandboxLayout

log = structlog.get_logger(__name__)

# a path starts after a non-path character and ends at "/", ":", whitespace, a quote, NUL or end of data
_PATH_START = rb"(?<![A-Za-z0-9._-])"
_PATH_END = rb"(?=[/:\s\"'\x00]|\Z)"


def _literal(old_b: bytes, new_b: bytes) -> Callable[[bytes], Tuple[bytes, int]]:
    return lambda content: (content.replace(old_b, new_b), content.count(old_b))


def _whole_path(old_b: bytes, new_b: bytes) -> Callable[[bytes], Tuple[bytes, int]]:
    pattern = re.compile(_PATH_START + re.escape(old_b) + _PATH_END)
    # callable replacement: backslashes in new_b stay literal
    return lambda content: pattern.subn(lambda m: new_b, content)


def rewrite(old_prefix: str, new_prefix: str, target_files: Iterable[Path], *, whole_path: bool = False) -> int:
    """
    Replace every occurrence of `old_prefix` with `new_prefix` in each file, in place.

    Works on raw bytes and never interprets either prefix as a pattern. With
    `whole_path`, only occurrences that form a complete path (or leading path
    components) are replaced, so "/app" matches "/app", "/app/x" and ":/app:"
    but not "/application" or "/srv/app".
    Files without an occurrence are not touched. Returns the number of replacements.
    """
    old_b = old_prefix.encode("utf-8")
    new_b = new_prefix.encode("utf-8")
    if not old_b:
        raise RewriteError(code="rewrite.empty_prefix", message="old prefix must not be empty")
    transform = _whole_path(old_b, new_b) if whole_path else _literal(old_b, new_b)

    total = 0
    for path in target_files:
        path = Path(path)
        if not path.is_file():
            raise RewriteError(
                code="rewrite.missing_file",
                message=f"sandbox control file not found: {path}",
                data={"path": str(path)},
            )
        try:
            content = path.read_bytes()
            updated, n = transform(content)
            if n == 0 or old_b == new_b:
                continue
            # keep the mode bits (fakechroot/fakeroot are executable scripts)
            mode = path.stat().st_mode
            tmp = path.with_name(path.name + ".rewrite")
            tmp.write_bytes(updated)
            os.chmod(tmp, mode)
            os.replace(tmp, path)
        except OSError as e:
            raise RewriteError(
                code="rewrite.io",
                message=f"cannot rewrite {path}: {e}",
                data={"path": str(path)},
            ) from e
        total += n
    return total


def relocate(layout: SandboxLayout, new_anchor: Path, control_files: Sequence[str]) -> int:
    """Point the tool root's control files at `new_anchor` instead of `layout.anchored_at`."""
    targets = [layout.tools / rel for rel in control_files]
    old = str(layout.anchored_at).rstrip("/") or "/"
    new = str(new_anchor).rstrip("/") or "/"
    n = rewrite(old, new, targets, whole_path=True)
    log.info("paths_rewritten", old=old, new=new, files=len(targets), replacements=n)
    layout.anchored_at = Path(new_anchor)
    return n
