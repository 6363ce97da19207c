from __future__ import annotations
import re
from pathlib import Path
from typing import List, Optional

_ENV_KEY_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def is_env_name(name: str) -> bool:
    return bool(_ENV_KEY_RE.match(name))


def read_first_line(path: Path) -> Optional[str]:
    """First non-empty line, stripped. None when the file is missing or blank."""
    if not path.is_file():
        return None
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        if line:
            return line
    return None


def read_lines(path: Path) -> List[str]:
    # blank lines / comments skipped, trailing newline optional
    if not path.is_file():
        return []
    out: List[str] = []
    for line in path.read_text(encoding="utf-8", errors="replace").splitlines():
        line = line.strip()
        if not line or line.startswith("#"):
            continue
        out.append(line)
    return out
