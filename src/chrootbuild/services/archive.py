from __future__ import annotations
import hashlib
import shutil
import tarfile
import tempfile
import zlib
from pathlib import Path
from typing import Iterable, List, Sequence

# absolute symlinks inside a chroot tree are normal; the "data" filter would refuse them
_EXTRACT_KW = {"filter": "tar"} if hasattr(tarfile, "tar_filter") else {}


class ArchiveError(Exception):
    pass


def sha256_file(path: Path, chunk: int = 1024 * 1024) -> str:
    h = hashlib.sha256()
    with open(path, "rb") as f:
        for block in iter(lambda: f.read(chunk), b""):
            h.update(block)
    return h.hexdigest()


def pack_dirs(dest: Path, src_dirs: Iterable[Path]) -> None:
    """tar.gz of exactly `src_dirs`, each stored under its own directory name."""
    with tarfile.open(dest, "w:gz") as tar:
        for d in src_dirs:
            tar.add(str(d), arcname=d.name, recursive=True)


def extract_dirs(archive: Path, dest_dir: Path, expect: Sequence[str]) -> List[Path]:
    """
    Extract `archive` and move the `expect`ed top-level dirs into `dest_dir`,
    replacing whatever was there. Nothing in `dest_dir` changes if the archive is unreadable
    or incomplete.
    """
    dest_dir.mkdir(parents=True, exist_ok=True)
    staging = Path(tempfile.mkdtemp(prefix=".chrootbuild-extract-", dir=dest_dir))
    try:
        try:
            with tarfile.open(archive, "r:*") as tar:
                tar.extractall(str(staging), **_EXTRACT_KW)
        except (tarfile.TarError, EOFError, zlib.error, OSError) as e:
            raise ArchiveError(f"cannot extract {archive}: {e}") from e

        missing = [name for name in expect if not (staging / name).is_dir()]
        if missing:
            raise ArchiveError(f"{archive} lacks {', '.join(missing)}")

        placed: List[Path] = []
        for name in expect:
            target = dest_dir / name
            if target.is_symlink() or target.is_file():
                target.unlink()
            elif target.exists():
                shutil.rmtree(target)
            (staging / name).rename(target)
            placed.append(target)
        return placed
    finally:
        shutil.rmtree(staging, ignore_errors=True)
