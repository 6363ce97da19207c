from __future__ import annotations

import fcntl
import hashlib
import json
import os
import tarfile
import tempfile
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional, Sequence

import structlog
from sqlalchemy.exc import SQLAlchemyError

from ..core.errors import CacheWriteWarning
from ..core.models import ROOT_DIRNAME, TOOLS_DIRNAME, BuildContext
from .archive import ArchiveError, extract_dirs, pack_dirs, sha256_file
from .cache_index import CacheIndex, CacheRecord

log = structlog.get_logger(__name__)

CACHE_SUBDIR = "chrootbuild"


def compute_key(ctx: BuildContext) -> str:
    """sha256 over (platform, runtime version, builder version); nothing else goes in."""
    payload = {
        "platform_id": ctx.platform_id,
        "runtime_version": ctx.runtime_version,
        "builder_version": ctx.builder_version,
    }
    canonical = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class CacheStore:
    """
    One tar.gz per key under <cache_dir>/chrootbuild/, holding .root and .tools in
    their deploy-path form. Restoring is best effort: anything wrong is a miss.
    """

    def __init__(self, cache_dir: Path):
        self.root = Path(cache_dir) / CACHE_SUBDIR
        self._index: Optional[CacheIndex] = None

    def archive_path(self, key: str) -> Path:
        return self.root / f"{key}.tar.gz"

    def has(self, key: str) -> bool:
        return self.archive_path(key).is_file()

    # ---------- index ----------

    def index(self) -> Optional[CacheIndex]:
        if self._index is None:
            try:
                self.root.mkdir(parents=True, exist_ok=True)
                self._index = CacheIndex(self.root)
            except (SQLAlchemyError, OSError) as e:
                log.warning("cache_index_unavailable", error=str(e))
                return None
        return self._index

    def _expected_digest(self, key: str) -> Optional[str]:
        idx = self.index()
        if idx is None:
            return None
        try:
            rec = idx.get(key)
        except SQLAlchemyError as e:
            log.warning("cache_index_unreadable", key=key, error=str(e))
            return None
        return rec.sha256 if rec else None

    def _forget(self, key: str) -> None:
        # the archive stays until the next save replaces it
        idx = self.index()
        if idx is None:
            return
        try:
            idx.delete(key)
        except SQLAlchemyError as e:
            log.warning("cache_index_write_failed", key=key, error=str(e))

    # ---------- restore ----------

    def restore(self, key: str, dest_dir: Path) -> bool:
        archive = self.archive_path(key)
        if not archive.is_file():
            log.info("cache_miss", key=key)
            return False

        expected = self._expected_digest(key)
        if expected is not None:
            try:
                actual = sha256_file(archive)
            except OSError as e:
                log.warning("cache_unreadable", key=key, error=str(e))
                return False
            if actual != expected:
                log.warning("cache_digest_mismatch", key=key, expected=expected, actual=actual)
                self._forget(key)
                return False

        try:
            extract_dirs(archive, Path(dest_dir), expect=(ROOT_DIRNAME, TOOLS_DIRNAME))
        except ArchiveError as e:
            log.warning("cache_corrupt", key=key, error=str(e))
            return False
        log.info("cache_restored", key=key, archive=str(archive))
        return True

    # ---------- save ----------

    @contextmanager
    def _locked(self, key: str) -> Iterator[None]:
        lock_path = self.root / f"{key}.lock"
        with open(lock_path, "w") as lock:
            fcntl.flock(lock, fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock, fcntl.LOCK_UN)

    def save(self, key: str, src_dirs: Sequence[Path], ctx: Optional[BuildContext] = None) -> Path:
        """Archive exactly `src_dirs` for `key`, replacing any previous artifact atomically."""
        archive = self.archive_path(key)
        missing = [str(d) for d in src_dirs if not Path(d).is_dir()]
        if missing:
            raise CacheWriteWarning(
                code="cache.missing_dirs",
                message=f"not caching, directories missing: {', '.join(missing)}",
                data={"key": key, "missing": missing},
            )

        tmp_name: Optional[str] = None
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            with self._locked(key):
                fd, tmp_name = tempfile.mkstemp(prefix=f".{key}.", suffix=".partial", dir=self.root)
                os.close(fd)
                pack_dirs(Path(tmp_name), [Path(d) for d in src_dirs])
                digest = sha256_file(Path(tmp_name))
                size = os.path.getsize(tmp_name)
                os.replace(tmp_name, archive)
                tmp_name = None
        except (OSError, tarfile.TarError) as e:
            raise CacheWriteWarning(
                code="cache.write_failed",
                message=f"cannot write cache artifact {archive}: {e}",
                data={"key": key, "archive": str(archive)},
            ) from e
        finally:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)

        self._record(key, archive, digest, size, ctx)
        log.info("cache_saved", key=key, archive=str(archive), size_bytes=size)
        return archive

    def _record(self, key: str, archive: Path, digest: str, size: int, ctx: Optional[BuildContext]) -> None:
        idx = self.index()
        if idx is None:
            return
        try:
            idx.put(CacheRecord(
                key=key,
                platform_id=ctx.platform_id if ctx else "",
                runtime_version=ctx.runtime_version if ctx else "",
                builder_version=ctx.builder_version if ctx else "",
                archive=archive.name,
                sha256=digest,
                size_bytes=size,
                created_at=CacheIndex.now(),
            ))
        except SQLAlchemyError as e:
            # archive is in place, it just won't be digest-checked on restore
            log.warning("cache_index_write_failed", key=key, error=str(e))

    def close(self) -> None:
        if self._index is not None:
            self._index.close()
            self._index = None
