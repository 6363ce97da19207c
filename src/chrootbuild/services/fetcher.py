from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Optional

import requests
import structlog
from tenacity import RetryCallState, Retrying, retry_if_exception_type, stop_after_attempt, wait_exponential

from ..core.errors import FetchError
from ..core.models import ROOT_DIRNAME, TOOLS_DIRNAME, BuildContext
from .archive import ArchiveError, extract_dirs

log = structlog.get_logger(__name__)


class Fetcher:
    """Downloads the prebuilt runtime tree (deploy-path form) and unpacks it into the build dir."""

    def __init__(
        self,
        url_template: str,
        *,
        retries: int = 3,
        backoff_s: float = 2.0,
        timeout_s: int = 60,
        session: Optional[requests.Session] = None,
    ):
        self.url_template = url_template
        self.retries = max(1, retries)
        self.backoff_s = backoff_s
        self.timeout_s = timeout_s
        self.session = session or requests.Session()

    def url_for(self, ctx: BuildContext) -> str:
        return self.url_template.format(platform=ctx.platform_id, version=ctx.runtime_version)

    def _retrying(self, url: str) -> Retrying:
        def before_sleep(state: RetryCallState) -> None:
            log.warning("fetch_failed", url=url, attempt=state.attempt_number,
                        error=str(state.outcome.exception()))

        # connection errors, HTTP errors and mid-stream write errors all retry
        return Retrying(
            stop=stop_after_attempt(self.retries),
            wait=wait_exponential(multiplier=self.backoff_s),
            retry=retry_if_exception_type((requests.RequestException, OSError)),
            before_sleep=before_sleep,
            reraise=True,
        )

    def _download(self, url: str, dest: Path) -> None:
        log.info("fetch_start", url=url)
        with self.session.get(url, stream=True, timeout=self.timeout_s) as r:
            r.raise_for_status()
            with open(dest, "wb") as f:
                for chunk in r.iter_content(chunk_size=1024 * 1024):
                    if chunk:
                        f.write(chunk)

    def fetch(self, ctx: BuildContext, dest_dir: Path) -> str:
        url = self.url_for(ctx)
        with tempfile.TemporaryDirectory(prefix="chrootbuild-fetch-") as td:
            tmp = Path(td) / "runtime.tar.gz"
            try:
                self._retrying(url)(self._download, url, tmp)
            except (requests.RequestException, OSError) as e:
                raise FetchError(
                    code="fetch.failed",
                    message=f"cannot download {url}: {e}",
                    data={"url": url, "attempts": self.retries},
                ) from e

            try:
                extract_dirs(tmp, Path(dest_dir), expect=(ROOT_DIRNAME, TOOLS_DIRNAME))
            except ArchiveError as e:
                raise FetchError(
                    code="fetch.bad_artifact",
                    message=f"downloaded artifact from {url} is unusable: {e}",
                    data={"url": url},
                ) from e
        log.info("fetch_done", url=url)
        return url
