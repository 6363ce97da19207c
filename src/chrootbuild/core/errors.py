from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(eq=False)
class ChrootBuildError(Exception):
    code: str
    message: str
    data: dict[str, Any] | None = None

    def __str__(self) -> str:
        return f"{self.code}: {self.message}"

    @property
    def output(self) -> str:
        """Captured command output, if the failure came from a sandboxed command."""
        return (self.data or {}).get("output", "")


class ConfigurationError(ChrootBuildError):
    pass


class FetchError(ChrootBuildError):
    pass


class RewriteError(ChrootBuildError):
    pass


class DependencyInstallError(ChrootBuildError):
    pass


class InitScriptError(ChrootBuildError):
    pass


class CacheWriteWarning(ChrootBuildError):
    """Cache artifact could not be written. Never fails a build."""
