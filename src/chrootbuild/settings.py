from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import ValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from .core.errors import ConfigurationError


class Settings(BaseSettings):
    # ---- platform / versions ----
    platform: str = ""
    supported_platforms: List[str] = ["heroku-20", "heroku-22", "heroku-24"]
    builder_version: str = "2.1.0"
    mirror_url: str = "https://cloud.r-project.org"
    deploy_dir: Path = Path("/app")
    artifact_url_template: str = (
        "https://heroku-buildpack-r.s3.amazonaws.com/{platform}/R-{version}-binaries.tar.gz"
    )

    # ---- files looked up inside the build dir ----
    version_file: str = "R_VERSION"
    manifest_file: str = "Aptfile"
    init_script: str = "init.R"

    # ---- sandbox ----
    strategy: str = "fakechroot"
    # empty -> the capability's own manifest
    control_files: List[str] = []
    command_timeout_s: Optional[int] = None

    # ---- environment import ----
    env_allow_pattern: Optional[str] = None
    env_deny_pattern: Optional[str] = None

    # ---- fetch ----
    fetch_retries: int = 3
    fetch_backoff_s: float = 2.0
    fetch_timeout_s: int = 60

    # ---- logging ----
    log_level: str = "INFO"
    log_format: str = "json"

    # env prefix CHROOTBUILD_*
    model_config = SettingsConfigDict(env_prefix="CHROOTBUILD_", extra="ignore")


def load_settings() -> Settings:
    # 0) base from CHROOTBUILD_* env
    s = Settings()

    # 1) conf/chrootbuild.yaml (or CHROOTBUILD_CONF)
    conf_yaml = os.environ.get("CHROOTBUILD_CONF", "conf/chrootbuild.yaml")
    try:
        with open(conf_yaml, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except FileNotFoundError:
        data = {}
    if not isinstance(data, dict):
        data = {}

    sandbox = data.get("sandbox") or {}
    if not isinstance(sandbox, dict):
        sandbox = {}
    fetch = data.get("fetch") or {}
    if not isinstance(fetch, dict):
        fetch = {}
    env = data.get("env") or {}
    if not isinstance(env, dict):
        env = {}

    # 2) YAML only fills what the environment did not set explicitly
    update: Dict[str, Any] = {}
    explicit = s.model_fields_set
    yaml_values = {
        "platform": data.get("platform"),
        "supported_platforms": data.get("supported_platforms"),
        "builder_version": data.get("builder_version"),
        "mirror_url": data.get("mirror_url"),
        "deploy_dir": Path(str(data["deploy_dir"])) if data.get("deploy_dir") else None,
        "artifact_url_template": data.get("artifact_url_template"),
        "version_file": data.get("version_file"),
        "manifest_file": data.get("manifest_file"),
        "init_script": data.get("init_script"),
        "strategy": sandbox.get("strategy"),
        "control_files": sandbox.get("control_files"),
        "command_timeout_s": sandbox.get("timeout_s"),
        "env_allow_pattern": env.get("allow"),
        "env_deny_pattern": env.get("deny"),
        "fetch_retries": fetch.get("retries"),
        "fetch_backoff_s": fetch.get("backoff_s"),
        "fetch_timeout_s": fetch.get("timeout_s"),
        "log_level": data.get("log_level"),
        "log_format": data.get("log_format"),
    }
    for name, value in yaml_values.items():
        if value is not None and name not in explicit:
            update[name] = value

    # validated like env values, so "3" from YAML becomes 3
    try:
        s = Settings.model_validate({**s.model_dump(), **update})
    except ValidationError as e:
        raise ConfigurationError(
            code="config.invalid",
            message=f"invalid value in {conf_yaml}: {e}",
            data={"path": conf_yaml},
        ) from e

    # 3) the platform stack name is conventionally exported as STACK
    if not s.platform and os.environ.get("STACK"):
        s = s.model_copy(update={"platform": os.environ["STACK"]})
    return s
