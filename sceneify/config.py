"""
Configuration loading.

Settings come from an optional YAML file and are overridden by ``SCENEIFY_*``
environment variables.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from .context import ForeignPolicy, SceneifyContext
from .errors import ConfigError
from .ownership import FileLedger, OwnershipLedger, PrivateSettingsLedger
from .utils.logging import resolve_level

LOG = logging.getLogger(__name__)

DEFAULT_OBS_URL = "ws://127.0.0.1:4455"

ENV_OVERRIDES = {
    "SCENEIFY_OBS_URL": "obs_url",
    "SCENEIFY_OBS_PASSWORD": "obs_password",
    "SCENEIFY_FOREIGN_POLICY": "foreign_policy",
    "SCENEIFY_LOG_LEVEL": "log_level",
}


class SceneifyConfig(BaseModel):
    obs_url: str = DEFAULT_OBS_URL
    obs_password: Optional[str] = None
    request_timeout: Optional[float] = Field(default=30.0, gt=0)
    foreign_policy: ForeignPolicy = ForeignPolicy.FAIL
    ledger: Literal["remote", "file"] = "remote"
    ledger_path: Optional[Path] = None
    log_level: str = "INFO"

    model_config = ConfigDict(extra="forbid")

    @field_validator("obs_url", mode="before")
    @classmethod
    def _normalise_url(cls, value: object) -> str:
        result = str(value or "").strip()
        if not result.startswith(("ws://", "wss://")):
            raise ValueError("obs_url must be a ws:// or wss:// URL")
        return result

    @field_validator("foreign_policy", mode="before")
    @classmethod
    def _normalise_policy(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value

    @field_validator("log_level", mode="before")
    @classmethod
    def _validate_log_level(cls, value: object) -> str:
        result = str(value or "INFO").strip().upper()
        resolve_level(result)
        return result

    @model_validator(mode="after")
    def _check_ledger_path(self) -> "SceneifyConfig":
        if self.ledger == "file" and self.ledger_path is None:
            raise ValueError("ledger_path is required when ledger is 'file'")
        return self


def load_config(
    path: Optional[Union[str, Path]] = None,
    env: Optional[Mapping[str, str]] = None,
) -> SceneifyConfig:
    """
    Load the configuration from ``path`` (a missing file yields the defaults)
    and apply environment overrides.
    """

    environ = os.environ if env is None else env
    data: Dict[str, Any] = {}
    if path is not None:
        config_path = Path(path)
        try:
            with config_path.open("r", encoding="utf-8") as handle:
                raw = yaml.safe_load(handle) or {}
        except FileNotFoundError:
            LOG.debug("Config file %s not found; using defaults", config_path)
            raw = {}
        except yaml.YAMLError as exc:
            raise ConfigError(f"Config file '{config_path}' is not valid YAML: {exc}") from exc
        if not isinstance(raw, dict):
            raise ConfigError(f"Config file '{config_path}' must contain a mapping")
        data.update(raw)

    for variable, field_name in ENV_OVERRIDES.items():
        value = environ.get(variable)
        if value:
            data[field_name] = value

    try:
        return SceneifyConfig(**data)
    except ValidationError as exc:
        problems = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'config'}: {error['msg']}" for error in exc.errors()
        )
        raise ConfigError(f"Invalid configuration: {problems}") from exc


def create_ledger(config: SceneifyConfig, gateway) -> OwnershipLedger:
    if config.ledger == "file":
        return FileLedger(config.ledger_path)
    return PrivateSettingsLedger(gateway)


def build_context(config: SceneifyConfig, gateway) -> SceneifyContext:
    """A fresh context for ``gateway`` wired according to ``config``."""

    return SceneifyContext(
        gateway,
        ledger=create_ledger(config, gateway),
        foreign_policy=config.foreign_policy,
    )
