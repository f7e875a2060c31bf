"""Runtime settings for the staging relay."""

from __future__ import annotations

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

# Environment variables read for each settings field.
ENV_VARS: dict[str, str] = {
    "host": "SAFESTAGE_HOST",
    "port": "PORT",
    "rpc_urls": "RPC_URLS",
    "use_default_rpcs": "SAFESTAGE_USE_DEFAULT_RPCS",
    "max_staged": "SAFESTAGE_MAX_STAGED",
    "max_signatures": "SAFESTAGE_MAX_SIGNATURES",
    "oracle_timeout": "SAFESTAGE_ORACLE_TIMEOUT",
    "max_body_bytes": "SAFESTAGE_MAX_BODY_BYTES",
}


class StagingSettings(BaseModel):
    """Effective relay configuration."""

    host: str = "0.0.0.0"
    port: int = Field(default=3000, ge=0, le=65535)
    rpc_urls: list[str] = Field(default_factory=list)
    use_default_rpcs: bool = True
    max_staged: int = Field(default=100, ge=1)
    max_signatures: int = Field(default=100, ge=1)
    oracle_timeout: float = Field(default=10.0, gt=0)
    max_body_bytes: int = Field(default=100 * 1024, ge=1)

    @field_validator("rpc_urls", mode="before")
    @classmethod
    def _split_rpc_urls(cls, value: Any) -> Any:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value


def load_config_file(path: Path) -> dict[str, Any]:
    """Load a YAML settings file; an empty file yields no overrides."""
    with open(path, encoding="utf-8") as handle:
        payload = yaml.safe_load(handle)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"Config at {path} must be a mapping/object")
    return payload


def load_settings(
    config_path: Path | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    overrides: Mapping[str, Any] | None = None,
) -> StagingSettings:
    """Resolve settings: defaults < config file < environment < overrides.

    ``None`` values in ``overrides`` are ignored so unset CLI options fall
    through to the lower layers.
    """
    payload: dict[str, Any] = {}
    if config_path is not None:
        payload.update(load_config_file(config_path))

    env = os.environ if environ is None else environ
    for field, var in ENV_VARS.items():
        value = env.get(var)
        if value:
            payload[field] = value

    for field, value in (overrides or {}).items():
        if value is not None:
            payload[field] = value

    return StagingSettings.model_validate(payload)


def render_settings(settings: StagingSettings) -> str:
    return yaml.safe_dump(settings.model_dump(), sort_keys=False)
