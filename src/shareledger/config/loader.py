"""
Configuration loader for shareledger.

What it does:
- Reads static settings from `config/config.yaml`.
- Resolves the administrator identity from `SHARELEDGER_ADMIN`, falling back
  to the `admin` key in the YAML file.
- Validates the resulting configuration using Pydantic models.

Where it is used:
- Called by `shareledger.main` to build a `Settings` object for the demo run.

Key outputs:
- `Settings` model containing the pool address, administrator, underlying
  asset description, referral code, checkpoint path, and metrics/events
  configuration.
"""

import os
import pathlib
from typing import Optional

import yaml
from pydantic import BaseModel, Field, ValidationError, field_validator

from ..errors import ConfigurationError

ADMIN_ENV = "SHARELEDGER_ADMIN"


class AssetConfig(BaseModel):
    """Underlying asset description; `decimals` fixes the ledger scale."""
    symbol: str = "USDC"
    decimals: int = Field(default=6, ge=0, le=77)


class MetricsConfig(BaseModel):
    port: int = Field(default=8000, ge=0, le=65535)
    enabled: bool = True


class EventsConfig(BaseModel):
    stream: str = "shareledger.events"
    dlq: str = "shareledger.dlq"
    redis_url: str = "redis://localhost:6379/0"


class Settings(BaseModel):
    """Runtime settings assembled from YAML + environment variables."""
    pool_address: str = "share-ledger"
    admin: str
    yield_source_address: str = "lending-market"
    referral_code: int = Field(default=0, ge=0, le=0xFFFF)
    state_path: str = "data/ledger_state.sqlite"
    asset: AssetConfig = AssetConfig()
    metrics: MetricsConfig = MetricsConfig()
    events: EventsConfig = EventsConfig()

    @field_validator("admin", "pool_address", "yield_source_address")
    @classmethod
    def not_empty(cls, v, info):
        if not v:
            raise ValueError(f"Missing required setting: {info.field_name}")
        return v


def load_settings(path: str = "config/config.yaml", require_file: bool = True) -> Settings:
    """Load YAML config, resolve the administrator from the environment, return Settings.

    With `require_file=False` a missing file yields the defaults, which still
    need `SHARELEDGER_ADMIN` to be set.
    """
    p = pathlib.Path(path)
    if p.exists():
        with open(p, "r") as f:
            config = yaml.safe_load(f) or {}
    elif require_file:
        raise ConfigurationError(f"config file not found: {path}")
    else:
        config = {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"config file {path} must contain a mapping")
    admin = os.getenv(ADMIN_ENV) or config.get("admin") or ""
    if not admin:
        raise ConfigurationError(
            f"Missing administrator identity. Set {ADMIN_ENV} or `admin` in {path}"
        )
    config["admin"] = admin
    try:
        return Settings(**config)
    except ValidationError as e:
        raise ConfigurationError(f"invalid configuration in {path}: {e}") from e


def apply_event_env(settings: Settings, environ: Optional[dict] = None) -> None:
    """Export the events section as the env vars the event bus reads; existing values win."""
    env = os.environ if environ is None else environ
    env.setdefault("EVENTS_STREAM", settings.events.stream)
    env.setdefault("EVENTS_DLQ", settings.events.dlq)
    env.setdefault("REDIS_URL", settings.events.redis_url)
