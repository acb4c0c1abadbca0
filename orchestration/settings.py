"""Typed runtime settings loaded from the YAML config.

The YAML layout is::

    debate:       # orchestration knobs
    temperatures: # per-role sampling temperatures
    api:          # retry knobs plus one section per provider
    database:     # sqlite path
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)

_RETRY_KEYS = ("max_retries", "initial_delay", "max_delay", "backoff_multiplier", "timeout")


class RetrySettings(BaseModel):
    max_retries: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=10.0, ge=0.0)
    backoff_multiplier: float = Field(default=2.0, ge=1.0)
    timeout: int = Field(default=30, ge=1)


class ProviderSettings(BaseModel):
    api_key_env: str | None = None
    model: str | None = None
    base_url: str | None = None


class TemperatureSettings(BaseModel):
    debater: float = 0.7
    judge: float = 0.3
    audience_request: float = 0.7
    audience_speech: float = 0.8
    audience_vote: float = 0.5


class DebateSettings(BaseModel):
    """Everything the registry, executor and finalizer need to know."""

    max_concurrent_debates: int = Field(default=3, ge=1)
    inter_round_delay: float = Field(default=1.0, ge=0.0)
    audience_window: tuple[int, int] = (3, 6)
    teardown_grace: float = Field(default=5.0, ge=0.0)
    draw_threshold: float = Field(default=0.1, ge=0.0)
    default_request_confidence: float = Field(default=0.8, ge=0.0, le=1.0)
    audience_voting: bool = True
    temperatures: TemperatureSettings = Field(default_factory=TemperatureSettings)
    retry: RetrySettings = Field(default_factory=RetrySettings)
    providers: dict[str, ProviderSettings] = Field(default_factory=dict)
    database_path: str = "data/debates.db"

    @field_validator("audience_window")
    @classmethod
    def _ordered_window(cls, value: tuple[int, int]) -> tuple[int, int]:
        start, end = value
        if start < 1 or end < start:
            raise ValueError(f"audience_window must be 1 <= start <= end, got {value}")
        return value

    def provider(self, name: str) -> ProviderSettings:
        return self.providers.get(name.lower(), ProviderSettings())

    @classmethod
    def from_config(cls, cfg: dict[str, Any]) -> DebateSettings:
        """Build settings from the parsed YAML mapping."""
        api_cfg = dict(cfg.get("api") or {})
        retry = {k: api_cfg.pop(k) for k in _RETRY_KEYS if k in api_cfg}
        providers = {
            name: section for name, section in api_cfg.items() if isinstance(section, dict)
        }
        data: dict[str, Any] = dict(cfg.get("debate") or {})
        data["retry"] = retry
        data["providers"] = providers
        data["temperatures"] = cfg.get("temperatures") or {}
        db_path = (cfg.get("database") or {}).get("path")
        if db_path:
            data["database_path"] = db_path
        return cls.model_validate(data)


def load_settings(path: str | Path = "config/default.yaml") -> DebateSettings:
    """Load settings from *path*; a missing file yields the defaults."""
    p = Path(path)
    if not p.exists():
        logger.warning("Config not found: %s. Using defaults.", p)
        return DebateSettings()
    with open(p) as f:
        return DebateSettings.from_config(yaml.safe_load(f) or {})
