"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables, the ``ForecastConfig`` holding the forecasting
parameters, and a helper to load the YAML file those parameters live in.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from functools import lru_cache
from typing import Any, Mapping

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Location of the exported store tables and of the YAML configuration
    data_dir: str = "data"
    config_root: str = "configs"

    # Optional bearer token and per-client rate limit for the HTTP surface
    api_token: str | None = None
    rate_limit_per_min: int = 60

    # GEMINI API key (optional; only used for forecast explanations)
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-1.5-flash"


@lru_cache(maxsize=None)
def get_settings() -> Settings:
    """Return a cached instance of ``Settings``.

    Using a cache ensures that environment variables are only read once.
    """
    return Settings()


def load_yaml(file_path: str) -> dict:
    """Load a YAML file from the given path and return its contents.

    If the file does not exist, an empty dictionary is returned.
    """
    if not os.path.exists(file_path):
        return {}
    with open(file_path, "r", encoding="utf-8") as f:
        return yaml.safe_load(f) or {}


@dataclass(frozen=True, slots=True)
class ForecastConfig:
    """Tunable parameters of the forecasting pipeline."""

    ensemble_lookback_days: int = 7
    breakdown_lookback_days: int = 30
    recent_window_days: int = 7
    breakdown_jitter: bool = False
    jitter_spread: float = 0.05
    top_products: int = 10
    top_pairs: int = 4
    batch_max_concurrency: int = 4
    batch_timeout_seconds: float = 10.0
    demand_high_threshold: float = 5.0
    demand_medium_threshold: float = 2.0
    overview_trend_threshold_percent: float = 20.0

    def __post_init__(self) -> None:
        for name in (
            "ensemble_lookback_days",
            "breakdown_lookback_days",
            "recent_window_days",
            "top_products",
            "top_pairs",
            "batch_max_concurrency",
        ):
            if int(getattr(self, name)) <= 0:
                raise ValueError(f"{name} must be a positive integer")
        if self.recent_window_days >= self.breakdown_lookback_days:
            raise ValueError("recent_window_days must be shorter than breakdown_lookback_days")
        if self.jitter_spread < 0:
            raise ValueError("jitter_spread must not be negative")
        if self.batch_timeout_seconds <= 0:
            raise ValueError("batch_timeout_seconds must be positive")

    @classmethod
    def from_mapping(cls, values: Mapping[str, Any]) -> "ForecastConfig":
        """Build a config from a mapping, ignoring keys that are not parameters."""

        kwargs: dict[str, Any] = {}
        for field in fields(cls):
            if field.name not in values or values[field.name] is None:
                continue
            raw = values[field.name]
            if field.type == "bool":
                kwargs[field.name] = raw if isinstance(raw, bool) else str(raw).lower() in {"1", "true", "yes", "on"}
            elif field.type == "int":
                kwargs[field.name] = int(raw)
            else:
                kwargs[field.name] = float(raw)
        return cls(**kwargs)


def load_forecast_config(config_root: str | None = None) -> ForecastConfig:
    """Read ``settings.yaml`` under ``config_root`` into a ``ForecastConfig``."""

    root = config_root or get_settings().config_root
    settings = load_yaml(os.path.join(root, "settings.yaml"))
    return ForecastConfig.from_mapping(settings.get("forecasting", settings))
