"""
Application configuration utilities.

This module defines the ``Settings`` class used throughout the service for
environment variables, the ``ReorderPolicy`` holding the tunable constants of
the reorder engine, and helper functions to load YAML files containing those
policies.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass, fields
from functools import lru_cache
from typing import Any, Dict

import yaml
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Configuration loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # API server configuration
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Location of the catalog / sales / purchase order files
    data_dir: str = "data"
    # Location of settings.yaml and reorder.yaml
    config_dir: str = "configs"

    # Sales are bucketed into calendar days in this timezone
    timezone: str = "UTC"

    # Comma separated list of allowed CORS origins; empty allows all
    cors_origins: str = ""


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


# ---------------------------------------------------------------------------
# Reorder policy

# Urgency tiers are multiples of the configured safety stock days.
CRITICAL_SAFETY_MULTIPLIER = 1.0
HIGH_SAFETY_MULTIPLIER = 2.0
MEDIUM_SAFETY_MULTIPLIER = 4.0

# Stand-in for "never runs out" when a product has stock but no sales.
DAYS_UNBOUNDED = 9999.0

TREND_SLOPE_THRESHOLD = 0.01
MIN_WEEKDAY_SAMPLES = 3
SEASONAL_FACTOR_BOUNDS = (0.5, 1.5)


@dataclass(frozen=True)
class ReorderPolicy:
    """Tunable constants of the reorder engine.

    Values default to the module constants above and may be overridden by
    ``configs/reorder.yaml``.
    """

    critical_multiplier: float = CRITICAL_SAFETY_MULTIPLIER
    high_multiplier: float = HIGH_SAFETY_MULTIPLIER
    medium_multiplier: float = MEDIUM_SAFETY_MULTIPLIER
    days_unbounded: float = DAYS_UNBOUNDED

    trend_slope_threshold: float = TREND_SLOPE_THRESHOLD
    min_weekday_samples: int = MIN_WEEKDAY_SAMPLES
    seasonal_factor_min: float = SEASONAL_FACTOR_BOUNDS[0]
    seasonal_factor_max: float = SEASONAL_FACTOR_BOUNDS[1]

    # Fan-out limits and per-call timeouts for collaborators
    history_concurrency: int = 8
    supplier_concurrency: int = 4
    history_timeout_seconds: float = 5.0
    product_timeout_seconds: float = 5.0
    order_timeout_seconds: float = 15.0

    def __post_init__(self) -> None:
        if not (0 < self.critical_multiplier <= self.high_multiplier <= self.medium_multiplier):
            raise ValueError(
                "urgency multipliers must satisfy 0 < critical <= high <= medium"
            )
        if self.days_unbounded <= 0:
            raise ValueError("days_unbounded must be positive")
        if not (0 < self.seasonal_factor_min <= 1.0 <= self.seasonal_factor_max):
            raise ValueError("seasonal factor bounds must bracket 1.0 and stay positive")
        if self.history_concurrency <= 0 or self.supplier_concurrency <= 0:
            raise ValueError("concurrency limits must be positive integers")

    @classmethod
    def from_mapping(cls, data: Dict[str, Any] | None) -> "ReorderPolicy":
        """Build a policy from a mapping, ignoring unknown or null keys."""

        known = {f.name for f in fields(cls)}
        values: Dict[str, Any] = {}
        for key, value in (data or {}).items():
            if key in known and value is not None:
                values[key] = value
        defaults = cls()
        coerced = {
            key: type(getattr(defaults, key))(value) for key, value in values.items()
        }
        return cls(**coerced)

    @classmethod
    def from_yaml(cls, config_root: str | None = None) -> "ReorderPolicy":
        root = config_root or get_settings().config_dir
        return cls.from_mapping(load_yaml(os.path.join(root, "reorder.yaml")))

    def as_dict(self) -> Dict[str, Any]:
        return asdict(self)
