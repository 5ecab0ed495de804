"""
Configuration management and loading.

Handles pipeline settings from defaults, an optional YAML file and
environment variables (a local .env file is honoured).
"""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from dotenv import load_dotenv

from meal_guard.core.pricing import PRICING_TABLE

ENV_PREFIX = "MEAL_GUARD_"


@dataclass(frozen=True)
class PipelineConfig:
    """Cost, rate and provider limits for recipe generation."""
    max_daily_cost_free: float = 0.01
    max_daily_cost_premium: float = 0.50
    circuit_breaker_cost: float = 2.00
    rate_limit_threshold: int = 10
    rate_window_minutes: int = 60
    provider_timeout_seconds: float = 30.0
    storage_timeout_seconds: float = 10.0
    model: str = "gpt-4o-mini"
    max_tokens: int = 1200
    temperature: float = 0.7
    cache_ttl_hours: float = 24.0
    db_path: str = "meal_guard.db"

    def __post_init__(self):
        """Validate limits are usable."""
        for name in ("max_daily_cost_free", "max_daily_cost_premium", "circuit_breaker_cost"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be > 0")
        if self.max_daily_cost_premium < self.max_daily_cost_free:
            raise ValueError("max_daily_cost_premium must be >= max_daily_cost_free")
        if self.rate_limit_threshold <= 0:
            raise ValueError("rate_limit_threshold must be > 0")
        if self.rate_window_minutes <= 0:
            raise ValueError("rate_window_minutes must be > 0")
        if self.provider_timeout_seconds <= 0:
            raise ValueError("provider_timeout_seconds must be > 0")
        if self.storage_timeout_seconds <= 0:
            raise ValueError("storage_timeout_seconds must be > 0")
        if not self.model or not self.model.strip():
            raise ValueError("model cannot be empty")
        if self.model not in PRICING_TABLE.prices:
            raise ValueError(
                f"model '{self.model}' has no pricing; supported models: {sorted(PRICING_TABLE.prices)}"
            )
        if self.max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if not 0 <= self.temperature <= 2:
            raise ValueError("temperature must be between 0 and 2")
        if self.cache_ttl_hours <= 0:
            raise ValueError("cache_ttl_hours must be > 0")

    def daily_ceiling(self, premium: bool) -> float:
        """Daily cost ceiling for the user's tier."""
        return self.max_daily_cost_premium if premium else self.max_daily_cost_free


_FIELD_TYPES = {f.name: f.type for f in fields(PipelineConfig)}


def _coerce(key: str, value: Any, source: str) -> Any:
    """Convert a raw value to the declared field type."""
    expected = _FIELD_TYPES[key]
    if expected in (int, "int"):
        if isinstance(value, bool) or not isinstance(value, (int, str)):
            raise ValueError(f"'{key}' in {source} must be an integer")
        try:
            return int(value)
        except ValueError:
            raise ValueError(f"'{key}' in {source} must be an integer")
    if expected in (float, "float"):
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError(f"'{key}' in {source} must be a number")
        try:
            return float(value)
        except ValueError:
            raise ValueError(f"'{key}' in {source} must be a number")
    if not isinstance(value, str):
        raise ValueError(f"'{key}' in {source} must be a string")
    return value


def _read_yaml(path: str) -> Dict[str, Any]:
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Pipeline config file not found: {path}")

    with open(config_path, 'r', encoding='utf-8') as f:
        try:
            raw_config = yaml.safe_load(f)
        except yaml.YAMLError as e:
            raise yaml.YAMLError(f"Invalid YAML in config file {path}: {e}")

    if not raw_config:
        raise ValueError("Configuration file is empty")
    if not isinstance(raw_config, dict):
        raise ValueError("Configuration file must contain a mapping")

    unknown_keys = set(raw_config.keys()) - set(_FIELD_TYPES)
    if unknown_keys:
        raise ValueError(f"Unknown configuration keys: {unknown_keys}")

    return {key: _coerce(key, value, path) for key, value in raw_config.items()}


def _read_environment(environ) -> Dict[str, Any]:
    overrides = {}
    for key in _FIELD_TYPES:
        env_key = ENV_PREFIX + key.upper()
        if env_key in environ and environ[env_key] != "":
            overrides[key] = _coerce(key, environ[env_key], env_key)
    return overrides


def load_pipeline_config(
    path: Optional[str] = None,
    environ: Optional[Dict[str, str]] = None,
    use_dotenv: bool = True
) -> PipelineConfig:
    """Load and validate pipeline configuration.

    Precedence, lowest first: built-in defaults, the YAML file, then
    ``MEAL_GUARD_*`` environment variables. Validation is strict so that a
    typo can never silently fall back to a looser cost ceiling.

    Args:
        path: Optional path to YAML configuration file
        environ: Environment mapping (defaults to ``os.environ``)
        use_dotenv: Load a ``.env`` file into the process environment first

    Returns:
        Validated PipelineConfig object

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
        ValueError: If configuration is invalid
    """
    if environ is None:
        if use_dotenv:
            load_dotenv()
        environ = os.environ

    config = PipelineConfig()
    if path:
        config = replace(config, **_read_yaml(path))
    return replace(config, **_read_environment(environ))
