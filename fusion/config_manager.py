"""Configuration management: load, validate, merge YAML + env vars.

Uses Pydantic v2 for schema validation and PyYAML for file parsing.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Tuple

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fusion.batch import BatchFusionRunner
from fusion.config import FusionConfig
from fusion.engine import FusionEngine
from fusion.fallback import FallbackModel
from resilience.clock import Clock
from resilience.config import RATE_LIMIT_PRESETS, RateLimiterOptions, ResilienceConfig
from resilience.metrics_collector import MetricsCollector
from resilience.retry_executor import RetryExecutor
from resilience.telemetry import set_log_level


# ── Pydantic settings models ───────────────────────────────────────


class SystemSettings(BaseModel):
    """Top-level system settings."""

    model_config = ConfigDict(frozen=True)

    log_level: str = "INFO"

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
        upper = v.upper()
        if upper not in allowed:
            raise ValueError(f"log_level must be one of {sorted(allowed)}, got '{v}'")
        return upper


class ResilienceSettings(BaseModel):
    """Mirror of :class:`ResilienceConfig` for file/env loading."""

    model_config = ConfigDict(frozen=True)

    max_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 30.0
    circuit_breaker_failure_threshold: int = 5
    circuit_breaker_cooldown: float = 60.0
    call_timeout: float = 10.0
    rate_limit_preset: str = "default"
    enable_prometheus_metrics: bool = True

    def to_config(self) -> ResilienceConfig:
        """Build the frozen dataclass; raises ``ValueError`` on bad values."""
        return ResilienceConfig(**self.model_dump())


class RateLimitOverride(BaseModel):
    """Per-dependency limiter: a named preset, optionally with field overrides."""

    model_config = ConfigDict(frozen=True)

    preset: str = "default"
    base_delay: Optional[float] = None
    max_delay: Optional[float] = None
    batch_size: Optional[int] = None
    batch_delay: Optional[float] = None

    @field_validator("preset")
    @classmethod
    def _known_preset(cls, v: str) -> str:
        if v not in RATE_LIMIT_PRESETS:
            raise ValueError(f"preset must be one of {sorted(RATE_LIMIT_PRESETS)}, got '{v}'")
        return v

    def to_options(self) -> RateLimiterOptions:
        base = RATE_LIMIT_PRESETS[self.preset]
        return RateLimiterOptions(
            base_delay=base.base_delay if self.base_delay is None else self.base_delay,
            max_delay=base.max_delay if self.max_delay is None else self.max_delay,
            batch_size=base.batch_size if self.batch_size is None else self.batch_size,
            batch_delay=base.batch_delay if self.batch_delay is None else self.batch_delay,
        )


class BatchSettings(BaseModel):
    """Worker pool size and the limiter key that paces chunks of subjects."""

    model_config = ConfigDict(frozen=True)
    max_concurrency: int = Field(default=4, ge=1)
    limiter_key: str = "batch"


# ── Top-level config ───────────────────────────────────────────────


class FusionSettings(BaseModel):
    """Complete configuration for one fusion process."""

    model_config = ConfigDict(frozen=True)

    system: SystemSettings = Field(default_factory=SystemSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    fusion: FusionConfig = Field(default_factory=FusionConfig)
    rate_limits: Dict[str, RateLimitOverride] = Field(default_factory=dict)
    batch: BatchSettings = Field(default_factory=BatchSettings)


# ── ConfigManager ──────────────────────────────────────────────────


def _as_bool(value: str) -> bool:
    return value.lower() in ("1", "true", "yes")


# Environment variable → (config path, type coercion).
_ENV_MAP: Dict[str, Tuple[str, Callable[[str], Any]]] = {
    "FUSION_LOG_LEVEL": ("system.log_level", str),
    "FUSION_MAX_ATTEMPTS": ("resilience.max_attempts", int),
    "FUSION_BREAKER_THRESHOLD": ("resilience.circuit_breaker_failure_threshold", int),
    "FUSION_BREAKER_COOLDOWN": ("resilience.circuit_breaker_cooldown", float),
    "FUSION_CALL_TIMEOUT": ("resilience.call_timeout", float),
    "FUSION_RATE_LIMIT_PRESET": ("resilience.rate_limit_preset", str),
    "FUSION_PROMETHEUS_ENABLED": ("resilience.enable_prometheus_metrics", _as_bool),
    "FUSION_ANALYZER_TIMEOUT": ("fusion.analyzer_timeout", float),
    "FUSION_FAN_OUT_LIMIT": ("fusion.fan_out_limit", int),
    "FUSION_BOOST_FACTOR": ("fusion.boost_factor", float),
    "FUSION_HYBRID_CEILING": ("fusion.hybrid_confidence_ceiling", float),
    "FUSION_BATCH_CONCURRENCY": ("batch.max_concurrency", int),
    "FUSION_BATCH_LIMITER": ("batch.limiter_key", str),
}


class ConfigManager:
    """Load, validate, and merge configuration from YAML + env vars."""

    @staticmethod
    def load(config_path: str = "fusion.yaml") -> FusionSettings:
        """Load config from *config_path*, validate, merge env vars.

        A missing file yields defaults (still subject to env overrides).

        Raises:
            yaml.YAMLError: If the file contains invalid YAML.
            pydantic.ValidationError: If the data fails validation.
        """
        path = Path(config_path)
        if path.exists():
            with open(path, encoding="utf-8") as fh:
                raw: Dict[str, Any] = yaml.safe_load(fh) or {}
        else:
            raw = {}

        settings = FusionSettings.model_validate(raw)
        return ConfigManager.merge_env_vars(settings)

    @staticmethod
    def validate(settings: FusionSettings) -> List[str]:
        """Return a list of human-readable validation issues.

        An empty list means the settings can build a working pipeline.
        """
        issues: List[str] = []
        try:
            settings.resilience.to_config()
        except ValueError as exc:
            issues.append(f"resilience: {exc}")

        for key, override in settings.rate_limits.items():
            try:
                override.to_options()
            except ValueError as exc:
                issues.append(f"rate_limits.{key}: {exc}")

        if settings.fusion.analyzer_timeout > settings.resilience.call_timeout * 10:
            issues.append("fusion.analyzer_timeout is far above resilience.call_timeout")
        return issues

    @staticmethod
    def merge_env_vars(settings: FusionSettings) -> FusionSettings:
        """Override values from ``FUSION_*`` environment variables.

        Returns a **new** frozen :class:`FusionSettings`.
        """
        overrides: Dict[str, Any] = {}

        for env_key, (config_path, cast) in _ENV_MAP.items():
            value = os.environ.get(env_key)
            if value is None:
                continue
            parts = config_path.split(".")
            d = overrides
            for p in parts[:-1]:
                d = d.setdefault(p, {})
            d[parts[-1]] = cast(value)

        if not overrides:
            return settings

        base = settings.model_dump()
        _deep_merge(base, overrides)
        return FusionSettings.model_validate(base)

    @staticmethod
    def save(settings: FusionSettings, path: str) -> None:
        """Dump *settings* to a YAML file at *path*."""
        out = Path(path)
        out.parent.mkdir(parents=True, exist_ok=True)
        with open(out, "w", encoding="utf-8") as fh:
            yaml.safe_dump(
                settings.model_dump(mode="json"),
                fh,
                default_flow_style=False,
                sort_keys=False,
            )

    @staticmethod
    def build_engine(
        settings: FusionSettings,
        clock: Optional[Clock] = None,
    ) -> FusionEngine:
        """Wire executor, registries, metrics and engine from *settings*."""
        set_log_level(settings.system.log_level)
        resilience = settings.resilience.to_config()
        metrics = MetricsCollector(resilience)
        executor = RetryExecutor.from_config(resilience, clock=clock, metrics_collector=metrics)
        for key, override in settings.rate_limits.items():
            executor.limiters.configure(key, override.to_options())
        return FusionEngine(
            executor,
            settings.fusion,
            FallbackModel(settings.fusion.fallback),
            metrics_collector=metrics,
        )

    @staticmethod
    def build_batch_runner(settings: FusionSettings, engine: FusionEngine) -> BatchFusionRunner:
        """Pool subjects through *engine*, paced by the ``batch.limiter_key`` limiter.

        The limiter comes from the engine's registry, so a ``rate_limits``
        entry under the same key sets its batch size and delay.
        """
        limiter = engine.executor.limiters.get(settings.batch.limiter_key)
        return BatchFusionRunner(
            engine, limiter, max_concurrency=settings.batch.max_concurrency
        )


# ── helpers ────────────────────────────────────────────────────────


def _deep_merge(base: dict, overrides: dict) -> None:
    """Recursively merge *overrides* into *base* (mutating)."""
    for k, v in overrides.items():
        if isinstance(v, dict) and isinstance(base.get(k), dict):
            _deep_merge(base[k], v)
        else:
            base[k] = v
