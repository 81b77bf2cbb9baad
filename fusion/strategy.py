"""Strategy selection and confidence rules, as pure functions of coverage."""

from __future__ import annotations

from typing import Dict, List, Mapping, Tuple

from fusion.config import FusionConfig
from fusion.fallback import FallbackModel
from fusion.schema import FusionStrategy, MetricSample

_EPSILON = 1e-9


def compute_coverage(real_count: int, expected_count: int) -> float:
    """Share of expected metrics obtained from real sources, in [0, 1]."""
    if expected_count <= 0:
        return 0.0
    return min(1.0, max(0.0, real_count / expected_count))


def select_strategy(
    coverage: float,
    config: FusionConfig,
    total_failure: bool = False,
) -> FusionStrategy:
    """Pick the fusion strategy.

    ``total_failure`` means at least one analyzer ran and none produced a
    metric; it wins over every coverage band.
    """
    if total_failure:
        return FusionStrategy.ERROR_FALLBACK
    if coverage >= 1.0:
        return FusionStrategy.REAL_ONLY
    if coverage >= config.real_primary_threshold:
        return FusionStrategy.REAL_PRIMARY
    if coverage >= config.hybrid_threshold:
        return FusionStrategy.HYBRID
    return FusionStrategy.MATHEMATICAL_FALLBACK


def average_confidence(samples: Mapping[str, MetricSample]) -> float:
    """Metric-count-weighted mean confidence of the given samples.

    Each analyzer contributes its confidence once per metric it supplied,
    so the mean over samples is already the weighted mean over analyzers.
    """
    if not samples:
        return 0.0
    return sum(s.confidence for s in samples.values()) / len(samples)


def overall_confidence(
    strategy: FusionStrategy,
    average: float,
    config: FusionConfig,
) -> float:
    if strategy in (FusionStrategy.REAL_ONLY, FusionStrategy.REAL_PRIMARY):
        return average
    if strategy == FusionStrategy.HYBRID:
        return min(average, config.hybrid_confidence_ceiling)
    if strategy == FusionStrategy.MATHEMATICAL_FALLBACK:
        return config.mathematical_fallback_confidence
    return config.error_fallback_confidence


def nudge_correlated(
    real: Mapping[str, float],
    filled: Mapping[str, float],
    predicted: Mapping[str, float],
    config: FusionConfig,
    model: FallbackModel,
) -> Tuple[Dict[str, float], List[str]]:
    """Raise fallback-filled metrics that correlate with a surprisingly strong real one.

    A real metric is surprising when it exceeds its model prediction by more
    than ``deviation_threshold`` (relative).  Each correlated metric that was
    fallback-filled is multiplied by ``boost_factor`` once, then clamped to
    the model bounds.

    Returns:
        (adjusted filled values, sorted names of metrics that changed)
    """
    adjusted = dict(filled)
    targets = set()
    for name, value in real.items():
        expected = predicted.get(name)
        if expected is None:
            continue
        deviation = (value - expected) / max(abs(expected), _EPSILON)
        if deviation <= config.deviation_threshold:
            continue
        for peer in config.correlated_metrics.get(name, []):
            if peer in adjusted:
                targets.add(peer)

    changed: List[str] = []
    for peer in sorted(targets):
        boosted = model.clamp(peer, adjusted[peer] * config.boost_factor)
        if boosted != adjusted[peer]:
            adjusted[peer] = boosted
            changed.append(peer)
    return adjusted, changed
