"""
File: fallback.py
Purpose: Deterministic market-data model for behavioral metrics.
Dependencies: Standard library only

Used to fill metrics no real source produced, and as the whole vector when
coverage is too low to trust.  Same snapshot in, same values out.
"""

from __future__ import annotations

import math
from typing import Dict, Optional, Tuple

from fusion.config import FallbackModelConfig
from fusion.schema import (
    NEW_HOLDERS_24H,
    SMART_MONEY_SCORE,
    TOKEN_AGE_HOURS,
    TRANSACTION_PATTERN_SCORE,
    VOLUME_SPIKE_RATIO,
    WHALE_BUYS_24H,
    ContextSnapshot,
)

_UNBOUNDED = math.inf

# Metrics reported as whole counts.
COUNT_METRICS = frozenset({NEW_HOLDERS_24H, WHALE_BUYS_24H})


class FallbackModel:
    """Pure function of :class:`ContextSnapshot` → bounded metric vector.

    Args:
        config: Formula constants.

    Example::

        model = FallbackModel()
        model.predict(ContextSnapshot(volume_24h=50_000, market_cap=1_000_000))
    """

    def __init__(self, config: Optional[FallbackModelConfig] = None) -> None:
        self._config = config or FallbackModelConfig()

    @property
    def config(self) -> FallbackModelConfig:
        return self._config

    def predict(self, snapshot: ContextSnapshot) -> Dict[str, float]:
        """Return a value for every behavioral metric, each inside :meth:`bounds`."""
        raw = {
            NEW_HOLDERS_24H: self.new_holders(snapshot),
            WHALE_BUYS_24H: self.whale_buys(snapshot),
            VOLUME_SPIKE_RATIO: self.volume_spike_ratio(snapshot),
            TOKEN_AGE_HOURS: self.token_age_hours(snapshot),
            TRANSACTION_PATTERN_SCORE: self.transaction_pattern_score(snapshot),
            SMART_MONEY_SCORE: self.smart_money_score(snapshot),
        }
        return {name: self.clamp(name, value) for name, value in raw.items()}

    def bounds(self) -> Dict[str, Tuple[float, float]]:
        """Per-metric (low, high) limits used when clamping adjusted values."""
        cfg = self._config
        price_ceiling = cfg.max_price_change_pct
        return {
            NEW_HOLDERS_24H: (0.0, (1.0 + price_ceiling / 100.0) * cfg.new_holders_scale),
            WHALE_BUYS_24H: (0.0, float(cfg.whale_buys_cap)),
            VOLUME_SPIKE_RATIO: (1.0, 1.0 + price_ceiling / cfg.volume_spike_price_divisor),
            TOKEN_AGE_HOURS: (0.0, _UNBOUNDED),
            TRANSACTION_PATTERN_SCORE: (0.0, 1.0),
            SMART_MONEY_SCORE: (0.0, 1.0),
        }

    def clamp(self, name: str, value: float) -> float:
        low, high = self.bounds().get(name, (-_UNBOUNDED, _UNBOUNDED))
        if math.isnan(value):
            value = low if math.isfinite(low) else 0.0
        value = min(high, max(low, value))
        if name in COUNT_METRICS:
            value = float(math.floor(value))
        return value

    # ── individual formulas ───────────────────────────────────

    def whale_buys(self, s: ContextSnapshot) -> float:
        cfg = self._config
        ratio = self._volume_ratio(s)
        return float(math.floor(min(float(cfg.whale_buys_cap), ratio * cfg.whale_buys_scale)))

    def new_holders(self, s: ContextSnapshot) -> float:
        cfg = self._config
        volume_score = min(1.0, s.volume_24h / cfg.new_holders_volume_reference)
        price_score = max(0.0, self._price_change(s) / 100.0)
        return float(math.floor((volume_score + price_score) * cfg.new_holders_scale))

    def volume_spike_ratio(self, s: ContextSnapshot) -> float:
        spike = 1.0 + abs(self._price_change(s)) / self._config.volume_spike_price_divisor
        return round(max(1.0, spike), 2)

    def token_age_hours(self, s: ContextSnapshot) -> float:
        cfg = self._config
        ratio = self._volume_ratio(s)
        if ratio > cfg.token_age_young_ratio:
            return cfg.token_age_young_hours
        if ratio > cfg.token_age_mid_ratio:
            return cfg.token_age_mid_hours
        return cfg.token_age_old_hours

    def transaction_pattern_score(self, s: ContextSnapshot) -> float:
        cfg = self._config
        if s.liquidity > cfg.pattern_liquidity_threshold:
            score = cfg.pattern_high_liquidity_score
        else:
            score = s.liquidity / cfg.pattern_liquidity_divisor
        return round(min(1.0, score), 2)

    def smart_money_score(self, s: ContextSnapshot) -> float:
        cfg = self._config
        score = (
            _band_weight(s.volume_24h, cfg.smart_money_volume_band,
                         cfg.smart_money_volume_weight, cfg.smart_money_base_weight)
            + _band_weight(s.price_change_24h, cfg.smart_money_price_band,
                           cfg.smart_money_price_weight, cfg.smart_money_base_weight)
            + _band_weight(s.market_cap, cfg.smart_money_mcap_band,
                           cfg.smart_money_mcap_weight, cfg.smart_money_base_weight)
        )
        return round(min(1.0, score), 2)

    # ── input sanitising ──────────────────────────────────────

    def _price_change(self, s: ContextSnapshot) -> float:
        ceiling = self._config.max_price_change_pct
        change = s.price_change_24h
        if math.isnan(change):
            return 0.0
        return min(ceiling, max(-ceiling, change))

    @staticmethod
    def _volume_ratio(s: ContextSnapshot) -> float:
        # 0 when there is no market cap to compare against; may be inf.
        if not s.market_cap > 0:
            return 0.0
        ratio = s.volume_24h / s.market_cap
        return 0.0 if math.isnan(ratio) else ratio


def _band_weight(value: float, band: Tuple[float, float], inside: float, outside: float) -> float:
    low, high = band
    return inside if low < value < high else outside
