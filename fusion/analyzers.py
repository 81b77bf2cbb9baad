"""
File: analyzers.py
Purpose: Transaction-derived sub-analyzers for the fusion engine.
Dependencies: pydantic >=2.0

Each derivation is a pure function over a list of :class:`Transaction`
records; ``build_transaction_analyzers`` wraps an injected async
:class:`TransactionSource` into :class:`AnalyzerDescriptor` objects.
An empty transaction list yields no metrics, so the engine fills those
from the fallback model instead of reporting a fabricated zero.
"""

from __future__ import annotations

import asyncio
import math
import time
from enum import Enum
from typing import Callable, Dict, Iterable, List, Optional, Protocol, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, Field

from fusion.schema import (
    NEW_HOLDERS_24H,
    SMART_MONEY_SCORE,
    TOKEN_AGE_HOURS,
    TRANSACTION_PATTERN_SCORE,
    VOLUME_SPIKE_RATIO,
    WHALE_BUYS_24H,
    AnalyzerDescriptor,
    ContextSnapshot,
)

WHALE_THRESHOLD_USD = 10_000.0
NEW_HOLDERS_CAP = 50
SOURCE_DIVERSITY_DIVISOR = 10.0
SMART_MONEY_DIVISOR = 5.0
WINDOW_HOURS = 24
_UNKNOWN = "unknown"


# ═══════════════════════════════════════════════════════════════
#  RECORDS
# ═══════════════════════════════════════════════════════════════


class TradeSide(str, Enum):
    BUY = "buy"
    SELL = "sell"


class Transaction(BaseModel):
    """One token transfer as reported by an upstream indexer."""
    model_config = ConfigDict(frozen=True)

    signature: str
    timestamp: float = Field(ge=0, description="Unix seconds")
    token_amount: float = Field(default=0.0, ge=0)
    source: Optional[str] = None
    destination: Optional[str] = None
    side: Optional[TradeSide] = Field(
        default=None, description="Unknown side counts as a buy"
    )


class TransactionSource(Protocol):
    """Async provider of recent transactions for a subject."""

    async def fetch_transactions(
        self, subject_id: str, hours_back: int = WINDOW_HOURS
    ) -> Sequence[Transaction]:
        ...


# ═══════════════════════════════════════════════════════════════
#  PURE DERIVATIONS
# ═══════════════════════════════════════════════════════════════


def _known(address: Optional[str]) -> bool:
    return bool(address) and address != _UNKNOWN


def whale_buys(transactions: Iterable[Transaction], price_usd: float) -> int:
    """Count buys worth at least ``WHALE_THRESHOLD_USD``."""
    if price_usd <= 0:
        return 0
    return sum(
        1
        for tx in transactions
        if tx.token_amount * price_usd >= WHALE_THRESHOLD_USD and tx.side != TradeSide.SELL
    )


def new_holders(transactions: Iterable[Transaction]) -> int:
    """Unique receiving addresses, capped at ``NEW_HOLDERS_CAP``."""
    destinations = {tx.destination for tx in transactions if _known(tx.destination)}
    return min(len(destinations), NEW_HOLDERS_CAP)


def volume_spike_ratio(transactions: Sequence[Transaction], now: float) -> float:
    """Last-hour transaction count over the 24h hourly average, floored at 1."""
    if not transactions:
        return 1.0
    last_hour = sum(1 for tx in transactions if tx.timestamp > now - 3600)
    hourly_average = len(transactions) / WINDOW_HOURS
    return round(max(1.0, last_hour / hourly_average), 2)


def pattern_score(transactions: Iterable[Transaction]) -> float:
    """Source diversity, 10 distinct senders saturating at 1.0."""
    sources = {tx.source for tx in transactions if _known(tx.source)}
    return min(1.0, len(sources) / SOURCE_DIVERSITY_DIVISOR)


def smart_money_score(
    transactions: Iterable[Transaction], smart_money_addresses: Iterable[str]
) -> float:
    """Share of activity touching known smart-money wallets, 5 hits saturating."""
    known = frozenset(smart_money_addresses)
    if not known:
        return 0.0
    hits = sum(1 for tx in transactions if tx.source in known or tx.destination in known)
    return min(1.0, hits / SMART_MONEY_DIVISOR)


def token_age_hours(transactions: Iterable[Transaction], now: float) -> Optional[float]:
    """Whole hours since the earliest transaction seen, or ``None``."""
    timestamps = [tx.timestamp for tx in transactions]
    if not timestamps:
        return None
    return float(max(0, math.floor((now - min(timestamps)) / 3600)))


# ═══════════════════════════════════════════════════════════════
#  DESCRIPTOR FACTORY
# ═══════════════════════════════════════════════════════════════


class SharedFetch:
    """One upstream fetch per subject, shared by every analyzer that needs it.

    A fetch is reused while in flight and for ``ttl`` seconds after it
    started.  Failed or cancelled fetches are dropped so a retry goes
    upstream again.
    """

    def __init__(
        self,
        source: TransactionSource,
        ttl: float = 60.0,
        now: Callable[[], float] = time.time,
    ) -> None:
        self._source = source
        self._ttl = ttl
        self._now = now
        self._entries: Dict[str, Tuple[asyncio.Future, float]] = {}

    async def get(self, subject_id: str) -> Sequence[Transaction]:
        task = self._lookup(subject_id)
        if task is None:
            task = asyncio.ensure_future(
                self._source.fetch_transactions(subject_id, hours_back=WINDOW_HOURS)
            )
            task.add_done_callback(_consume_error)
            self._prune()
            self._entries[subject_id] = (task, self._now())
        # Shielded so one caller's deadline does not cancel the others' fetch.
        return await asyncio.shield(task)

    def _lookup(self, subject_id: str) -> Optional[asyncio.Future]:
        entry = self._entries.get(subject_id)
        if entry is None:
            return None
        task, started = entry
        if not task.done():
            return task
        if task.cancelled() or task.exception() is not None:
            return None
        if self._now() - started >= self._ttl:
            return None
        return task

    def _prune(self) -> None:
        now = self._now()
        stale = [
            key for key, (task, started) in self._entries.items()
            if task.done() and now - started >= self._ttl
        ]
        for key in stale:
            del self._entries[key]


def _consume_error(task: asyncio.Future) -> None:
    # Failures reach callers through the shield; mark them retrieved.
    if not task.cancelled():
        task.exception()


def build_transaction_analyzers(
    source: TransactionSource,
    smart_money_addresses: Iterable[str] = (),
    dependency_key: str = "transactions-default",
    now: Callable[[], float] = time.time,
    fetch_ttl: float = 60.0,
) -> List[AnalyzerDescriptor]:
    """Wrap *source* into one descriptor per behavioral signal.

    All descriptors share *dependency_key*, so one failing indexer trips
    one breaker and is paced by one limiter.  They also share one
    :class:`SharedFetch`, so a subject costs a single upstream call.
    """
    smart = frozenset(smart_money_addresses)
    shared = SharedFetch(source, ttl=fetch_ttl, now=now)

    async def _fetch(subject_id: str) -> Sequence[Transaction]:
        return await shared.get(subject_id)

    async def whale_activity(subject_id: str, snapshot: ContextSnapshot) -> Dict[str, float]:
        txs = await _fetch(subject_id)
        if not txs or snapshot.price_usd <= 0:
            return {}
        return {WHALE_BUYS_24H: float(whale_buys(txs, snapshot.price_usd))}

    async def holder_growth(subject_id: str, snapshot: ContextSnapshot) -> Dict[str, float]:
        txs = await _fetch(subject_id)
        if not txs:
            return {}
        return {NEW_HOLDERS_24H: float(new_holders(txs))}

    async def volume_profile(subject_id: str, snapshot: ContextSnapshot) -> Dict[str, float]:
        txs = await _fetch(subject_id)
        if not txs:
            return {}
        return {VOLUME_SPIKE_RATIO: volume_spike_ratio(txs, now())}

    async def transaction_patterns(
        subject_id: str, snapshot: ContextSnapshot
    ) -> Dict[str, float]:
        txs = await _fetch(subject_id)
        if not txs:
            return {}
        out = {TRANSACTION_PATTERN_SCORE: round(pattern_score(txs), 2)}
        if smart:
            out[SMART_MONEY_SCORE] = round(smart_money_score(txs, smart), 2)
        return out

    async def token_age(subject_id: str, snapshot: ContextSnapshot) -> Dict[str, float]:
        age = token_age_hours(await _fetch(subject_id), now())
        return {} if age is None else {TOKEN_AGE_HOURS: age}

    specs = (
        ("whale_activity", 0.85, whale_activity),
        ("holder_growth", 0.8, holder_growth),
        ("volume_profile", 0.8, volume_profile),
        ("transaction_patterns", 0.75, transaction_patterns),
        ("token_age", 0.9, token_age),
    )
    return [
        AnalyzerDescriptor(
            name=name, confidence=confidence, analyze=fn, dependency_key=dependency_key
        )
        for name, confidence, fn in specs
    ]
