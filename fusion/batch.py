"""Worker pool that fuses many subjects, chunked and paced by a rate limiter."""

from __future__ import annotations

import asyncio
from typing import Dict, List, Optional, Protocol, Sequence

from pydantic import BaseModel, ConfigDict, Field

from fusion.engine import FusionEngine
from fusion.schema import AnalyzerDescriptor, ContextSnapshot, FusionResult
from resilience.rate_limiter import AdaptiveRateLimiter
from resilience.telemetry import get_logger

_logger = get_logger(__name__)


class FusionRequest(BaseModel):
    """One subject to fuse."""
    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    subject_id: str = Field(min_length=1)
    analyzers: List[AnalyzerDescriptor]
    snapshot: ContextSnapshot = Field(default_factory=ContextSnapshot)
    expected_metrics: Optional[List[str]] = None


class FusionSink(Protocol):
    """Persistence hook; writes must be idempotent on ``subject_id``."""

    async def write(self, result: FusionResult) -> None:
        ...


class BatchFusionRunner:
    """Fuse a list of subjects with bounded concurrency.

    Subjects are split into chunks of ``limiter.options.batch_size``; the
    limiter's ``wait_for_batch`` pause separates consecutive chunks and at
    most ``max_concurrency`` subjects are in flight at any time.
    """

    def __init__(
        self,
        engine: FusionEngine,
        limiter: AdaptiveRateLimiter,
        max_concurrency: int = 4,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        self.engine = engine
        self.limiter = limiter
        self.max_concurrency = max_concurrency

    async def run(
        self,
        requests: Sequence[FusionRequest],
        sink: Optional[FusionSink] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> Dict[str, FusionResult]:
        """Fuse every request; returns results keyed by subject id.

        A failing sink write is logged and does not affect other subjects.
        Once *cancel_event* is set, remaining chunks are not started.
        """
        semaphore = asyncio.Semaphore(self.max_concurrency)
        results: Dict[str, FusionResult] = {}
        size = self.limiter.options.batch_size
        chunks = [requests[i:i + size] for i in range(0, len(requests), size)]

        for index, chunk in enumerate(chunks):
            if cancel_event is not None and cancel_event.is_set():
                _logger.warning(f"Batch cancelled before chunk {index + 1}/{len(chunks)}")
                break
            if index > 0:
                await self.limiter.wait_for_batch()
            _logger.info(f"Processing chunk {index + 1}/{len(chunks)} ({len(chunk)} subjects)")
            fused = await asyncio.gather(
                *(self._fuse_one(req, semaphore, sink, cancel_event) for req in chunk)
            )
            for result in fused:
                results[result.subject_id] = result

        return results

    async def _fuse_one(
        self,
        request: FusionRequest,
        semaphore: asyncio.Semaphore,
        sink: Optional[FusionSink],
        cancel_event: Optional[asyncio.Event],
    ) -> FusionResult:
        async with semaphore:
            result = await self.engine.fuse(
                request.subject_id,
                request.analyzers,
                request.snapshot,
                expected_metrics=request.expected_metrics,
                cancel_event=cancel_event,
            )
        if sink is not None:
            try:
                await sink.write(result)
            except Exception:
                _logger.exception(
                    "Sink write failed",
                    extra={"subject_id": request.subject_id,
                           "correlation_id": result.correlation_id},
                )
        return result
