"""Fusion: confidence-scored behavioral metrics from unreliable sources.

Public API::

    from fusion import FusionEngine, FusionConfig, AnalyzerDescriptor, ContextSnapshot
    from fusion.config_manager import ConfigManager
"""

from fusion.analyzers import (
    SharedFetch,
    Transaction,
    TransactionSource,
    build_transaction_analyzers,
)
from fusion.batch import BatchFusionRunner, FusionRequest, FusionSink
from fusion.config import FallbackModelConfig, FusionConfig
from fusion.engine import FusionEngine
from fusion.fallback import FallbackModel
from fusion.health_monitor import HealthMonitor, HealthReport
from fusion.schema import (
    BEHAVIORAL_METRICS,
    AnalyzerDescriptor,
    AnalyzerOutcome,
    ContextSnapshot,
    FusionResult,
    FusionStrategy,
    MetricSample,
    Provenance,
)

__all__ = [
    "AnalyzerDescriptor",
    "AnalyzerOutcome",
    "BEHAVIORAL_METRICS",
    "BatchFusionRunner",
    "ContextSnapshot",
    "FallbackModel",
    "FallbackModelConfig",
    "FusionConfig",
    "FusionEngine",
    "FusionRequest",
    "FusionResult",
    "FusionSink",
    "FusionStrategy",
    "HealthMonitor",
    "HealthReport",
    "MetricSample",
    "Provenance",
    "SharedFetch",
    "Transaction",
    "TransactionSource",
    "build_transaction_analyzers",
]
