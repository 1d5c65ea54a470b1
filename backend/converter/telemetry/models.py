"""Data models for performance telemetry and reports.

No internal dependencies beyond the engine counters record, so the collector, the
report reducer and the API can all share them.
"""
import itertools
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone

from converter.engine.base import EngineMetrics


@dataclass(frozen=True)
class PerformanceMetrics:
    total_time_ms: float = 0.0
    peak_memory_bytes: int = 0
    cpu_usage: float = 0.0
    items_processed: int = 0
    items_per_second: float = 0.0
    total_data_bytes: int = 0
    throughput_mbps: float = 0.0
    threads_used: int = 1
    parallel_efficiency: float = 1.0
    simd_utilized: bool = False

    @classmethod
    def from_engine(cls, raw: EngineMetrics) -> "PerformanceMetrics":
        return cls(
            total_time_ms=float(raw.total_time_ms),
            peak_memory_bytes=int(raw.peak_memory_bytes),
            cpu_usage=float(raw.cpu_usage),
            items_processed=int(raw.images_processed),
            items_per_second=float(raw.images_per_second),
            total_data_bytes=int(raw.total_data_bytes),
            throughput_mbps=float(raw.throughput_mbps),
            threads_used=int(raw.threads_used),
            parallel_efficiency=float(raw.parallel_efficiency),
            simd_utilized=bool(raw.simd_utilized),
        )

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PerformanceSnapshot:
    operation: str
    metrics: PerformanceMetrics
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    # creation order, used to interleave auto and measured snapshots
    sequence: int = field(default_factory=itertools.count().__next__, compare=False, repr=False)

    def to_dict(self) -> dict:
        return {
            "timestamp": self.timestamp.isoformat(),
            "operation": self.operation,
            "metrics": self.metrics.to_dict(),
        }


@dataclass(frozen=True)
class ReportSummary:
    total_processing_time_ms: float = 0.0
    average_processing_time_ms: float = 0.0
    fastest_processing_time_ms: float = 0.0
    slowest_processing_time_ms: float = 0.0
    total_items_processed: int = 0
    average_items_per_second: float = 0.0


@dataclass(frozen=True)
class OperationStats:
    operation_name: str
    execution_count: int
    total_time_ms: float
    average_time_ms: float
    peak_memory_bytes: int
    average_memory_bytes: float


@dataclass(frozen=True)
class TrendAnalysis:
    performance_trend: float = 0.0  # > 0 means getting slower
    memory_trend: float = 0.0
    stability_score: float = 1.0


@dataclass(frozen=True)
class Recommendation:
    type: str  # algorithm | memory | cache | parallel
    description: str
    expected_improvement: float
    implementation_difficulty: int  # 1 (easy) .. 5 (hard)


@dataclass(frozen=True)
class PerformanceReport:
    summary: ReportSummary
    operations: list[OperationStats]
    trends: TrendAnalysis
    recommendations: list[Recommendation]

    def to_dict(self) -> dict:
        return asdict(self)
