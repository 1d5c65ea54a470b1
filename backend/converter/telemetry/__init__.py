from .collector import TelemetryCollector
from .models import (
    OperationStats,
    PerformanceMetrics,
    PerformanceReport,
    PerformanceSnapshot,
    Recommendation,
    ReportSummary,
    TrendAnalysis,
)
from .report import generate_report

__all__ = [
    "OperationStats",
    "PerformanceMetrics",
    "PerformanceReport",
    "PerformanceSnapshot",
    "Recommendation",
    "ReportSummary",
    "TelemetryCollector",
    "TrendAnalysis",
    "generate_report",
]
