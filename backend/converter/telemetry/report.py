"""Reduce a snapshot history to a PerformanceReport. Pure: no I/O, no clock."""
import statistics
from collections import defaultdict
from typing import Iterable

from converter.telemetry.models import (
    OperationStats,
    PerformanceReport,
    PerformanceSnapshot,
    ReportSummary,
    TrendAnalysis,
)
from converter.telemetry.recommendations import recommend

TREND_WINDOW = 10


def generate_report(history: Iterable[PerformanceSnapshot]) -> PerformanceReport:
    history = list(history)
    if not history:
        return PerformanceReport(
            summary=ReportSummary(),
            operations=[],
            trends=TrendAnalysis(),
            recommendations=[],
        )
    summary = summarize(history)
    trends = analyze_trends(history)
    return PerformanceReport(
        summary=summary,
        operations=operation_breakdown(history),
        trends=trends,
        recommendations=recommend(summary, trends),
    )


def summarize(history: list[PerformanceSnapshot]) -> ReportSummary:
    times = [s.metrics.total_time_ms for s in history]
    rates = [s.metrics.items_per_second for s in history]
    return ReportSummary(
        total_processing_time_ms=sum(times),
        average_processing_time_ms=sum(times) / len(times),
        fastest_processing_time_ms=min(times),
        slowest_processing_time_ms=max(times),
        total_items_processed=sum(s.metrics.items_processed for s in history),
        average_items_per_second=sum(rates) / len(rates),
    )


def operation_breakdown(history: list[PerformanceSnapshot]) -> list[OperationStats]:
    """One entry per operation label, in first-seen order."""
    grouped: dict[str, list[PerformanceSnapshot]] = defaultdict(list)
    for snapshot in history:
        grouped[snapshot.operation].append(snapshot)
    stats = []
    for name, entries in grouped.items():
        times = [e.metrics.total_time_ms for e in entries]
        memory = [e.metrics.peak_memory_bytes for e in entries]
        stats.append(OperationStats(
            operation_name=name,
            execution_count=len(entries),
            total_time_ms=sum(times),
            average_time_ms=sum(times) / len(times),
            peak_memory_bytes=max(memory),
            average_memory_bytes=sum(memory) / len(memory),
        ))
    return stats


def _relative_change(values: list[float]) -> float:
    """(mean of last window - mean of first window) / mean of first window; 0 when undefined."""
    if len(values) < 2:
        return 0.0
    early = statistics.fmean(values[:TREND_WINDOW])
    recent = statistics.fmean(values[-TREND_WINDOW:])
    if early == 0:
        return 0.0
    return (recent - early) / early


def stability_score(times: list[float]) -> float:
    """1 - coefficient of variation, floored at 0. A single sample is perfectly stable."""
    if len(times) <= 1:
        return 1.0
    mean = statistics.fmean(times)
    if mean == 0:
        return 1.0
    return max(0.0, 1.0 - statistics.pstdev(times) / mean)


def analyze_trends(history: list[PerformanceSnapshot]) -> TrendAnalysis:
    times = [s.metrics.total_time_ms for s in history]
    memory = [float(s.metrics.peak_memory_bytes) for s in history]
    return TrendAnalysis(
        performance_trend=_relative_change(times),
        memory_trend=_relative_change(memory),
        stability_score=stability_score(times),
    )
