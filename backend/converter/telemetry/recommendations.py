"""Rule-based optimization recommendations derived from a report summary and trends."""
from typing import Callable, NamedTuple

from converter.telemetry.models import Recommendation, ReportSummary, TrendAnalysis


class Rule(NamedTuple):
    applies: Callable[[ReportSummary, TrendAnalysis], bool]
    recommendation: Recommendation


RULES: tuple[Rule, ...] = (
    Rule(
        lambda summary, trends: trends.performance_trend > 0.1,
        Recommendation(
            type="algorithm",
            description="Conversion times are trending up; review codec settings for the slowest formats",
            expected_improvement=0.2,
            implementation_difficulty=3,
        ),
    ),
    Rule(
        lambda summary, trends: trends.memory_trend > 0.15,
        Recommendation(
            type="memory",
            description="Memory usage is growing; release decoded buffers sooner between conversions",
            expected_improvement=0.15,
            implementation_difficulty=2,
        ),
    ),
    Rule(
        lambda summary, trends: trends.stability_score < 0.8,
        Recommendation(
            type="cache",
            description="Timings are unstable; warm the engine and cache encoder state across runs",
            expected_improvement=0.1,
            implementation_difficulty=2,
        ),
    ),
    Rule(
        lambda summary, trends: summary.average_processing_time_ms > 100,
        Recommendation(
            type="parallel",
            description="Average conversion exceeds 100 ms; process batch items in parallel workers",
            expected_improvement=0.4,
            implementation_difficulty=4,
        ),
    ),
)


def recommend(summary: ReportSummary, trends: TrendAnalysis) -> list[Recommendation]:
    return [rule.recommendation for rule in RULES if rule.applies(summary, trends)]
