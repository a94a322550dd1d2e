from powa_sentinel.engine.analyzer import AnalysisEngine
from powa_sentinel.engine.rules import (
    DEFAULT_POLICY,
    ScoringPolicy,
    analyze_slow_sql,
    calculate_severity,
    detect_regressions,
    filter_suggestions,
    generate_summary,
    health_score,
    health_status,
)

__all__ = [
    "DEFAULT_POLICY",
    "AnalysisEngine",
    "ScoringPolicy",
    "analyze_slow_sql",
    "calculate_severity",
    "detect_regressions",
    "filter_suggestions",
    "generate_summary",
    "health_score",
    "health_status",
]
