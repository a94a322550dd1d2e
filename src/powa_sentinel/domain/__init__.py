"""Domain models for performance analysis and alerting."""

from powa_sentinel.domain.models import (
    LOCAL_SERVER_ID,
    LOCAL_SERVER_NAME,
    AlertContext,
    AlertSummary,
    HealthStatus,
    IndexSuggestion,
    MetricSnapshot,
    RankBy,
    RegressionItem,
    Severity,
    TimeWindow,
)

__all__ = [
    "LOCAL_SERVER_ID",
    "LOCAL_SERVER_NAME",
    "AlertContext",
    "AlertSummary",
    "HealthStatus",
    "IndexSuggestion",
    "MetricSnapshot",
    "RankBy",
    "RegressionItem",
    "Severity",
    "TimeWindow",
]
