"""Core domain models for performance analysis and alerting."""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import IntEnum, StrEnum

LOCAL_SERVER_ID = 0
LOCAL_SERVER_NAME = "local"


class Severity(IntEnum):
    """Regression severity levels, ordered for comparison (higher value = higher severity)."""

    LOW = 1
    MEDIUM = 2
    HIGH = 3
    CRITICAL = 4

    @property
    def label(self) -> str:
        return self.name.lower()


class HealthStatus(StrEnum):
    HEALTHY = "healthy"
    WARNING = "warning"
    DEGRADED = "degraded"
    CRITICAL = "critical"


class RankBy(StrEnum):
    """Metric used to rank slow queries."""

    TOTAL_TIME = "total_time"
    MEAN_TIME = "mean_time"
    CPU_TIME = "cpu_time"
    IO_TIME = "io_time"


@dataclass(frozen=True, slots=True)
class MetricSnapshot:
    """Window-scoped performance reading for one query identity.

    Every numeric field is a delta over the requested window, derived from
    the first and last cumulative counters seen inside it. The kcache fields
    stay at zero unless enrichment found matching CPU/IO counters.
    """

    query_id: int
    query: str
    database_name: str
    calls: int = 0
    total_time: float = 0.0
    mean_time: float = 0.0
    server_id: int = LOCAL_SERVER_ID
    server_name: str = LOCAL_SERVER_NAME
    timestamp: datetime | None = None
    reads_blks: int = 0
    writes_blks: int = 0
    user_cpu_time: float = 0.0
    system_cpu_time: float = 0.0
    has_kcache_data: bool = False

    @property
    def total_cpu_time(self) -> float:
        return self.user_cpu_time + self.system_cpu_time

    @property
    def io_blocks(self) -> int:
        return self.reads_blks + self.writes_blks

    @property
    def identity(self) -> tuple[int, str, str]:
        """Composite key correlating current, baseline and enrichment rows."""
        return (self.query_id, self.server_name, self.database_name)


@dataclass(frozen=True, slots=True)
class IndexSuggestion:
    """A missing index recommendation."""

    table: str
    schema: str
    columns: tuple[str, ...]
    qual_type: str
    est_improvement_percent: float
    affected_queries: int = 0
    access_type: str = "Seq Scan"
    suggested_ddl: str | None = None

    @property
    def full_table_name(self) -> str:
        if not self.schema or self.schema == "public":
            return self.table
        return f"{self.schema}.{self.table}"


@dataclass(frozen=True, slots=True)
class RegressionItem:
    """A query whose mean time grew past the regression threshold."""

    query_id: int
    query: str
    database_name: str
    server_name: str
    current_mean_time: float
    baseline_mean_time: float
    change_percent: float
    current_calls: int
    baseline_calls: int
    severity: Severity


@dataclass(frozen=True, slots=True)
class TimeWindow:
    start: datetime
    end: datetime

    @property
    def duration(self) -> timedelta:
        return self.end - self.start


@dataclass(frozen=True, slots=True)
class AlertSummary:
    total_queries_analyzed: int
    slow_query_count: int
    regression_count: int
    suggestion_count: int
    health_score: int
    health_status: HealthStatus


@dataclass(frozen=True, slots=True)
class AlertContext:
    """All results of one analysis run, handed to a notifier."""

    req_id: str
    timestamp: datetime
    analysis_window: TimeWindow
    baseline_window: TimeWindow
    summary: AlertSummary
    report_type: str = "scheduled"
    database_name: str = ""
    top_slow_sql: tuple[MetricSnapshot, ...] = field(default_factory=tuple)
    regressions: tuple[RegressionItem, ...] = field(default_factory=tuple)
    suggestions: tuple[IndexSuggestion, ...] = field(default_factory=tuple)
