__version__ = "0.1.0"

from powa_sentinel.config import Config, ConfigError, load_config
from powa_sentinel.core import AnalysisPipeline
from powa_sentinel.domain import (
    AlertContext,
    AlertSummary,
    HealthStatus,
    IndexSuggestion,
    MetricSnapshot,
    RegressionItem,
    Severity,
    TimeWindow,
)
from powa_sentinel.engine import AnalysisEngine, ScoringPolicy
from powa_sentinel.notifier import ConsoleNotifier, Notifier, NotifierError
from powa_sentinel.reader import MetricsSource, PowaReader
from powa_sentinel.scheduler import AnalysisScheduler, RunOutcome

__all__ = [
    "__version__",
    "AnalysisPipeline",
    "AnalysisEngine",
    "AnalysisScheduler",
    "RunOutcome",
    "ScoringPolicy",
    "PowaReader",
    "MetricsSource",
    "Config",
    "ConfigError",
    "load_config",
    "AlertContext",
    "AlertSummary",
    "HealthStatus",
    "IndexSuggestion",
    "MetricSnapshot",
    "RegressionItem",
    "Severity",
    "TimeWindow",
    "Notifier",
    "NotifierError",
    "ConsoleNotifier",
]
