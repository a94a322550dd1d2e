from collections.abc import Sequence
from datetime import datetime

from powa_sentinel.config import RulesConfig
from powa_sentinel.domain import AlertContext, IndexSuggestion, MetricSnapshot, TimeWindow
from powa_sentinel.engine.rules import (
    DEFAULT_POLICY,
    ScoringPolicy,
    analyze_slow_sql,
    detect_regressions,
    filter_suggestions,
    generate_summary,
)


class AnalysisEngine:
    """Turns current and baseline snapshots into a single AlertContext.

    The engine never reads the clock: the request id, timestamp and both
    windows are supplied by the caller.
    """

    def __init__(self, rules: RulesConfig, policy: ScoringPolicy = DEFAULT_POLICY) -> None:
        self._rules = rules
        self._policy = policy

    @property
    def rules(self) -> RulesConfig:
        return self._rules

    @property
    def policy(self) -> ScoringPolicy:
        return self._policy

    def analyze(
        self,
        current: Sequence[MetricSnapshot],
        baseline: Sequence[MetricSnapshot],
        suggestions: Sequence[IndexSuggestion] | None,
        *,
        req_id: str,
        timestamp: datetime,
        analysis_window: TimeWindow,
        baseline_window: TimeWindow,
        report_type: str = "scheduled",
        database_name: str = "",
    ) -> AlertContext:
        top_slow_sql = analyze_slow_sql(
            current,
            self._rules.slow_sql.rank_by,
            self._rules.slow_sql.top_n,
            self._policy,
        )
        regressions = detect_regressions(
            current,
            baseline,
            self._rules.regression.threshold_percent,
            self._policy,
        )
        kept_suggestions = filter_suggestions(
            suggestions,
            self._rules.index_suggestion.min_improvement_percent,
        )
        summary = generate_summary(
            len(current),
            top_slow_sql,
            regressions,
            kept_suggestions,
            self._policy,
        )
        return AlertContext(
            req_id=req_id,
            timestamp=timestamp,
            analysis_window=analysis_window,
            baseline_window=baseline_window,
            summary=summary,
            report_type=report_type,
            database_name=database_name,
            top_slow_sql=top_slow_sql,
            regressions=regressions,
            suggestions=kept_suggestions,
        )
