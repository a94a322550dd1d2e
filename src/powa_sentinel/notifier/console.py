from typing import TextIO

from powa_sentinel.domain import AlertContext
from powa_sentinel.notifier.formatting import format_minute, location_label, truncate_query

RULE = "═" * 63
THIN_RULE = "─" * 63
MAX_REGRESSIONS = 20
QUERY_PREVIEW_LENGTH = 60


def format_report(alert: AlertContext) -> str:
    summary = alert.summary
    lines = [
        "",
        RULE,
        "POWA SENTINEL REPORT".center(63).rstrip(),
        RULE,
        f"Report ID:    {alert.req_id}",
        f"Timestamp:    {alert.timestamp.strftime('%Y-%m-%d %H:%M:%S')}",
        f"Health Score: {summary.health_score}/100 ({summary.health_status})",
        THIN_RULE,
        f"Analysis Window:  {format_minute(alert.analysis_window.start)} ~ "
        f"{format_minute(alert.analysis_window.end)}",
        f"Baseline Window:  {format_minute(alert.baseline_window.start)} ~ "
        f"{format_minute(alert.baseline_window.end)}",
        THIN_RULE,
        "",
        "📊 SUMMARY",
        f"  • Queries Analyzed: {summary.total_queries_analyzed}",
        f"  • Slow Queries:     {summary.slow_query_count}",
        f"  • Regressions:      {summary.regression_count}",
        f"  • Index Suggestions: {summary.suggestion_count}",
    ]

    if alert.top_slow_sql:
        lines += ["", "⏱ TOP SLOW QUERIES"]
        for position, snapshot in enumerate(alert.top_slow_sql, start=1):
            lines.append(
                f"  {position}. [{snapshot.query_id}] {snapshot.total_time:.2f}ms "
                f"(×{snapshot.calls} calls)"
            )
            lines.append(f"      {truncate_query(snapshot.query, QUERY_PREVIEW_LENGTH)}")

    if alert.regressions:
        lines += ["", "📈 REGRESSIONS"]
        for position, item in enumerate(alert.regressions[:MAX_REGRESSIONS], start=1):
            location = location_label(item.server_name, item.database_name)
            lines.append(
                f"  {position}. [{item.query_id}] [{location}] "
                f"{item.baseline_mean_time:.2f}ms → {item.current_mean_time:.2f}ms "
                f"(+{item.change_percent:.1f}%) [{item.severity.label}]"
            )
            lines.append(f"      {truncate_query(item.query, QUERY_PREVIEW_LENGTH)}")
        if len(alert.regressions) > MAX_REGRESSIONS:
            lines.append(f"  ... and {len(alert.regressions) - MAX_REGRESSIONS} more")

    if alert.suggestions:
        lines += ["", "💡 INDEX SUGGESTIONS"]
        for position, suggestion in enumerate(alert.suggestions, start=1):
            lines.append(
                f"  {position}. {suggestion.full_table_name} ({', '.join(suggestion.columns)}) "
                f"- Est. +{suggestion.est_improvement_percent:.0f}%"
            )

    lines += ["", RULE]
    return "\n".join(lines)


class ConsoleNotifier:
    """Prints a plain-text report, mostly useful for local runs and ``--once``."""

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    @property
    def name(self) -> str:
        return "console"

    async def send(self, alert: AlertContext) -> None:
        print(format_report(alert), file=self._stream)
