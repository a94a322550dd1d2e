import asyncio
import logging
from typing import Any

import httpx

from powa_sentinel.domain import AlertContext
from powa_sentinel.notifier.exceptions import NotifierError
from powa_sentinel.notifier.formatting import (
    format_minute,
    location_label,
    severity_icon,
    split_message,
    status_emoji,
    truncate_query,
)

logger = logging.getLogger(__name__)

MAX_SLOW_QUERIES = 5
MAX_REGRESSIONS = 10
MAX_SUGGESTIONS = 3
QUERY_PREVIEW_LENGTH = 300


def format_markdown(alert: AlertContext) -> str:
    summary = alert.summary
    lines = [
        f"## {status_emoji(summary.health_status)} PoWA Sentinel Report",
        "",
        "### 📊 Summary",
        f"> **Health Score**: {summary.health_score}/100 ({summary.health_status})",
        f"> **Analysis Period**: {format_minute(alert.analysis_window.start)} ~ "
        f"{format_minute(alert.analysis_window.end)}",
        f"> **Queries Analyzed**: {summary.total_queries_analyzed}",
        "",
    ]

    if summary.regression_count or summary.suggestion_count:
        lines.append("**Issues Found**:")
        if summary.regression_count:
            lines.append(f"- 🔴 {summary.regression_count} Performance Regressions")
        if summary.suggestion_count:
            lines.append(f"- 💡 {summary.suggestion_count} Index Suggestions")
        lines.append("")

    if alert.top_slow_sql:
        lines.append("### ⏱ Top Slow Queries")
        for position, snapshot in enumerate(alert.top_slow_sql[:MAX_SLOW_QUERIES], start=1):
            location = location_label(snapshot.server_name, snapshot.database_name)
            lines += [
                f"**{position}. [{location}] Query ID**: `{snapshot.query_id}`",
                f"   - Total Time: {snapshot.total_time:.2f}ms | Calls: {snapshot.calls}",
                "```sql",
                truncate_query(snapshot.query, QUERY_PREVIEW_LENGTH),
                "```",
            ]
        if len(alert.top_slow_sql) > MAX_SLOW_QUERIES:
            lines.append(f"... and {len(alert.top_slow_sql) - MAX_SLOW_QUERIES} more")
        lines.append("")

    if alert.regressions:
        lines.append("### 📈 Performance Regressions")
        for item in alert.regressions[:MAX_REGRESSIONS]:
            location = location_label(item.server_name, item.database_name)
            lines += [
                f"{severity_icon(item.severity)} **[{location}] Query ID**: "
                f"`{item.query_id}` ({item.severity.label})",
                f"   - Mean Time: {item.baseline_mean_time:.2f}ms → "
                f"{item.current_mean_time:.2f}ms (**+{item.change_percent:.1f}%**)",
                "```sql",
                truncate_query(item.query, QUERY_PREVIEW_LENGTH),
                "```",
            ]
        if len(alert.regressions) > MAX_REGRESSIONS:
            lines.append(f"... and {len(alert.regressions) - MAX_REGRESSIONS} more")
        lines.append("")

    if alert.suggestions:
        lines.append("### 💡 Index Suggestions")
        for position, suggestion in enumerate(alert.suggestions[:MAX_SUGGESTIONS], start=1):
            lines += [
                f"**{position}. {suggestion.full_table_name}** "
                f"(Est. +{suggestion.est_improvement_percent:.0f}%)",
                f"   - Columns: `{', '.join(suggestion.columns)}`",
            ]
        if len(alert.suggestions) > MAX_SUGGESTIONS:
            lines.append(f"... and {len(alert.suggestions) - MAX_SUGGESTIONS} more")
        lines.append("")

    lines += ["---", f"*Report ID: {alert.req_id}*", ""]
    return "\n".join(lines)


class WeComNotifier:
    """Posts markdown reports to a WeCom (WeChat Work) group robot webhook.

    Reports over the safe size limit are sent as several messages, each
    tagged ``(Part i/n)``. Every message is retried with exponential backoff.
    """

    REQUEST_TIMEOUT = 30.0

    def __init__(self, webhook_url: str, retries: int = 3, retry_delay: float = 1.0) -> None:
        self.webhook_url = webhook_url
        self.retries = retries
        self.retry_delay = retry_delay

    @property
    def name(self) -> str:
        return "wecom"

    async def send(self, alert: AlertContext) -> None:
        chunks = split_message(format_markdown(alert))
        async with httpx.AsyncClient(timeout=self.REQUEST_TIMEOUT) as client:
            for index, chunk in enumerate(chunks, start=1):
                if len(chunks) > 1:
                    chunk += f"\n\n*(Part {index}/{len(chunks)})*"
                payload = {"msgtype": "markdown", "markdown": {"content": chunk}}
                try:
                    await self._send_with_retry(client, payload)
                except NotifierError as exc:
                    raise NotifierError(
                        f"failed to send chunk {index}: {exc}", attempts=exc.attempts
                    ) from exc

    async def _send_with_retry(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> None:
        delay = self.retry_delay
        last_error: Exception | None = None

        for attempt in range(self.retries + 1):
            if attempt > 0:
                await asyncio.sleep(delay)
                delay *= 2
            try:
                await self._post(client, payload)
                return
            except (httpx.HTTPError, NotifierError, ValueError) as exc:
                last_error = exc
                logger.warning("WeCom delivery attempt %d failed: %s", attempt + 1, exc)

        raise NotifierError(
            f"failed after {self.retries} retries: {last_error}", attempts=self.retries + 1
        ) from last_error

    async def _post(self, client: httpx.AsyncClient, payload: dict[str, Any]) -> None:
        response = await client.post(self.webhook_url, json=payload)
        if response.status_code != 200:
            raise NotifierError(f"unexpected status code: {response.status_code}")

        result = response.json()
        if result.get("errcode", 0) != 0:
            raise NotifierError(f"wecom error: {result.get('errcode')} - {result.get('errmsg', '')}")
