import io
from datetime import UTC, datetime, timedelta
from unittest.mock import AsyncMock, patch

import httpx
import pytest

from powa_sentinel.config import NotifierConfig
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
from powa_sentinel.notifier import (
    ConsoleNotifier,
    Notifier,
    NotifierError,
    SqsNotifier,
    WeComNotifier,
    build_notifier,
)
from powa_sentinel.notifier.console import format_report
from powa_sentinel.notifier.formatting import location_label, split_message, truncate_query
from powa_sentinel.notifier.wecom import format_markdown

WEBHOOK = "https://qyapi.weixin.qq.com/cgi-bin/webhook/send?key=test"
NOW = datetime(2024, 1, 15, 9, 0, tzinfo=UTC)


def make_regression(query_id: int, query: str = "SELECT * FROM orders") -> RegressionItem:
    return RegressionItem(
        query_id=query_id,
        query=query,
        database_name="shop",
        server_name="local",
        current_mean_time=50.0,
        baseline_mean_time=25.0,
        change_percent=100.0,
        current_calls=10,
        baseline_calls=8,
        severity=Severity.MEDIUM,
    )


def make_alert(
    regressions: tuple[RegressionItem, ...] = (),
    slow: tuple[MetricSnapshot, ...] = (),
    suggestions: tuple[IndexSuggestion, ...] = (),
    score: int = 100,
    status: HealthStatus = HealthStatus.HEALTHY,
) -> AlertContext:
    return AlertContext(
        req_id="powa-1705309200000000000",
        timestamp=NOW,
        analysis_window=TimeWindow(start=NOW - timedelta(hours=24), end=NOW),
        baseline_window=TimeWindow(
            start=NOW - timedelta(hours=192), end=NOW - timedelta(hours=168)
        ),
        summary=AlertSummary(
            total_queries_analyzed=len(slow),
            slow_query_count=len(slow),
            regression_count=len(regressions),
            suggestion_count=len(suggestions),
            health_score=score,
            health_status=status,
        ),
        top_slow_sql=slow,
        regressions=regressions,
        suggestions=suggestions,
    )


def ok_response() -> httpx.Response:
    return httpx.Response(200, json={"errcode": 0, "errmsg": "ok"})


def test_notifiers_implement_protocol():
    assert isinstance(ConsoleNotifier(), Notifier)
    assert isinstance(WeComNotifier(WEBHOOK), Notifier)
    assert isinstance(SqsNotifier("https://sqs.us-east-1.amazonaws.com/123456789/q"), Notifier)


@pytest.mark.parametrize(
    ("notifier_type", "expected"),
    [("console", ConsoleNotifier), ("wecom", WeComNotifier), ("sqs", SqsNotifier)],
)
def test_build_notifier(notifier_type, expected):
    config = NotifierConfig(type=notifier_type, webhook_url=WEBHOOK, queue_url="https://q")
    assert isinstance(build_notifier(config), expected)


def test_build_notifier_unknown_type():
    with pytest.raises(ValueError, match="unknown notifier type"):
        build_notifier(NotifierConfig(type="pager"))


def test_build_notifier_passes_retry_settings():
    notifier = build_notifier(
        NotifierConfig(type="wecom", webhook_url=WEBHOOK, retries=5, retry_delay="250ms")
    )
    assert notifier.retries == 5
    assert notifier.retry_delay == 0.25


def test_truncate_query_collapses_whitespace():
    assert truncate_query("SELECT  *\n  FROM t", 60) == "SELECT * FROM t"
    assert truncate_query("x" * 20, 10) == "xxxxxxx..."


def test_location_label():
    assert location_label("local", "shop") == "shop"
    assert location_label("db2", "shop") == "db2/shop"


def test_split_message_short_message_untouched():
    assert split_message("hello\nworld", limit=100) == ["hello\nworld"]


def test_split_message_on_line_boundaries():
    message = "\n".join(["a" * 40] * 5)
    chunks = split_message(message, limit=100)

    assert len(chunks) == 3
    assert all(len(chunk.encode()) <= 100 for chunk in chunks)
    assert "\n".join(chunks) == message


def test_split_message_counts_utf8_bytes():
    message = "\n".join(["é" * 30] * 4)
    chunks = split_message(message, limit=100)

    assert all(len(chunk.encode()) <= 100 for chunk in chunks)
    assert "\n".join(chunks) == message


def test_split_message_cuts_oversized_line():
    chunks = split_message("y" * 250, limit=100)
    assert chunks == ["y" * 100, "y" * 100, "y" * 50]


async def test_console_notifier_prints_report(capsys):
    alert = make_alert(regressions=(make_regression(7),), score=95)

    await ConsoleNotifier().send(alert)

    captured = capsys.readouterr()
    assert "POWA SENTINEL REPORT" in captured.out
    assert "Health Score: 95/100 (healthy)" in captured.out
    assert "📈 REGRESSIONS" in captured.out
    assert "25.00ms → 50.00ms (+100.0%) [medium]" in captured.out


async def test_console_notifier_custom_stream():
    stream = io.StringIO()
    await ConsoleNotifier(stream=stream).send(make_alert())
    assert "powa-1705309200000000000" in stream.getvalue()


def test_format_report_limits_regressions():
    alert = make_alert(regressions=tuple(make_regression(i) for i in range(25)))
    report = format_report(alert)
    assert "... and 5 more" in report
    assert "  20. [19]" in report
    assert "[20]" not in report


def test_format_report_omits_empty_sections():
    report = format_report(make_alert())
    assert "📊 SUMMARY" in report
    assert "⏱ TOP SLOW QUERIES" not in report
    assert "💡 INDEX SUGGESTIONS" not in report


def test_format_markdown_sections():
    suggestion = IndexSuggestion(
        table="orders",
        schema="sales",
        columns=("customer_id", "created_at"),
        qual_type="=",
        est_improvement_percent=72.0,
    )
    slow = MetricSnapshot(
        query_id=3, query="SELECT 1", database_name="shop", server_name="db2", total_time=12.5, calls=4
    )
    alert = make_alert(
        regressions=(make_regression(1),),
        slow=(slow,),
        suggestions=(suggestion,),
        score=92,
    )

    content = format_markdown(alert)

    assert content.startswith("## ✅ PoWA Sentinel Report")
    assert "> **Health Score**: 92/100 (healthy)" in content
    assert "- 🔴 1 Performance Regressions" in content
    assert "**1. [db2/shop] Query ID**: `3`" in content
    assert "🟡 **[shop] Query ID**: `1` (medium)" in content
    assert "**1. sales.orders** (Est. +72%)" in content
    assert "`customer_id, created_at`" in content
    assert content.rstrip().endswith("*Report ID: powa-1705309200000000000*")


async def test_wecom_sends_markdown_payload():
    notifier = WeComNotifier(WEBHOOK)

    with patch.object(httpx.AsyncClient, "post", new=AsyncMock(return_value=ok_response())) as post:
        await notifier.send(make_alert())

    post.assert_awaited_once()
    args, kwargs = post.call_args
    assert args[0] == WEBHOOK
    assert kwargs["json"]["msgtype"] == "markdown"
    assert "PoWA Sentinel Report" in kwargs["json"]["markdown"]["content"]
    assert "Part" not in kwargs["json"]["markdown"]["content"]


async def test_wecom_splits_large_reports():
    long_query = "SELECT " + ", ".join(f"column_{i}" for i in range(60)) + " FROM orders"
    alert = make_alert(regressions=tuple(make_regression(i, long_query) for i in range(10)))
    notifier = WeComNotifier(WEBHOOK)

    with patch.object(httpx.AsyncClient, "post", new=AsyncMock(return_value=ok_response())) as post:
        await notifier.send(alert)

    contents = [call.kwargs["json"]["markdown"]["content"] for call in post.call_args_list]
    assert len(contents) > 1
    assert contents[0].endswith(f"*(Part 1/{len(contents)})*")
    assert contents[-1].endswith(f"*(Part {len(contents)}/{len(contents)})*")


async def test_wecom_retries_then_succeeds():
    notifier = WeComNotifier(WEBHOOK, retries=3, retry_delay=0)
    responses = [
        httpx.Response(500),
        httpx.Response(200, json={"errcode": 45009, "errmsg": "api freq out of limit"}),
        ok_response(),
    ]

    with patch.object(httpx.AsyncClient, "post", new=AsyncMock(side_effect=responses)) as post:
        await notifier.send(make_alert())

    assert post.await_count == 3


async def test_wecom_gives_up_after_retries():
    notifier = WeComNotifier(WEBHOOK, retries=2, retry_delay=0)
    failing = AsyncMock(
        return_value=httpx.Response(200, json={"errcode": 93000, "errmsg": "invalid webhook url"})
    )

    with patch.object(httpx.AsyncClient, "post", new=failing):
        with pytest.raises(NotifierError, match="failed after 2 retries") as exc_info:
            await notifier.send(make_alert())

    assert failing.await_count == 3
    assert exc_info.value.attempts == 3
    assert "invalid webhook url" in str(exc_info.value)


async def test_wecom_retries_transport_errors():
    notifier = WeComNotifier(WEBHOOK, retries=1, retry_delay=0)
    post = AsyncMock(side_effect=[httpx.ConnectError("connection refused"), ok_response()])

    with patch.object(httpx.AsyncClient, "post", new=post):
        await notifier.send(make_alert())

    assert post.await_count == 2
