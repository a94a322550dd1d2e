import logging
from collections.abc import Callable
from datetime import UTC, datetime

from powa_sentinel.config import AnalysisConfig
from powa_sentinel.domain import AlertContext, IndexSuggestion, TimeWindow
from powa_sentinel.engine import AnalysisEngine
from powa_sentinel.reader import MetricsSource, QueryError

logger = logging.getLogger(__name__)

_EPOCH = datetime(1970, 1, 1, tzinfo=UTC)


def utc_now() -> datetime:
    return datetime.now(UTC)


def request_id(timestamp: datetime) -> str:
    """Request id derived from the run timestamp in nanoseconds since the epoch."""
    delta = timestamp - _EPOCH
    nanoseconds = (delta.days * 86400 + delta.seconds) * 10**9 + delta.microseconds * 1000
    return f"powa-{nanoseconds}"


class AnalysisPipeline:
    """Fetches current and baseline data and runs the engine over it.

    The clock is read exactly once per run; both windows, the alert
    timestamp and the request id all derive from that reading.
    """

    def __init__(
        self,
        reader: MetricsSource,
        engine: AnalysisEngine,
        analysis: AnalysisConfig,
        clock: Callable[[], datetime] = utc_now,
        database_name: str = "",
    ) -> None:
        self._reader = reader
        self._engine = engine
        self._analysis = analysis
        self._clock = clock
        self._database_name = database_name

    async def run(self) -> AlertContext:
        window = self._analysis.window
        offset = self._analysis.offset
        now = self._clock()

        analysis_window = TimeWindow(start=now - window, end=now)
        baseline_window = TimeWindow(start=now - offset - window, end=now - offset)

        current = await self._reader.get_current_metrics(window, now=now)
        baseline = await self._reader.get_baseline_metrics(offset, window, now=now)
        suggestions = await self._fetch_suggestions()

        logger.debug(
            "Fetched %d current and %d baseline snapshots", len(current), len(baseline)
        )

        return self._engine.analyze(
            current,
            baseline,
            suggestions,
            req_id=request_id(now),
            timestamp=now,
            analysis_window=analysis_window,
            baseline_window=baseline_window,
            database_name=self._database_name,
        )

    async def _fetch_suggestions(self) -> list[IndexSuggestion] | None:
        try:
            return await self._reader.get_index_suggestions()
        except QueryError as exc:
            logger.warning("Failed to fetch index suggestions: %s", exc)
            return None
