from datetime import datetime, timedelta
from typing import Protocol, runtime_checkable

from powa_sentinel.domain import IndexSuggestion, MetricSnapshot


@runtime_checkable
class MetricsSource(Protocol):
    """Protocol for sources of window-scoped performance snapshots."""

    async def ping(self) -> None:
        ...

    async def get_current_metrics(
        self, window: timedelta, now: datetime | None = None
    ) -> list[MetricSnapshot]:
        ...

    async def get_baseline_metrics(
        self, offset: timedelta, window: timedelta, now: datetime | None = None
    ) -> list[MetricSnapshot]:
        ...

    async def get_index_suggestions(self) -> list[IndexSuggestion] | None:
        ...
