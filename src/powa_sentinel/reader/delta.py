"""Window deltas from first/last cumulative counter readings.

PoWA stores periodic snapshots of cumulative counters, so a window's value is
the last reading minus the first one. Summing the rows would count the same
work once per snapshot.
"""

from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from powa_sentinel.domain import LOCAL_SERVER_ID, LOCAL_SERVER_NAME, MetricSnapshot

SnapshotKey = tuple[int, int, str]


def counter_delta(first: Any, last: Any) -> Any:
    """Return ``max(last - first, 0)``, treating NULL readings as zero.

    A counter reset inside the window leaves ``last`` below ``first``; the
    window then contributes nothing rather than a negative amount.
    """
    return max((last or 0) - (first or 0), 0)


def mean_time(total_time: float, calls: int) -> float:
    if calls > 0:
        return total_time / calls
    return 0.0


def snapshot_from_row(row: Mapping[str, Any]) -> MetricSnapshot:
    calls = int(counter_delta(row["first_calls"], row["last_calls"]))
    total_time = float(counter_delta(row["first_exec_time"], row["last_exec_time"]))
    server_id = row.get("server_id")
    server_name = row.get("server_name")
    return MetricSnapshot(
        query_id=int(row["query_id"]),
        query=row["query"] or "",
        database_name=row["database_name"] or "",
        calls=calls,
        total_time=total_time,
        mean_time=mean_time(total_time, calls),
        server_id=LOCAL_SERVER_ID if server_id is None else int(server_id),
        server_name=server_name or LOCAL_SERVER_NAME,
        timestamp=row.get("ts"),
    )


def _latest(a: datetime | None, b: datetime | None) -> datetime | None:
    if a is None:
        return b
    if b is None:
        return a
    return max(a, b)


def snapshot_key(snapshot: MetricSnapshot) -> SnapshotKey:
    return (snapshot.query_id, snapshot.server_id, snapshot.database_name)


def aggregate_snapshots(rows: Iterable[Mapping[str, Any]]) -> list[MetricSnapshot]:
    """Fold per-user delta rows into one snapshot per query identity.

    Order follows the first row seen for each identity.
    """
    merged: dict[SnapshotKey, MetricSnapshot] = {}
    for row in rows:
        snapshot = snapshot_from_row(row)
        key = snapshot_key(snapshot)
        existing = merged.get(key)
        if existing is None:
            merged[key] = snapshot
            continue

        calls = existing.calls + snapshot.calls
        total_time = existing.total_time + snapshot.total_time
        merged[key] = replace(
            existing,
            calls=calls,
            total_time=total_time,
            mean_time=mean_time(total_time, calls),
            timestamp=_latest(existing.timestamp, snapshot.timestamp),
        )
    return list(merged.values())


@dataclass(frozen=True, slots=True)
class KCacheDelta:
    reads: int = 0
    writes: int = 0
    user_time: float = 0.0
    system_time: float = 0.0

    def __add__(self, other: "KCacheDelta") -> "KCacheDelta":
        return KCacheDelta(
            reads=self.reads + other.reads,
            writes=self.writes + other.writes,
            user_time=self.user_time + other.user_time,
            system_time=self.system_time + other.system_time,
        )


def kcache_from_rows(rows: Iterable[Mapping[str, Any]]) -> dict[SnapshotKey, KCacheDelta]:
    deltas: dict[SnapshotKey, KCacheDelta] = {}
    for row in rows:
        server_id = row.get("server_id")
        key = (
            int(row["query_id"]),
            LOCAL_SERVER_ID if server_id is None else int(server_id),
            row["database_name"] or "",
        )
        delta = KCacheDelta(
            reads=int(counter_delta(row["first_reads"], row["last_reads"])),
            writes=int(counter_delta(row["first_writes"], row["last_writes"])),
            user_time=float(counter_delta(row["first_user_time"], row["last_user_time"])),
            system_time=float(counter_delta(row["first_system_time"], row["last_system_time"])),
        )
        deltas[key] = deltas[key] + delta if key in deltas else delta
    return deltas


def merge_kcache(
    snapshots: Sequence[MetricSnapshot],
    kcache: Mapping[SnapshotKey, KCacheDelta],
) -> list[MetricSnapshot]:
    """Return new snapshots carrying CPU/IO deltas where a match exists."""
    merged: list[MetricSnapshot] = []
    for snapshot in snapshots:
        data = kcache.get(snapshot_key(snapshot))
        if data is None:
            merged.append(snapshot)
            continue
        merged.append(
            replace(
                snapshot,
                reads_blks=data.reads,
                writes_blks=data.writes,
                user_cpu_time=data.user_time,
                system_cpu_time=data.system_time,
                has_kcache_data=True,
            )
        )
    return merged
