"""Detection rules applied to window snapshots.

Every function here is pure: no clock reads, no I/O, inputs are never
mutated, and equal inputs give equal outputs.
"""

from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field

from powa_sentinel.domain import (
    AlertSummary,
    HealthStatus,
    IndexSuggestion,
    MetricSnapshot,
    RankBy,
    RegressionItem,
    Severity,
)


@dataclass(frozen=True, slots=True)
class ScoringPolicy:
    """Tuning constants for ranking, severity and health scoring.

    Band tuples are ``(lower_bound, value)`` pairs checked in order; the
    first bound the input reaches wins, otherwise the fallback applies.
    """

    io_block_weight: float = 0.01
    severity_bands: tuple[tuple[float, Severity], ...] = (
        (500.0, Severity.CRITICAL),
        (200.0, Severity.HIGH),
        (100.0, Severity.MEDIUM),
    )
    severity_fallback: Severity = Severity.LOW
    regression_penalties: tuple[tuple[Severity, int], ...] = (
        (Severity.CRITICAL, 20),
        (Severity.HIGH, 10),
        (Severity.MEDIUM, 5),
        (Severity.LOW, 2),
    )
    max_regression_penalty: int = 50
    suggestion_penalty: int = 3
    max_suggestion_penalty: int = 30
    status_bands: tuple[tuple[int, HealthStatus], ...] = field(
        default=(
            (90, HealthStatus.HEALTHY),
            (70, HealthStatus.WARNING),
            (50, HealthStatus.DEGRADED),
        )
    )
    status_fallback: HealthStatus = HealthStatus.CRITICAL

    def penalty_for(self, severity: Severity) -> int:
        for candidate, points in self.regression_penalties:
            if candidate is severity:
                return points
        return 0


DEFAULT_POLICY = ScoringPolicy()

MAX_HEALTH_SCORE = 100
MIN_HEALTH_SCORE = 0


def ranking_key(
    rank_by: RankBy | str, policy: ScoringPolicy = DEFAULT_POLICY
) -> Callable[[MetricSnapshot], float]:
    match RankBy(rank_by):
        case RankBy.MEAN_TIME:
            return lambda snapshot: snapshot.mean_time
        case RankBy.CPU_TIME:
            return lambda snapshot: snapshot.total_cpu_time
        case RankBy.IO_TIME:
            return lambda snapshot: snapshot.io_blocks * policy.io_block_weight
        case _:
            return lambda snapshot: snapshot.total_time


def analyze_slow_sql(
    metrics: Sequence[MetricSnapshot],
    rank_by: RankBy | str,
    top_n: int,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> tuple[MetricSnapshot, ...]:
    """Return the ``top_n`` snapshots ranked descending by ``rank_by``.

    ``sorted`` is stable, so snapshots with equal metrics keep their input
    order.
    """
    if not metrics or top_n <= 0:
        return ()
    ranked = sorted(metrics, key=ranking_key(rank_by, policy), reverse=True)
    return tuple(ranked[:top_n])


def calculate_severity(change_percent: float, policy: ScoringPolicy = DEFAULT_POLICY) -> Severity:
    for lower_bound, severity in policy.severity_bands:
        if change_percent >= lower_bound:
            return severity
    return policy.severity_fallback


def detect_regressions(
    current: Iterable[MetricSnapshot],
    baseline: Iterable[MetricSnapshot],
    threshold_percent: float,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> tuple[RegressionItem, ...]:
    """Pair current and baseline snapshots by identity and flag slowdowns.

    A query with no baseline, or a baseline mean time of zero, is skipped.
    """
    baseline_by_identity = {snapshot.identity: snapshot for snapshot in baseline}

    regressions: list[RegressionItem] = []
    for snapshot in current:
        base = baseline_by_identity.get(snapshot.identity)
        if base is None or base.mean_time == 0:
            continue

        change_percent = (snapshot.mean_time - base.mean_time) / base.mean_time * 100
        if change_percent < threshold_percent:
            continue

        regressions.append(
            RegressionItem(
                query_id=snapshot.query_id,
                query=snapshot.query,
                database_name=snapshot.database_name,
                server_name=snapshot.server_name,
                current_mean_time=snapshot.mean_time,
                baseline_mean_time=base.mean_time,
                change_percent=change_percent,
                current_calls=snapshot.calls,
                baseline_calls=base.calls,
                severity=calculate_severity(change_percent, policy),
            )
        )

    regressions.sort(key=lambda item: item.change_percent, reverse=True)
    return tuple(regressions)


def filter_suggestions(
    suggestions: Iterable[IndexSuggestion] | None,
    min_improvement_percent: float,
) -> tuple[IndexSuggestion, ...]:
    if not suggestions:
        return ()
    kept = [s for s in suggestions if s.est_improvement_percent >= min_improvement_percent]
    kept.sort(key=lambda s: s.est_improvement_percent, reverse=True)
    return tuple(kept)


def health_status(score: int, policy: ScoringPolicy = DEFAULT_POLICY) -> HealthStatus:
    for lower_bound, status in policy.status_bands:
        if score >= lower_bound:
            return status
    return policy.status_fallback


def health_score(
    regressions: Iterable[RegressionItem],
    suggestion_count: int,
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> int:
    regression_penalty = min(
        sum(policy.penalty_for(item.severity) for item in regressions),
        policy.max_regression_penalty,
    )
    suggestion_penalty = min(
        suggestion_count * policy.suggestion_penalty,
        policy.max_suggestion_penalty,
    )
    score = MAX_HEALTH_SCORE - regression_penalty - suggestion_penalty
    return max(MIN_HEALTH_SCORE, min(MAX_HEALTH_SCORE, score))


def generate_summary(
    total_queries: int,
    top_slow_sql: Sequence[MetricSnapshot],
    regressions: Sequence[RegressionItem],
    suggestions: Sequence[IndexSuggestion],
    policy: ScoringPolicy = DEFAULT_POLICY,
) -> AlertSummary:
    score = health_score(regressions, len(suggestions), policy)
    return AlertSummary(
        total_queries_analyzed=total_queries,
        slow_query_count=len(top_slow_sql),
        regression_count=len(regressions),
        suggestion_count=len(suggestions),
        health_score=score,
        health_status=health_status(score, policy),
    )
