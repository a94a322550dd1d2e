from powa_sentinel.scheduler.gate import GateState, SingleFlightGate
from powa_sentinel.scheduler.scheduler import (
    DEFAULT_ANALYSIS_TIMEOUT,
    AnalysisRunner,
    AnalysisScheduler,
    RunOutcome,
    first_fire_time,
    next_fire_after,
    parse_cron,
)

__all__ = [
    "DEFAULT_ANALYSIS_TIMEOUT",
    "AnalysisRunner",
    "AnalysisScheduler",
    "GateState",
    "RunOutcome",
    "SingleFlightGate",
    "first_fire_time",
    "next_fire_after",
    "parse_cron",
]
