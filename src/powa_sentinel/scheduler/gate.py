import threading
from enum import Enum


class GateState(Enum):
    FREE = "free"
    ANALYZING = "analyzing"


class SingleFlightGate:
    """Two-state flag allowing at most one analysis at a time.

    ``try_acquire`` is a compare-and-swap from FREE to ANALYZING; the lock is
    held only for the transition itself, never across the analysis.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._state = GateState.FREE

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def busy(self) -> bool:
        return self._state is GateState.ANALYZING

    def try_acquire(self) -> bool:
        with self._lock:
            if self._state is not GateState.FREE:
                return False
            self._state = GateState.ANALYZING
            return True

    def release(self) -> None:
        with self._lock:
            self._state = GateState.FREE
