import datetime
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Sequence

from config import RESET_MARKER
from utils import log_debug, log_info


class GateState(Enum):
    INACTIVE = "inactive"
    ACTIVE_NO_RESET = "active-no-reset-seen"
    ACTIVE_POST_RESET = "active-post-reset"


@dataclass(frozen=True)
class LifecycleState:
    session_anchor: datetime.datetime
    window_active: bool = False
    window_found_at: Optional[datetime.datetime] = None
    last_reset_at: Optional[datetime.datetime] = None

    @property
    def state(self) -> GateState:
        if not self.window_active:
            return GateState.INACTIVE
        if self.last_reset_at is None:
            return GateState.ACTIVE_NO_RESET
        return GateState.ACTIVE_POST_RESET

    @property
    def floor(self) -> datetime.datetime:
        """Earliest line time that may still pass."""
        candidates = [self.session_anchor, self.window_found_at, self.last_reset_at]
        return max(c for c in candidates if c is not None)


class LifecycleGate:
    """Decides per line whether it belongs to the live game session.

    Window transitions come from the window watcher; reset markers are read
    from the log itself and consumed here. The state is a frozen snapshot
    swapped under a lock, so readers only ever copy one reference.
    """

    def __init__(
        self,
        session_anchor: Optional[datetime.datetime] = None,
        indicators: Sequence[str] = ("@From", "@To"),
        reset_marker: str = RESET_MARKER,
        clock=datetime.datetime.now,
    ):
        self._clock = clock
        self._lock = threading.Lock()
        self._state = LifecycleState(session_anchor=(session_anchor or clock()).replace(microsecond=0))
        self.indicators = tuple(indicators or ())
        self.reset_marker = reset_marker

    @classmethod
    def from_settings(cls, settings, indicators, session_anchor=None, clock=datetime.datetime.now) -> "LifecycleGate":
        return cls(session_anchor=session_anchor, indicators=indicators, reset_marker=settings.reset_marker, clock=clock)

    def snapshot(self) -> LifecycleState:
        with self._lock:
            return self._state

    @property
    def state(self) -> GateState:
        return self.snapshot().state

    def window_found(self, at: Optional[datetime.datetime] = None) -> None:
        # Log-Zeitstempel haben Sekundenauflösung
        at = (at or self._clock()).replace(microsecond=0)
        with self._lock:
            prev = self._state
            found_at = at
            if prev.last_reset_at is not None and prev.last_reset_at > found_at:
                found_at = prev.last_reset_at
            self._state = replace(prev, window_active=True, window_found_at=found_at, last_reset_at=None)
        log_info(f"[GATE] Window found at {found_at:%Y/%m/%d %H:%M:%S}, waiting for fresh lines")

    def window_lost(self) -> None:
        with self._lock:
            if not self._state.window_active:
                return
            self._state = replace(self._state, window_active=False)
        log_info("[GATE] Window lost, gating all lines")

    def check(self, line: str, line_time: Optional[datetime.datetime]) -> bool:
        """True if the line should go to the trigger engine. Reset markers are consumed."""
        if line_time is None:
            return False

        snap = self.snapshot()
        if not snap.window_active:
            return False
        if line_time < snap.session_anchor:
            return False
        if snap.window_found_at is not None and line_time < snap.window_found_at:
            return False

        if self.reset_marker and self.reset_marker in line:
            self._record_reset(line_time)
            return False

        if snap.last_reset_at is not None and line_time < snap.last_reset_at:
            return False

        if self.indicators and not any(ind in line for ind in self.indicators):
            return False
        return True

    def _record_reset(self, line_time: datetime.datetime) -> None:
        with self._lock:
            cur = self._state
            # Fenster kann zwischen Snapshot und Lock gewechselt haben
            if not cur.window_active:
                return
            if cur.window_found_at is not None and line_time < cur.window_found_at:
                return
            if cur.last_reset_at is not None and line_time <= cur.last_reset_at:
                return
            self._state = replace(cur, last_reset_at=line_time)
        log_debug(f"[GATE] Session reset at {line_time:%Y/%m/%d %H:%M:%S}")
