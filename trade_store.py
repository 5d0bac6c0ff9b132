import datetime
import threading
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Iterable, List, Optional, Sequence, Tuple

from utils import currency_label, format_amount, log_debug, log_error, log_info


class Direction(Enum):
    """Seen from the counterparty: BUY = they buy from us (incoming whisper)."""
    BUY = "buy"
    SELL = "sell"


class ActionCode(Enum):
    TRADE = "trade"
    INVITE = "invite"
    SETTLE = "settle"
    DELETE = "delete"

    @classmethod
    def parse(cls, value) -> "ActionCode":
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower()
        key = {"party": "invite", "finish": "settle"}.get(key, key)
        return cls(key)


# True = Auswahl wird aus dem Store entfernt
REMOVAL_POLICY = {
    ActionCode.TRADE: False,
    ActionCode.INVITE: False,
    ActionCode.SETTLE: True,
    ActionCode.DELETE: True,
}


@dataclass(frozen=True)
class TradeEvent:
    timestamp: datetime.datetime
    rule_name: str
    player_name: str
    item_name: str
    amount: Decimal
    currency: str
    stash_tab: str
    position: Tuple[int, int]
    raw_line: str
    direction: Direction
    league: str = ""

    @property
    def key(self) -> tuple:
        return (self.player_name, self.item_name, self.position)

    def display(self) -> str:
        price = f"{format_amount(self.amount)} {currency_label(self.currency)}"
        if self.direction is Direction.BUY:
            return f"{self.item_name} > {price} (@{self.player_name})"
        return f"{price} > {self.item_name} (@{self.player_name})"


@dataclass
class ActionResult:
    action: ActionCode
    selected: List[TradeEvent] = field(default_factory=list)
    removed: List[TradeEvent] = field(default_factory=list)


class EventStore:
    """Ordered, de-duplicated trade events.

    A repeated request (same player, item and stash position) replaces the
    stored event at its current index. Sinks get ``on_upsert(event, replaced)``
    and ``on_remove(events, action)`` after the store lock is released; a
    failing sink is logged and never undoes the mutation.
    """

    def __init__(self, sinks: Optional[Iterable] = None):
        self._lock = threading.Lock()
        self._events: List[TradeEvent] = []
        self._sinks = list(sinks or [])

    def add_sink(self, sink) -> None:
        self._sinks.append(sink)

    def __len__(self) -> int:
        with self._lock:
            return len(self._events)

    def snapshot(self) -> List[TradeEvent]:
        with self._lock:
            return list(self._events)

    def upsert(self, event: TradeEvent) -> bool:
        """Insert or replace; returns True if an existing entry was replaced."""
        replaced = False
        with self._lock:
            for idx, existing in enumerate(self._events):
                if existing.key == event.key:
                    self._events[idx] = event
                    replaced = True
                    break
            else:
                self._events.append(event)
            count = len(self._events)
        log_debug(
            f"[STORE] {'Replaced' if replaced else 'Added'} {event.item_name} from {event.player_name} "
            f"at {event.position} ({count} stored)"
        )
        self._notify("on_upsert", event, replaced)
        return replaced

    def render(self) -> List[str]:
        with self._lock:
            events = list(self._events)
        return [f"[{idx}] {event.display()}" for idx, event in enumerate(events)]

    def apply(self, selected_indices: Sequence[int], action) -> ActionResult:
        """Resolve indices against the current order and apply the removal policy."""
        action = ActionCode.parse(action)
        result = ActionResult(action=action)
        with self._lock:
            wanted = sorted({i for i in selected_indices if 0 <= i < len(self._events)})
            result.selected = [self._events[i] for i in wanted]
            if REMOVAL_POLICY[action] and wanted:
                drop = set(wanted)
                result.removed = list(result.selected)
                self._events = [e for i, e in enumerate(self._events) if i not in drop]
        ignored = len(set(selected_indices)) - len(result.selected)
        if ignored:
            log_debug(f"[STORE] Ignored {ignored} out-of-range selection index(es)")
        log_info(f"[STORE] {action.value}: {len(result.selected)} selected, {len(result.removed)} removed")
        if result.removed:
            self._notify("on_remove", result.removed, action)
        return result

    def _notify(self, method: str, *args) -> None:
        for sink in self._sinks:
            handler = getattr(sink, method, None)
            if handler is None:
                continue
            try:
                handler(*args)
            except Exception as exc:
                log_error(f"[STORE] Sink {type(sink).__name__}.{method} failed", exc)
