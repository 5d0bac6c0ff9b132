import datetime
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple

from config import DEFAULT_FIELDS, ConfigError
from trade_store import Direction, TradeEvent
from utils import log_debug, log_warn, normalize_currency

# -----------------------
# Zeitstempel: "2025/01/18 10:00:05 ..."
# -----------------------
_TIMESTAMP_FORMAT = "%Y/%m/%d %H:%M:%S"
_TIMESTAMP_LEN = 19

KNOWN_FIELDS = frozenset(DEFAULT_FIELDS)
REQUIRED_FIELDS = ("player", "item")
_DIRECTION_WORDS = {
    "buy": Direction.BUY,
    "incoming": Direction.BUY,
    "sell": Direction.SELL,
    "outgoing": Direction.SELL,
}
_DEFAULT_INDICATORS = {Direction.BUY: "@From", Direction.SELL: "@To"}


class LogParseError(ValueError):
    """A line whose timestamp or fields cannot be read."""


def parse_line_timestamp(line: str) -> datetime.datetime:
    if not line or len(line) < _TIMESTAMP_LEN:
        raise LogParseError(f"line too short for a timestamp: {line!r}")
    try:
        return datetime.datetime.strptime(line[:_TIMESTAMP_LEN], _TIMESTAMP_FORMAT)
    except ValueError as exc:
        raise LogParseError(f"bad timestamp in line: {line[:_TIMESTAMP_LEN]!r}") from exc


@dataclass(frozen=True)
class TriggerRule:
    name: str
    pattern: "re.Pattern"
    fields: Tuple[str, ...]
    direction: Direction
    indicator: Optional[str] = None


def _direction_for(name: str, declared) -> Direction:
    if declared:
        direction = _DIRECTION_WORDS.get(str(declared).strip().lower())
        if direction is None:
            raise ConfigError(f"trigger {name!r}: unknown direction {declared!r}")
        return direction
    lowered = name.lower()
    for prefix in ("incoming", "outgoing"):
        if lowered.startswith(prefix):
            return _DIRECTION_WORDS[prefix]
    raise ConfigError(
        f"trigger {name!r}: cannot derive direction from the name; "
        f"use an object with \"direction\": \"buy\" or \"sell\""
    )


def compile_rule(name: str, definition) -> TriggerRule:
    if isinstance(definition, str):
        definition = {"pattern": definition}
    if not isinstance(definition, dict) or not definition.get("pattern"):
        raise ConfigError(f"trigger {name!r}: needs a pattern string")

    try:
        pattern = re.compile(definition["pattern"])
    except re.error as exc:
        raise ConfigError(f"trigger {name!r}: invalid regex: {exc}") from exc

    fields = tuple(definition.get("fields") or DEFAULT_FIELDS)
    unknown = [f for f in fields if f not in KNOWN_FIELDS]
    if unknown:
        raise ConfigError(f"trigger {name!r}: unknown field(s) {', '.join(unknown)}")
    missing = [f for f in REQUIRED_FIELDS if f not in fields]
    if missing:
        raise ConfigError(f"trigger {name!r}: missing required field(s) {', '.join(missing)}")
    if pattern.groups < len(fields):
        log_warn(f"[TRIGGER] {name}: pattern has {pattern.groups} groups for {len(fields)} fields, it will never match")

    direction = _direction_for(name, definition.get("direction"))
    indicator = definition.get("indicator", _DEFAULT_INDICATORS[direction])
    return TriggerRule(name=name, pattern=pattern, fields=fields, direction=direction, indicator=indicator or None)


def compile_rules(triggers: Dict[str, object]) -> Dict[str, TriggerRule]:
    """Compile every trigger or fail; an engine never runs with a partial rule set."""
    if not triggers:
        raise ConfigError("no trigger rules configured")
    return {name: compile_rule(name, definition) for name, definition in triggers.items()}


def rule_indicators(rules: Dict[str, TriggerRule]) -> Tuple[str, ...]:
    """Substrings for the cheap pre-filter; empty when any rule has none."""
    indicators = []
    for rule in rules.values():
        if not rule.indicator:
            return ()
        if rule.indicator not in indicators:
            indicators.append(rule.indicator)
    return tuple(indicators)


def _to_decimal(raw, rule_name: str) -> Decimal:
    try:
        value = Decimal(str(raw).strip())
    except (InvalidOperation, ValueError):
        log_warn(f"[TRIGGER] {rule_name}: amount {raw!r} is not a number, using 0")
        return Decimal(0)
    if not value.is_finite():
        log_warn(f"[TRIGGER] {rule_name}: amount {raw!r} is not finite, using 0")
        return Decimal(0)
    return value


def _to_int(raw, rule_name: str, field_name: str) -> int:
    try:
        return int(str(raw).strip())
    except (TypeError, ValueError):
        log_warn(f"[TRIGGER] {rule_name}: {field_name} {raw!r} is not an integer, using 0")
        return 0


class TriggerEngine:
    def __init__(self, rules: Dict[str, TriggerRule]):
        self.rules = dict(rules)

    @classmethod
    def from_config(cls, triggers: Dict[str, object]) -> "TriggerEngine":
        return cls(compile_rules(triggers))

    @classmethod
    def from_settings(cls, settings) -> "TriggerEngine":
        return cls.from_config(settings.triggers)

    @property
    def indicators(self) -> Tuple[str, ...]:
        return rule_indicators(self.rules)

    def match(self, line: str, line_time: datetime.datetime) -> List[TradeEvent]:
        events = []
        for rule in self.rules.values():
            m = rule.pattern.search(line)
            if not m:
                continue
            groups = m.groups()
            if len(groups) < len(rule.fields):
                continue
            values = dict(zip(rule.fields, groups))
            if any(not values.get(f) for f in REQUIRED_FIELDS):
                log_debug(f"[TRIGGER] {rule.name}: matched without player/item, skipped")
                continue
            events.append(self._build_event(rule, values, line, line_time))
        return events

    def _build_event(self, rule: TriggerRule, values: dict, line: str, line_time) -> TradeEvent:
        amount = values.get("amount")
        currency = values.get("currency") or ""
        event = TradeEvent(
            timestamp=line_time,
            rule_name=rule.name,
            player_name=values["player"].strip(),
            item_name=values["item"].strip(),
            amount=_to_decimal(amount, rule.name) if amount is not None else Decimal(0),
            currency=normalize_currency(currency.strip()) if currency else "",
            stash_tab=(values.get("stash_tab") or "").strip(),
            position=(
                _to_int(values.get("left"), rule.name, "left") if values.get("left") is not None else 0,
                _to_int(values.get("top"), rule.name, "top") if values.get("top") is not None else 0,
            ),
            raw_line=line,
            direction=rule.direction,
            league=(values.get("league") or "").strip(),
        )
        log_debug(f"[TRIGGER] {rule.name}: {event.player_name} / {event.item_name} / {event.amount} {event.currency}")
        return event
