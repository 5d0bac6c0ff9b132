import datetime
import sys
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from actions import KeystrokeExecutor, expand_command  # noqa: E402
from config import Settings  # noqa: E402
from trade_store import Direction, TradeEvent  # noqa: E402
from window import WindowError, WindowInfo  # noqa: E402

EVENT = TradeEvent(
    timestamp=datetime.datetime(2025, 1, 18, 10, 0, 5),
    rule_name="incoming_trade",
    player_name="Bob",
    item_name="Chaos Orb",
    amount=Decimal("5"),
    currency="exalted",
    stash_tab="Tab1",
    position=(3, 2),
    raw_line="",
    direction=Direction.BUY,
)


class FakeWatcher:
    def __init__(self, game="Path of Exile 2", window=True):
        self.game = game
        self.window = WindowInfo(address="0x1", window_class="steam_app_1") if window else None
        self.focus_calls = 0

    def focus(self):
        self.focus_calls += 1
        if self.window is None:
            raise WindowError(f"{self.game} needs to be running")
        return self.window

    def game_name(self):
        return self.game


class FakeKeyboard:
    def __init__(self):
        self.calls = []

    def press(self, key):
        self.calls.append(("press", key))

    def hotkey(self, *keys):
        self.calls.append(("hotkey",) + keys)

    def write(self, text, interval=0.0):
        self.calls.append(("write", text))


def test_expand_command():
    assert expand_command("@{player} thanks for {item}", EVENT) == "@Bob thanks for Chaos Orb"
    assert expand_command("/hideout") == "/hideout"


def test_fast_profile_types_each_command():
    kb = FakeKeyboard()
    sleeps = []
    executor = KeystrokeExecutor(FakeWatcher(), Settings(), keyboard=kb, sleep=sleeps.append)

    sent = executor.execute(EVENT, "settle")

    assert sent == ["/kick Bob", "@Bob thanks!"]
    assert kb.calls == [
        ("press", "enter"), ("write", "/kick Bob"), ("press", "enter"),
        ("press", "enter"), ("write", "@Bob thanks!"), ("press", "enter"),
    ]
    assert sleeps == []


def test_slow_profile_clears_chat_first():
    kb = FakeKeyboard()
    sleeps = []
    executor = KeystrokeExecutor(FakeWatcher(game="Path of Exile"), Settings(), keyboard=kb, sleep=sleeps.append)

    executor.execute(EVENT, "invite")

    assert kb.calls == [
        ("press", "enter"), ("hotkey", "ctrl", "a"), ("press", "backspace"),
        ("write", "/invite Bob"), ("press", "enter"),
    ]
    assert sleeps


def test_action_without_commands_does_not_focus():
    watcher = FakeWatcher()
    executor = KeystrokeExecutor(watcher, Settings(), keyboard=FakeKeyboard())

    assert executor.execute(EVENT, "delete") == []
    assert watcher.focus_calls == 0


def test_missing_window_raises():
    executor = KeystrokeExecutor(FakeWatcher(window=False), Settings(), keyboard=FakeKeyboard())
    with pytest.raises(WindowError):
        executor.execute(EVENT, "trade")


def test_run_named_uses_configured_commands():
    kb = FakeKeyboard()
    settings = Settings(commands={"hideout": ["/hideout"], "kingsmarch": ["/kingsmarch"]})
    executor = KeystrokeExecutor(FakeWatcher(), settings, keyboard=kb, sleep=lambda _s: None)

    assert executor.run_named("kingsmarch") == ["/kingsmarch"]
    assert ("write", "/kingsmarch") in kb.calls
