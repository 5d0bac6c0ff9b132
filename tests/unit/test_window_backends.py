import datetime
import json
import threading
import time
import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import window  # noqa: E402
from config import ConfigError, Settings  # noqa: E402
from lifecycle import GateState, LifecycleGate  # noqa: E402
from window import (  # noqa: E402
    HyprlandBackend,
    WindowBackend,
    WindowError,
    WindowInfo,
    WindowWatcher,
    X11Backend,
    select_backend,
)

T0 = datetime.datetime(2025, 1, 18, 10, 0, 0)


def test_hyprland_finds_mapped_client(monkeypatch):
    clients = [
        {"class": "firefox", "address": "0x1", "title": "web"},
        {"class": "steam_app_2694490", "address": "0x2", "title": "Path of Exile 2", "mapped": False},
        {"class": "steam_app_238960", "address": "0x3", "title": "Path of Exile"},
    ]
    calls = []

    def fake_run(args):
        calls.append(args)
        return json.dumps(clients)

    monkeypatch.setattr(window, "_run", fake_run)
    found = HyprlandBackend().find_window(["steam_app_2694490", "steam_app_238960"])

    assert found == WindowInfo(address="0x3", window_class="steam_app_238960", title="Path of Exile")

    HyprlandBackend().focus_window(found)
    assert calls[-1] == ["hyprctl", "dispatch", "focuswindow", "address:0x3"]


def test_x11_skips_classes_without_windows(monkeypatch):
    def fake_run(args):
        if args[:3] == ["xdotool", "search", "--class"]:
            if args[3] == "steam_app_238960":
                raise WindowError("exit 1")
            return "41943047\n"
        if args[1] == "getwindowclassname":
            return "steam_app_2694490\n"
        raise AssertionError(args)

    monkeypatch.setattr(window, "_run", fake_run)
    found = X11Backend().find_window(["steam_app_238960", "steam_app_2694490"])

    assert found == WindowInfo(address="41943047", window_class="steam_app_2694490")


def test_select_backend_by_session(monkeypatch):
    monkeypatch.setattr(window.shutil, "which", lambda name: f"/usr/bin/{name}")

    hypr = select_backend({"XDG_SESSION_TYPE": "wayland", "HYPRLAND_INSTANCE_SIGNATURE": "abc"})
    x11 = select_backend({"XDG_SESSION_TYPE": "x11"})

    assert isinstance(hypr, HyprlandBackend)
    assert isinstance(x11, X11Backend)


@pytest.mark.parametrize("env", [
    {"XDG_SESSION_TYPE": "wayland"},
    {"XDG_SESSION_TYPE": "tty"},
    {},
])
def test_select_backend_rejects_unsupported_sessions(monkeypatch, env):
    monkeypatch.setattr(window.shutil, "which", lambda name: f"/usr/bin/{name}")
    with pytest.raises(ConfigError):
        select_backend(env)


def test_select_backend_needs_tool(monkeypatch):
    monkeypatch.setattr(window.shutil, "which", lambda name: None)
    with pytest.raises(ConfigError):
        select_backend({"XDG_SESSION_TYPE": "x11"})


class ScriptedBackend(WindowBackend):
    def __init__(self, windows):
        self.windows = list(windows)
        self.focused = []

    def find_window(self, classes):
        return self.windows.pop(0) if self.windows else None

    def focus_window(self, info):
        self.focused.append(info)


class Recorder:
    def __init__(self):
        self.messages = []

    def post(self, message, level="info"):
        self.messages.append(message)


def test_watcher_drives_gate_transitions():
    poe2 = WindowInfo(address="0x1", window_class="steam_app_2694490")
    backend = ScriptedBackend([None, poe2, poe2, None])
    gate = LifecycleGate(session_anchor=T0)
    notes = Recorder()
    watcher = WindowWatcher(backend, gate, Settings(), notes, clock=lambda: T0)

    assert watcher.poll_once() is False
    assert gate.state is GateState.INACTIVE

    assert watcher.poll_once() is True
    assert gate.state is GateState.ACTIVE_NO_RESET
    assert watcher.poll_once() is True
    assert watcher.poll_once() is False
    assert gate.state is GateState.INACTIVE

    assert notes.messages == ["Path of Exile 2 window found, monitoring trades...", "Path of Exile 2 window lost"]
    assert [cls for _, cls in watcher.history] == ["steam_app_2694490", "steam_app_2694490"]


def test_watcher_reports_variant_change():
    backend = ScriptedBackend([
        WindowInfo(address="0x1", window_class="steam_app_2694490"),
        WindowInfo(address="0x2", window_class="steam_app_238960"),
    ])
    gate = LifecycleGate(session_anchor=T0)
    changes = []
    watcher = WindowWatcher(backend, gate, Settings(), on_variant_change=changes.append, clock=lambda: T0)

    watcher.poll_once()
    watcher.poll_once()

    assert changes == [238960]
    assert watcher.game_name() == "Path of Exile"
    assert watcher.active_app_id == 238960


def test_focus_without_window_is_an_error():
    watcher = WindowWatcher(ScriptedBackend([]), LifecycleGate(session_anchor=T0), Settings())
    with pytest.raises(WindowError):
        watcher.focus()


def test_watch_loop_exits_within_one_interval():
    poe2 = WindowInfo(address="0x1", window_class="steam_app_2694490")
    backend = ScriptedBackend([poe2] * 1000)
    gate = LifecycleGate(session_anchor=T0)
    watcher = WindowWatcher(backend, gate, Settings(), Recorder(), clock=lambda: T0)
    stop = threading.Event()
    worker = threading.Thread(target=watcher.run, args=(stop, 0.1), daemon=True)
    worker.start()

    deadline = time.monotonic() + 2.0
    while gate.state is not GateState.ACTIVE_NO_RESET and time.monotonic() < deadline:
        time.sleep(0.01)
    assert gate.state is GateState.ACTIVE_NO_RESET

    started = time.monotonic()
    stop.set()
    worker.join(timeout=2.0)

    assert not worker.is_alive()
    assert time.monotonic() - started < 0.1 + 0.25
