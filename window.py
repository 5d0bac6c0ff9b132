import datetime
import json
import os
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

from config import ConfigError
from utils import log_debug, log_error, log_info

_CMD_TIMEOUT = 5.0


class WindowError(RuntimeError):
    """Window lookup or focus failed."""


@dataclass(frozen=True)
class WindowInfo:
    address: str
    window_class: str
    title: str = ""


def _run(args: Sequence[str]) -> str:
    try:
        proc = subprocess.run(list(args), capture_output=True, text=True, timeout=_CMD_TIMEOUT)
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise WindowError(f"{args[0]} failed: {exc}") from exc
    if proc.returncode != 0:
        raise WindowError(f"{' '.join(args)} exited with {proc.returncode}: {proc.stderr.strip()}")
    return proc.stdout


class WindowBackend:
    name = "base"

    def find_window(self, classes: Sequence[str]) -> Optional[WindowInfo]:
        raise NotImplementedError

    def focus_window(self, window: WindowInfo) -> None:
        raise NotImplementedError


class HyprlandBackend(WindowBackend):
    name = "Hyprland"

    def find_window(self, classes):
        clients = json.loads(_run(["hyprctl", "clients", "-j"]) or "[]")
        wanted = set(classes)
        for client in clients:
            if client.get("class") in wanted and client.get("mapped", True):
                return WindowInfo(
                    address=str(client.get("address", "")),
                    window_class=client["class"],
                    title=client.get("title", ""),
                )
        return None

    def focus_window(self, window):
        log_debug(f"[WINDOW] Focusing Hyprland window {window.address} ({window.window_class})")
        _run(["hyprctl", "dispatch", "focuswindow", f"address:{window.address}"])


class X11Backend(WindowBackend):
    name = "X11"

    def find_window(self, classes):
        for window_class in classes:
            try:
                out = _run(["xdotool", "search", "--class", window_class])
            except WindowError as exc:
                # xdotool liefert Exit 1, wenn nichts gefunden wurde
                log_debug(f"[WINDOW] xdotool search {window_class}: {exc}")
                continue
            for window_id in out.split():
                try:
                    found_class = _run(["xdotool", "getwindowclassname", window_id]).strip()
                except WindowError as exc:
                    log_debug(f"[WINDOW] getwindowclassname {window_id}: {exc}")
                    continue
                return WindowInfo(address=window_id, window_class=found_class or window_class)
        return None

    def focus_window(self, window):
        log_debug(f"[WINDOW] Focusing X11 window {window.address} ({window.window_class})")
        _run(["xdotool", "windowactivate", window.address])
        time.sleep(0.1)


def select_backend(env=None) -> WindowBackend:
    """Pick the backend for the running session (Hyprland on Wayland, xdotool on X11)."""
    env = os.environ if env is None else env
    session = (env.get("XDG_SESSION_TYPE") or "").lower()
    if session == "wayland":
        if not env.get("HYPRLAND_INSTANCE_SIGNATURE"):
            raise ConfigError("unsupported Wayland compositor: only Hyprland is supported")
        if shutil.which("hyprctl") is None:
            raise ConfigError("hyprctl not found in PATH")
        backend = HyprlandBackend()
    elif session == "x11":
        if shutil.which("xdotool") is None:
            raise ConfigError("xdotool is required for X11 support")
        backend = X11Backend()
    else:
        raise ConfigError(f"unsupported session type: {session or 'unset'}")
    log_info(f"[WINDOW] Using {backend.name} backend")
    return backend


class WindowWatcher:
    """Polls the backend and turns window presence into gate transitions."""

    def __init__(self, backend: WindowBackend, gate, settings, notifier=None,
                 on_variant_change: Optional[Callable[[int], None]] = None,
                 clock=datetime.datetime.now):
        self.backend = backend
        self.gate = gate
        self.settings = settings
        self.notifier = notifier
        self.on_variant_change = on_variant_change
        self._clock = clock
        self._lock = threading.Lock()
        self._window: Optional[WindowInfo] = None
        self._active = False
        self._active_app_id = settings.default_app_id
        self._waiting_logged = False
        self.history = []  # (timestamp, window_class), letzte 5

    @property
    def current_window(self) -> Optional[WindowInfo]:
        with self._lock:
            return self._window

    @property
    def active_app_id(self) -> int:
        with self._lock:
            return self._active_app_id

    @property
    def is_active(self) -> bool:
        with self._lock:
            return self._active

    def game_name(self) -> str:
        return self.settings.game_name(self.active_app_id)

    def poll_once(self) -> bool:
        window = self.backend.find_window(self.settings.window_classes())
        now = self._clock()
        became_active = became_inactive = False
        variant_changed = None

        with self._lock:
            self._window = window
            active = window is not None
            if active != self._active:
                became_active, became_inactive = active, not active
                self._active = active
            if window is not None:
                app_id = self._app_id_for(window.window_class)
                if app_id and app_id != self._active_app_id:
                    self._active_app_id = app_id
                    variant_changed = app_id
                self.history.append((now, window.window_class))
                del self.history[:-5]

        if became_active or (variant_changed and not became_inactive):
            self.gate.window_found(now)
            self._waiting_logged = False
        if became_active:
            self._notify(f"{self.game_name()} window found, monitoring trades...")
        elif became_inactive:
            self.gate.window_lost()
            self._notify(f"{self.game_name()} window lost")
        elif window is None and not self._waiting_logged:
            log_info("[WINDOW] Waiting for game window...")
            self._waiting_logged = True

        if variant_changed:
            log_info(f"[WINDOW] Game variant changed to {self.settings.game_name(variant_changed)}")
            if self.on_variant_change is not None:
                self.on_variant_change(variant_changed)
        return self._active

    def run(self, stop_event: threading.Event, interval: float) -> None:
        while not stop_event.is_set():
            try:
                self.poll_once()
            except Exception as exc:
                log_error("[WINDOW] Poll failed", exc)
            stop_event.wait(interval)

    def focus(self) -> WindowInfo:
        window = self.current_window
        if window is None:
            raise WindowError(f"{self.game_name()} needs to be running")
        self.backend.focus_window(window)
        return window

    def _app_id_for(self, window_class: str):
        app_id = self.settings.app_id_by_window_class(window_class)
        if app_id is None and window_class.startswith("steam_app_"):
            try:
                app_id = int(window_class[len("steam_app_"):])
            except ValueError:
                app_id = None
        return app_id

    def _notify(self, message: str) -> None:
        log_info(f"[WINDOW] {message}")
        if self.notifier is not None:
            self.notifier.post(message)
