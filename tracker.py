import datetime
import threading
import traceback
from dataclasses import dataclass
from typing import List, Optional

from actions import KeystrokeExecutor
from config import MAX_MENU_ROUNDS, Settings, get_debug_mode, load_settings, resolve_log_path, set_debug_mode
from database import TradeHistory
from ipc import CommandServer
from lifecycle import LifecycleGate
from log_tailer import LogTailer
from notify import ERROR, Notifier
from parsing import LogParseError, TriggerEngine, parse_line_timestamp
from presenter import MENU_HINT, PresenterError, RofiPresenter, Selection
from trade_store import ActionResult, EventStore, TradeEvent
from utils import log_debug, log_error, log_info, log_text
from window import WindowWatcher, select_backend


@dataclass
class TrackerContext:
    """Settings and shared services handed to every component at construction."""
    settings: Settings
    notifier: Notifier
    debug: bool = False

    @classmethod
    def create(cls, config_path=None, debug=None, settings=None) -> "TrackerContext":
        settings = settings or load_settings(config_path)
        debug = get_debug_mode(bool(debug))
        set_debug_mode(debug)
        return cls(
            settings=settings,
            notifier=Notifier(settings.notify_command, settings.sound_command),
            debug=debug,
        )


# -----------------------
# Pipeline: Tail → Gate → Trigger → Store
# -----------------------
class TradeTracker:
    def __init__(self, context: TrackerContext, log_path: Optional[str] = None, backend=None,
                 presenter=None, history=None, keyboard=None,
                 session_anchor: Optional[datetime.datetime] = None):
        self.context = context
        self.settings = context.settings
        self.notifier = context.notifier
        # ConfigError hier ist fatal, bevor irgendetwas gelesen wird
        self.engine = TriggerEngine.from_settings(self.settings)
        self.gate = LifecycleGate.from_settings(self.settings, self.engine.indicators, session_anchor=session_anchor)

        self.store = EventStore()
        if history is None and self.settings.history_enabled:
            history = TradeHistory(self.settings.db_path)
        self.history = history
        if history is not None:
            self.store.add_sink(history)
        self.store.add_sink(self.notifier)

        self.watcher = WindowWatcher(
            backend, self.gate, self.settings, self.notifier,
            on_variant_change=self._on_variant_change,
        )
        self.executor = KeystrokeExecutor(self.watcher, self.settings, keyboard=keyboard)
        self.presenter = presenter or RofiPresenter()

        self.fixed_log_path = log_path
        self.tailer = LogTailer.from_settings(self.settings)
        self._tail_lock = threading.Lock()
        self._menu_lock = threading.Lock()
        self._stop_event = threading.Event()
        self._window_thread = None
        self._ipc = None
        self.running = False

        # Error tracking for health monitoring
        self.error_count = 0
        self.last_error_time = None
        self.last_error_message = ""

    @property
    def debug(self) -> bool:
        return self.context.debug

    @debug.setter
    def debug(self, value: bool) -> None:
        self.context.debug = bool(value)
        set_debug_mode(self.context.debug)

    # -----------------------
    # Setup
    # -----------------------
    def _ensure_backend(self) -> None:
        if self.watcher.backend is None:
            self.watcher.backend = select_backend()

    def open_log(self, path: Optional[str] = None) -> str:
        """Start tailing at the end of the game log. OSError if it cannot be read."""
        path = path or self.fixed_log_path or resolve_log_path(self.settings, self.watcher.active_app_id)
        tailer = LogTailer.from_settings(self.settings).open(path)
        with self._tail_lock:
            self.tailer = tailer
        log_info(f"[TAIL] Watching {path}")
        return path

    def _on_variant_change(self, app_id: int) -> None:
        if self.fixed_log_path:
            return
        try:
            path = resolve_log_path(self.settings, app_id)
            self.open_log(path)
        except Exception as exc:
            self.record_error(exc, f"switching log for app {app_id}")

    def record_error(self, exc: Exception, context: str = "") -> None:
        self.error_count += 1
        self.last_error_time = datetime.datetime.now()
        self.last_error_message = str(exc)
        log_error(f"[TRACKER] {context or 'Error'}", exc)
        if self.debug:
            log_text(f"[TRACKER] {context or 'Error'}\n{traceback.format_exc()}")

    # -----------------------
    # Line processing
    # -----------------------
    def process_line(self, line: str) -> List[TradeEvent]:
        try:
            line_time = parse_line_timestamp(line)
        except LogParseError as exc:
            log_debug(f"[GATE] Rejected unparsable line: {exc}")
            return []
        if not self.gate.check(line, line_time):
            return []
        events = self.engine.match(line, line_time)
        for event in events:
            self.store.upsert(event)
        return events

    def single_scan(self) -> List[TradeEvent]:
        with self._tail_lock:
            lines = self.tailer.poll() if self.tailer.path else []
        found = []
        for line in lines:
            found.extend(self.process_line(line))
        return found

    # -----------------------
    # Scanning loops
    # -----------------------
    def refresh_window(self) -> bool:
        """Poll the window backend once; False if no game window (or the poll failed)."""
        self._ensure_backend()
        try:
            return self.watcher.poll_once()
        except Exception as exc:
            self.record_error(exc, "window poll")
            return False

    def auto_track(self) -> None:
        if self.running:
            print("Auto-Tracking läuft bereits.")
            return
        self.refresh_window()
        if self.tailer.path is None:
            self.open_log()

        self._stop_event.clear()
        self.running = True
        print("▶ Auto-Tracking gestartet ...")
        log_info("[AUTO-TRACK] Started")
        self._window_thread = threading.Thread(
            target=self.watcher.run,
            args=(self._stop_event, self.settings.window_poll_interval),
            name="window-watch",
            daemon=True,
        )
        self._window_thread.start()
        try:
            while not self._stop_event.is_set():
                try:
                    self.single_scan()
                except Exception as exc:
                    self.record_error(exc, "tail loop")
                self._stop_event.wait(self.settings.poll_interval)
        finally:
            self._stop_event.set()
            self._window_thread.join(timeout=self.settings.window_poll_interval + 1.0)
            self.running = False
            log_info("[AUTO-TRACK] Stopped")
            print("⏹ Auto-Tracking gestoppt.")

    def stop(self) -> None:
        self._stop_event.set()

    # -----------------------
    # Menu & actions
    # -----------------------
    def handle_selection(self, selection: Selection) -> ActionResult:
        result = self.store.apply(selection.indices, selection.action)
        for event in result.selected:
            try:
                self.executor.execute(event, result.action)
            except Exception as exc:
                self.record_error(exc, f"{result.action.value} for {event.player_name}")
                self.notifier.show(f"{result.action.value} failed: {exc}", ERROR)
        return result

    def show_trades(self) -> str:
        """Show the menu until the user cancels or the store is empty."""
        with self._menu_lock:
            handled = 0
            for _ in range(MAX_MENU_ROUNDS):
                items = self.store.render()
                if not items:
                    break
                try:
                    selection = self.presenter.present(items, MENU_HINT)
                except PresenterError as exc:
                    self.record_error(exc, "menu")
                    self.notifier.show(str(exc), ERROR)
                    return f"menu failed: {exc}"
                if selection is None:
                    break
                self.handle_selection(selection)
                handled += 1
        if handled == 0 and not self.store.snapshot():
            return "no trades"
        return f"{handled} action(s), {len(self.store)} trade(s) open"

    def status(self) -> str:
        snap = self.gate.snapshot()
        window = self.watcher.current_window
        return (
            f"state={snap.state.value} trades={len(self.store)} "
            f"game={self.watcher.game_name()} window={window.window_class if window else '-'} "
            f"log={self.tailer.path or '-'} errors={self.error_count}"
        )

    # -----------------------
    # IPC
    # -----------------------
    def _ipc_show_trades(self, _request) -> str:
        count = len(self.store)
        if count == 0:
            return "no trades"
        threading.Thread(target=self._show_trades_safe, name="menu", daemon=True).start()
        return f"showing {count} trade(s)"

    def _show_trades_safe(self) -> None:
        try:
            self.show_trades()
        except Exception as exc:
            self.record_error(exc, "showTrades")

    def ipc_handlers(self) -> dict:
        return {
            "showTrades": self._ipc_show_trades,
            "status": lambda _request: self.status(),
            "hideout": lambda _request: " / ".join(self.executor.run_named("hideout")),
            "kingsmarch": lambda _request: " / ".join(self.executor.run_named("kingsmarch")),
        }

    def serve(self) -> None:
        """Run the service: IPC server plus tracking loop until stop() or Ctrl+C."""
        self._ipc = CommandServer(self.ipc_handlers(), path=self.settings.socket_path)
        self._ipc.start()
        try:
            self.auto_track()
        except KeyboardInterrupt:
            self.stop()
        finally:
            self._ipc.stop()
            self._ipc = None
            if self.history is not None:
                self.history.close()
