import shlex
import shutil
import subprocess
import threading

from utils import log_debug, log_error, log_warn

DEFAULT_TITLE = "Exile Trade Tracker"
INFO = "info"
ERROR = "error"


def _system_tools(title: str, message: str, level: str) -> list:
    urgency = "critical" if level == ERROR else "normal"
    if level == ERROR:
        title = f"{title} Error"
    return [
        ("dunstify", ["dunstify", "-u", urgency, "-t", "5000", title, message]),
        ("notify-send", ["notify-send", "-u", urgency, title, message]),
        ("zenity", ["zenity", "--error" if level == ERROR else "--info", "--text", message, "--title", title]),
    ]


class Notifier:
    """Desktop notifications: custom command, then system tools, then stdout."""

    def __init__(self, notify_command: str = "", sound_command: str = "", title: str = DEFAULT_TITLE):
        self.notify_command = notify_command
        self.sound_command = sound_command
        self.title = title

    def show(self, message: str, level: str = INFO) -> bool:
        if self.notify_command and self._run_custom(message, level):
            return True
        for tool, args in _system_tools(self.title, message, level):
            if shutil.which(tool) is None:
                continue
            try:
                subprocess.run(args, check=True, timeout=10, capture_output=True)
                log_debug(f"[NOTIFY] Sent via {tool}: {message}")
                return True
            except (OSError, subprocess.SubprocessError) as exc:
                log_debug(f"[NOTIFY] {tool} failed: {exc}")
        print(f"[{self.title}] {level.upper()}: {message}")
        return False

    def post(self, message: str, level: str = INFO) -> threading.Thread:
        """show() on a daemon thread; for callers on the tail or window loop."""
        thread = threading.Thread(target=self._show_safe, args=(message, level), name="notify", daemon=True)
        thread.start()
        return thread

    def _show_safe(self, message: str, level: str) -> None:
        try:
            self.show(message, level)
        except Exception as exc:
            log_error("[NOTIFY] Notification failed", exc)

    def play_sound(self) -> None:
        if not self.sound_command:
            return
        try:
            subprocess.Popen(shlex.split(self.sound_command), stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
        except (OSError, ValueError) as exc:
            log_warn(f"[NOTIFY] Sound command failed: {exc}")

    # EventStore sink
    def on_upsert(self, event, replaced: bool) -> None:
        if replaced:
            return
        self.play_sound()
        self.post(f"New trade: {event.display()}")

    def _run_custom(self, message: str, level: str) -> bool:
        try:
            args = shlex.split(self.notify_command) + [level.upper(), self.title, message]
            subprocess.run(args, check=True, timeout=10, capture_output=True)
            return True
        except (OSError, ValueError, subprocess.SubprocessError) as exc:
            log_warn(f"[NOTIFY] Custom notification command failed: {exc}")
            return False
