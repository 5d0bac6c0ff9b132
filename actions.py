import time
from typing import List, Sequence

from config import SLOW_TYPING_GAMES
from trade_store import ActionCode, TradeEvent
from utils import log_debug, log_info

# Timing für das langsame Profil (PoE1 verschluckt sonst Zeichen)
FOCUS_DELAY = 0.15
CHAT_FOCUS_DELAY = 0.10
CLEAR_SELECT_DELAY = 0.03
CLEAR_DELETE_DELAY = 0.03
AFTER_TYPE_DELAY = 0.04
SEND_COOLDOWN = 0.12
TYPE_CHAR_INTERVAL = 0.01


def expand_command(template: str, event: TradeEvent = None) -> str:
    if event is None:
        return template
    return template.replace("{player}", event.player_name).replace("{item}", event.item_name)


class KeystrokeExecutor:
    """Types chat commands into the focused game window."""

    def __init__(self, watcher, settings, keyboard=None, sleep=time.sleep):
        self.watcher = watcher
        self.settings = settings
        self._keyboard = keyboard
        self._sleep = sleep

    @property
    def keyboard(self):
        if self._keyboard is None:
            # pyautogui braucht beim Import ein Display
            import pyautogui
            self._keyboard = pyautogui
        return self._keyboard

    def commands_for(self, event: TradeEvent, action) -> List[str]:
        action = ActionCode.parse(action)
        templates = self.settings.commands.get(action.value, [])
        return [expand_command(t, event) for t in templates]

    def execute(self, event: TradeEvent, action) -> List[str]:
        commands = self.commands_for(event, action)
        if commands:
            log_info(f"[ACTION] {ActionCode.parse(action).value} for {event.player_name}: {len(commands)} command(s)")
            self.send(commands)
        return commands

    def run_named(self, name: str) -> List[str]:
        """Commands without a trade (hideout, kingsmarch)."""
        commands = list(self.settings.commands.get(name, []))
        if commands:
            self.send(commands)
        return commands

    def send(self, commands: Sequence[str]) -> None:
        window = self.watcher.focus()
        slow = self.watcher.game_name() in SLOW_TYPING_GAMES
        kb = self.keyboard
        if slow:
            self._sleep(FOCUS_DELAY)
        for command in commands:
            log_debug(f"[ACTION] Typing {command!r} into {window.window_class}")
            if slow:
                kb.press("enter")
                self._sleep(CHAT_FOCUS_DELAY)
                kb.hotkey("ctrl", "a")
                self._sleep(CLEAR_SELECT_DELAY)
                kb.press("backspace")
                self._sleep(CLEAR_DELETE_DELAY)
                kb.write(command, interval=TYPE_CHAR_INTERVAL)
                self._sleep(AFTER_TYPE_DELAY)
                kb.press("enter")
                self._sleep(SEND_COOLDOWN)
            else:
                kb.press("enter")
                kb.write(command)
                kb.press("enter")
