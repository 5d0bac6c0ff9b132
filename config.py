import json
import os
from dataclasses import dataclass, field
from pathlib import Path

# -----------------------
# Konfiguration
# -----------------------
DB_PATH = os.getenv("TRADE_TRACKER_DB", "trade_history.db")
LOG_PATH = os.getenv("TRADE_TRACKER_LOG", "tracker_log.txt")
LOG_ROTATE_BYTES = 10 * 1024 * 1024  # 10 MB, danach .old
POLL_INTERVAL = float(os.getenv("TRADE_TRACKER_POLL_INTERVAL", "0.5") or "0.5")
WINDOW_POLL_INTERVAL = float(os.getenv("TRADE_TRACKER_WINDOW_INTERVAL", "2.0") or "2.0")
MAX_LINE_BYTES = 1024 * 1024  # längere Zeilen werden abgeschnitten
REPLAY_MEMORY = 1000  # Fingerprints zuletzt gelesener Zeilen (Truncation-Schutz)
RESET_MARKER = "[STARTUP] Loading Start"
SOCKET_PATH = os.getenv("TRADE_TRACKER_SOCKET", "/tmp/exile-trade-tracker.sock")
CONFIG_PATH = os.path.join(
    os.path.expanduser("~"), ".config", "exile-trade-tracker", "config.json"
)
MAX_MENU_ROUNDS = 20
STAT_ERROR_LOG_INTERVAL = 60.0  # gleiche stat-Fehler nur einmal pro Minute loggen

# Fuzzy-Matching für Währungsnamen (rapidfuzz WRatio)
CURRENCY_MIN_SCORE = 86
KNOWN_CURRENCIES = {
    "divine": "Divs",
    "exalted": "Exs",
    "chaos": "Chaos",
    "alchemy": "Alchs",
    "regal": "Regals",
    "vaal": "Vaals",
    "annulment": "Annuls",
    "gold": "Gold",
    "mirror": "Mirrors",
}

_WHISPER_BODY = (
    r"([^:]+): Hi, I would like to buy your ([^,]+(?:,[^,]+)*) listed for "
    r"(\d+(?:\.\d+)?) ([^ ]+) in ([^\(]+) \(stash tab \"([^\"]+)\"; "
    r"position: left (\d+), top (\d+)\)"
)
DEFAULT_FIELDS = ("player", "item", "amount", "currency", "league", "stash_tab", "left", "top")
DEFAULT_TRIGGERS = {
    "incoming_trade": r"(?:\[INFO Client \d+\] )?@From " + _WHISPER_BODY,
    "outgoing_trade": r"(?:\[INFO Client \d+\] )?@To " + _WHISPER_BODY,
}
DEFAULT_COMMANDS = {
    "invite": ["/invite {player}"],
    "trade": ["/tradewith {player}"],
    "settle": ["/kick {player}", "@{player} thanks!"],
    "delete": [],
    "hideout": ["/hideout"],
    "kingsmarch": ["/kingsmarch"],
}
# Alte Aktionsnamen aus bestehenden Config-Dateien
COMMAND_ALIASES = {"party": "invite", "finish": "settle"}

DEFAULT_STEAM_APPS = (
    {"name": "Path of Exile", "app_id": 238960, "window_class": "steam_app_238960"},
    {"name": "Path of Exile 2", "app_id": 2694490, "window_class": "steam_app_2694490"},
)
DEFAULT_APP_ID = 2694490
SLOW_TYPING_GAMES = ("Path of Exile",)

_debug_mode = os.getenv("TRADE_TRACKER_DEBUG", "0").strip().lower() in ("1", "true", "yes", "on")


class ConfigError(ValueError):
    """Invalid configuration: bad trigger rules, unreadable config file, unknown actions."""


def get_debug_mode(default: bool = False) -> bool:
    return bool(_debug_mode or default)


def set_debug_mode(value: bool) -> None:
    global _debug_mode
    _debug_mode = bool(value)


@dataclass(frozen=True)
class SteamApp:
    name: str
    app_id: int
    window_class: str = ""

    @property
    def effective_class(self) -> str:
        return self.window_class or f"steam_app_{self.app_id}"


@dataclass(frozen=True)
class Settings:
    poe_log_path: str = ""
    triggers: dict = field(default_factory=lambda: dict(DEFAULT_TRIGGERS))
    commands: dict = field(default_factory=lambda: {k: list(v) for k, v in DEFAULT_COMMANDS.items()})
    notify_command: str = ""
    sound_command: str = ""
    steam_apps: tuple = field(default_factory=lambda: tuple(SteamApp(**a) for a in DEFAULT_STEAM_APPS))
    log_paths: dict = field(default_factory=dict)
    default_app_id: int = DEFAULT_APP_ID
    history_enabled: bool = True
    db_path: str = DB_PATH
    socket_path: str = SOCKET_PATH
    poll_interval: float = POLL_INTERVAL
    window_poll_interval: float = WINDOW_POLL_INTERVAL
    max_line_bytes: int = MAX_LINE_BYTES
    replay_memory: int = REPLAY_MEMORY
    reset_marker: str = RESET_MARKER

    def window_classes(self) -> list:
        return [app.effective_class for app in self.steam_apps]

    def app_id_by_window_class(self, window_class: str):
        for app in self.steam_apps:
            if app.effective_class == window_class:
                return app.app_id
        return None

    def game_name(self, app_id) -> str:
        for app in self.steam_apps:
            if app.app_id == app_id:
                return app.name
        return f"App {app_id}"


def _normalize_commands(raw) -> dict:
    commands = {k: list(v) for k, v in DEFAULT_COMMANDS.items()}
    if not raw:
        return commands
    if not isinstance(raw, dict):
        raise ConfigError("'commands' must be an object of action -> [command, ...]")
    for action, templates in raw.items():
        action = COMMAND_ALIASES.get(action, action)
        if action not in DEFAULT_COMMANDS:
            raise ConfigError(f"unknown action in commands: {action!r}")
        if isinstance(templates, str):
            templates = [templates]
        if not isinstance(templates, list) or not all(isinstance(t, str) for t in templates):
            raise ConfigError(f"commands[{action!r}] must be a list of strings")
        commands[action] = list(templates)
    return commands


def _parse_steam_apps(raw) -> tuple:
    if not raw:
        return tuple(SteamApp(**a) for a in DEFAULT_STEAM_APPS)
    apps = []
    try:
        for entry in raw:
            apps.append(SteamApp(
                name=str(entry["name"]),
                app_id=int(entry["app_id"]),
                window_class=str(entry.get("window_class", "") or ""),
            ))
    except (KeyError, TypeError, ValueError) as exc:
        raise ConfigError(f"invalid steam_apps entry: {exc}") from exc
    return tuple(apps)


def load_config_file(path) -> dict:
    """Read the JSON config file. A missing file yields an empty dict."""
    if not path or not os.path.exists(path):
        return {}
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigError(f"cannot read config file {path}: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"config file {path} must contain a JSON object")
    return data


def load_settings(path=None) -> Settings:
    """Build Settings from defaults, the optional JSON file and environment overrides."""
    explicit = path is not None
    path = path or os.getenv("TRADE_TRACKER_CONFIG") or CONFIG_PATH
    if explicit and not os.path.exists(path):
        raise ConfigError(f"config file not found: {path}")
    data = load_config_file(path)

    triggers = data.get("triggers") or dict(DEFAULT_TRIGGERS)
    if not isinstance(triggers, dict):
        raise ConfigError("'triggers' must be an object of name -> pattern")

    log_paths = data.get("log_paths") or {}
    if not isinstance(log_paths, dict):
        raise ConfigError("'log_paths' must be an object of app_id -> path")

    try:
        default_app_id = int(data.get("default_app_id", DEFAULT_APP_ID))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid default_app_id: {exc}") from exc

    try:
        max_line_bytes = int(data.get("max_line_bytes", MAX_LINE_BYTES))
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid max_line_bytes: {exc}") from exc

    return Settings(
        poe_log_path=os.getenv("TRADE_TRACKER_POE_LOG", data.get("poe_log_path", "") or ""),
        triggers=triggers,
        commands=_normalize_commands(data.get("commands")),
        notify_command=data.get("notify_command", "") or "",
        sound_command=data.get("sound_command", "") or "",
        steam_apps=_parse_steam_apps(data.get("steam_apps")),
        log_paths={str(k): str(v) for k, v in log_paths.items()},
        default_app_id=default_app_id,
        history_enabled=bool(data.get("history_enabled", True)),
        db_path=data.get("db_path", DB_PATH) or DB_PATH,
        socket_path=data.get("socket_path", SOCKET_PATH) or SOCKET_PATH,
        max_line_bytes=max_line_bytes,
        reset_marker=data.get("reset_marker", RESET_MARKER) or RESET_MARKER,
    )


# -----------------------
# Log-Pfad Auflösung
# -----------------------
def default_log_candidates(game_name: str) -> list:
    home = os.path.expanduser("~")
    return [
        os.path.join(home, ".local", "share", "Steam", "steamapps", "common", game_name, "logs", "Client.txt"),
        os.path.join(home, ".steam", "steam", "steamapps", "common", game_name, "logs", "Client.txt"),
        os.path.join(home, "Games", game_name, "logs", "Client.txt"),
        os.path.join("/mnt", "data", "SteamLibrary", "steamapps", "common", game_name, "logs", "Client.txt"),
    ]


def find_default_log_path(game_name: str) -> str:
    for candidate in default_log_candidates(game_name):
        if os.path.exists(candidate):
            return candidate
    raise ConfigError(f"no Client.txt found for {game_name}; set poe_log_path in {CONFIG_PATH}")


def resolve_log_path(settings: Settings, app_id=None) -> str:
    """Pick the Client.txt for a game: log_paths override, configured path (sibling swap), default search."""
    app_id = app_id or settings.default_app_id
    name = settings.game_name(app_id)

    if settings.log_paths:
        configured = settings.log_paths.get(str(app_id))
        if not configured:
            raise ConfigError(f"log_paths has no entry for app {app_id} ({name})")
        return configured

    base = settings.poe_log_path
    if base:
        others = sorted((app.name for app in settings.steam_apps), key=len, reverse=True)
        owner = next((other for other in others if other in base), None)
        if owner is None or owner == name:
            return base
        return base.replace(owner, name, 1)

    return find_default_log_path(name)


def ensure_parent_dir(path) -> None:
    parent = Path(path).parent
    if str(parent) and not parent.exists():
        parent.mkdir(parents=True, exist_ok=True)
