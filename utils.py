import datetime
import os
import threading
from decimal import Decimal
from functools import lru_cache

from rapidfuzz import fuzz, process

from config import (
    CURRENCY_MIN_SCORE,
    KNOWN_CURRENCIES,
    LOG_PATH,
    LOG_ROTATE_BYTES,
    get_debug_mode,
)

_log_lock = threading.Lock()

# Kurzformen, die WRatio nicht sicher zuordnet
_CURRENCY_ALIASES = {
    "div": "divine",
    "divs": "divine",
    "ex": "exalted",
    "exa": "exalted",
    "exalt": "exalted",
    "exalts": "exalted",
    "c": "chaos",
    "alch": "alchemy",
    "annul": "annulment",
}


def _rotate_if_needed(path: str) -> None:
    if not os.path.exists(path):
        return
    if os.path.getsize(path) <= LOG_ROTATE_BYTES:
        return
    # Rotate: .txt → .txt.old (überschreibt alte Rotation)
    try:
        os.replace(path, f"{path}.old")
    except OSError:
        os.remove(path)


def log_text(text):
    """Logging mit automatischer Rotation bei 10MB Limit."""
    try:
        with _log_lock:
            _rotate_if_needed(LOG_PATH)
            with open(LOG_PATH, "a", encoding="utf-8") as f:
                f.write(f"{datetime.datetime.now().isoformat()}:\n{text}\n\n")
    except Exception:
        pass


def _write_line(level: str, message: str) -> None:
    try:
        ts = datetime.datetime.now().isoformat()
        with _log_lock:
            _rotate_if_needed(LOG_PATH)
            with open(LOG_PATH, "a", encoding="utf-8") as f:
                f.write(f"{ts} [{level}] {message}\n")
    except Exception:
        pass


def log_debug(message: str):
    """Append a debug line to the tracker log (only with debug mode on)."""
    if get_debug_mode():
        _write_line("DEBUG", message)


def log_info(message: str):
    _write_line("INFO", message)


def log_warn(message: str):
    _write_line("WARN", message)


def log_error(message: str, exc=None):
    if exc is not None:
        message = f"{message}: {exc}"
    _write_line("ERROR", message)


# -----------------------
# Währungen & Beträge
# -----------------------
@lru_cache(maxsize=256)
def normalize_currency(raw: str, min_score: int = CURRENCY_MIN_SCORE) -> str:
    """
    Map a currency word from a whisper to its canonical name ("divine", "exalted", ...).

    Exact names and known short forms win; otherwise RapidFuzz WRatio against
    the known currency list. Unknown words are returned unchanged.
    """
    if not raw:
        return raw
    lowered = raw.strip().lower()
    if lowered in KNOWN_CURRENCIES:
        return lowered
    if lowered in _CURRENCY_ALIASES:
        return _CURRENCY_ALIASES[lowered]

    match = process.extractOne(lowered, KNOWN_CURRENCIES.keys(), scorer=fuzz.WRatio)
    if match and match[1] >= min_score:
        return match[0]
    return raw.strip()


def currency_label(currency: str) -> str:
    return KNOWN_CURRENCIES.get(currency, currency)


def format_amount(amount) -> str:
    """'5' for whole amounts, '2.50' otherwise."""
    value = Decimal(amount)
    if value == value.to_integral_value():
        return f"{value:.0f}"
    return f"{value:.2f}"
