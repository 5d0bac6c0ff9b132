import sys
from decimal import Decimal
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

import config  # noqa: E402
import utils  # noqa: E402
from utils import currency_label, format_amount, normalize_currency  # noqa: E402


@pytest.mark.parametrize("raw,expected", [
    ("exalted", "exalted"),
    ("Divine", "divine"),
    ("div", "divine"),
    ("ex", "exalted"),
    ("c", "chaos"),
    ("divines", "divine"),
    ("widgets", "widgets"),
    ("", ""),
])
def test_normalize_currency(raw, expected):
    assert normalize_currency(raw) == expected


def test_currency_label():
    assert currency_label("divine") == "Divs"
    assert currency_label("widgets") == "widgets"


@pytest.mark.parametrize("amount,expected", [
    (Decimal("5"), "5"),
    (Decimal("5.0"), "5"),
    (Decimal("1.5"), "1.50"),
    ("0.333", "0.33"),
])
def test_format_amount(amount, expected):
    assert format_amount(amount) == expected


def test_debug_lines_only_with_debug_mode(tmp_path, monkeypatch):
    log_file = tmp_path / "tracker.log"
    monkeypatch.setattr(utils, "LOG_PATH", str(log_file))
    monkeypatch.setattr(config, "_debug_mode", False)

    utils.log_debug("hidden")
    utils.log_warn("visible")
    config.set_debug_mode(True)
    utils.log_debug("now shown")

    text = log_file.read_text(encoding="utf-8")
    assert "hidden" not in text
    assert "[WARN] visible" in text
    assert "[DEBUG] now shown" in text


def test_log_rotation(tmp_path, monkeypatch):
    log_file = tmp_path / "tracker.log"
    log_file.write_text("x" * 64, encoding="utf-8")
    monkeypatch.setattr(utils, "LOG_PATH", str(log_file))
    monkeypatch.setattr(utils, "LOG_ROTATE_BYTES", 32)

    utils.log_info("fresh")

    assert (tmp_path / "tracker.log.old").exists()
    assert log_file.read_text(encoding="utf-8").count("\n") == 1
