import datetime
import json
import sqlite3
import sys
import threading
from decimal import Decimal
from pathlib import Path

import pandas as pd
import pytest

ROOT = Path(__file__).resolve().parents[2]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from database import TradeHistory, export_trades, summarize_trades  # noqa: E402
from trade_store import ActionCode, Direction, TradeEvent  # noqa: E402


def _event(player="Bob", item="Chaos Orb", amount="5", position=(3, 2), direction=Direction.BUY, when=None):
    return TradeEvent(
        timestamp=when or datetime.datetime.now().replace(microsecond=0),
        rule_name="incoming_trade" if direction is Direction.BUY else "outgoing_trade",
        player_name=player,
        item_name=item,
        amount=Decimal(amount),
        currency="exalted",
        stash_tab="Tab1",
        position=position,
        raw_line=f"@From {player}: {item}",
        direction=direction,
        league="Standard",
    )


@pytest.fixture
def history(tmp_path):
    h = TradeHistory(str(tmp_path / "history.db"))
    yield h
    h.close()


def test_upsert_insert_then_replace(history):
    history.on_upsert(_event(amount="5"), False)
    history.on_upsert(_event(amount="8"), True)

    rows = history.get_trades()
    assert len(rows) == 1
    assert rows[0]["currency_amount"] == 8.0
    assert rows[0]["status"] == "open"
    assert rows[0]["direction"] == "buy"


def test_replace_without_open_row_inserts(history):
    history.on_upsert(_event(), True)
    assert len(history.get_trades()) == 1


def test_remove_closes_rows_with_action(history):
    history.on_upsert(_event(player="Bob", position=(1, 1)), False)
    history.on_upsert(_event(player="Ann", position=(2, 2)), False)

    history.on_remove([_event(player="Ann", position=(2, 2))], ActionCode.DELETE)

    statuses = {r["player_name"]: r["status"] for r in history.get_trades()}
    assert statuses == {"Bob": "open", "Ann": "delete"}
    assert len(history.get_trades(status="open")) == 1


def test_same_key_after_settle_starts_new_row(history):
    ev = _event()
    history.on_upsert(ev, False)
    history.on_remove([ev], ActionCode.SETTLE)
    history.on_upsert(_event(amount="6"), True)

    df = history.read_trades()
    assert sorted(df["status"].tolist()) == ["open", "settle"]


def test_read_trades_filters(history):
    old = datetime.datetime(2025, 1, 1, 12, 0, 0)
    history.add_trade(_event(player="A", item="Divine Orb", position=(0, 0), when=old))
    history.add_trade(_event(player="B", item="Chaos Orb", position=(1, 0), direction=Direction.SELL))

    assert len(history.read_trades(item="divine")) == 1
    assert history.read_trades(direction="sell")["player_name"].tolist() == ["B"]
    assert len(history.read_trades(start=datetime.datetime(2025, 6, 1))) == 1
    df = history.read_trades(end="2025-01-02 00:00:00")
    assert df["player_name"].tolist() == ["A"]
    assert pd.api.types.is_datetime64_any_dtype(df["timestamp"])


def test_cleanup_removes_old_rows(history):
    history.add_trade(_event(player="Old", when=datetime.datetime.now() - datetime.timedelta(days=40)))
    history.add_trade(_event(player="New", position=(9, 9)))

    assert history.cleanup(datetime.timedelta(days=30)) == 1
    assert [r["player_name"] for r in history.get_trades()] == ["New"]


def test_schema_migration_adds_status_columns(tmp_path):
    import sqlite3

    path = tmp_path / "old.db"
    conn = sqlite3.connect(str(path))
    conn.execute(
        """
        CREATE TABLE trades (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            timestamp DATETIME NOT NULL,
            trigger_type TEXT NOT NULL,
            player_name TEXT NOT NULL,
            item_name TEXT NOT NULL,
            league TEXT NOT NULL DEFAULT '',
            currency_amount REAL NOT NULL,
            currency_type TEXT NOT NULL,
            stash_tab TEXT NOT NULL,
            position_left INTEGER NOT NULL,
            position_top INTEGER NOT NULL,
            message TEXT NOT NULL
        )
        """
    )
    conn.commit()
    conn.close()

    h = TradeHistory(str(path))
    try:
        h.on_upsert(_event(), False)
        row = h.get_trades()[0]
        assert row["status"] == "open"
        assert row["direction"] == "buy"
    finally:
        h.close()


def test_export_csv_and_json(history, tmp_path):
    assert export_trades(history, str(tmp_path / "empty.csv")) is None

    history.on_upsert(_event(), False)
    csv_path = export_trades(history, str(tmp_path / "out.csv"), "csv")
    json_path = export_trades(history, str(tmp_path / "out.json"), "json")

    assert "player_name" in Path(csv_path).read_text(encoding="utf-8")
    records = json.loads(Path(json_path).read_text(encoding="utf-8"))
    assert records[0]["item_name"] == "Chaos Orb"

    with pytest.raises(ValueError):
        export_trades(history, str(tmp_path / "out.xml"), "xml")


def test_summarize_trades(history):
    history.on_upsert(_event(player="A", position=(0, 0), amount="5"), False)
    history.on_upsert(_event(player="B", position=(1, 0), amount="3"), False)
    history.on_upsert(_event(player="C", item="Mirror", position=(2, 0), direction=Direction.SELL), False)
    history.on_remove([_event(player="A", position=(0, 0)), _event(player="B", position=(1, 0))], "settle")

    lines = summarize_trades(history.read_trades())

    assert lines[0] == "Trades gesamt: 3 (Verkauf: 2 | Einkauf: 1)"
    assert lines[1] == "Status: open: 1, settle: 2"
    assert lines[2] == "Abgeschlossenes Volumen: verkauft 8 Exs"
    assert lines[3].startswith("Top Items: Chaos Orb (2x)")


def test_summarize_empty_frame():
    assert summarize_trades(pd.DataFrame()) == ["Keine Trades."]


def test_close_releases_connections_of_all_threads(history):
    history.on_upsert(_event(player="Main"), False)
    worker = threading.Thread(target=history.on_upsert, args=(_event(player="Tail"), False))
    worker.start()
    worker.join()

    connections = list(history._connections)
    assert len(connections) == 2

    history.close()

    for conn in connections:
        with pytest.raises(sqlite3.ProgrammingError):
            conn.execute("SELECT 1")
    assert {row["player_name"] for row in history.get_trades()} == {"Main", "Tail"}
