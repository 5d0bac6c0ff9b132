import datetime
import sqlite3
import threading
from typing import Iterable, Optional

import pandas as pd

from config import DB_PATH, ensure_parent_dir
from utils import currency_label, log_debug, log_error

_TS_FORMAT = "%Y-%m-%d %H:%M:%S"

_SCHEMA = """
CREATE TABLE IF NOT EXISTS trades (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    timestamp DATETIME NOT NULL,
    trigger_type TEXT NOT NULL,
    direction TEXT NOT NULL DEFAULT 'buy',
    player_name TEXT NOT NULL,
    item_name TEXT NOT NULL,
    league TEXT NOT NULL DEFAULT '',
    currency_amount REAL NOT NULL,
    currency_type TEXT NOT NULL,
    stash_tab TEXT NOT NULL,
    position_left INTEGER NOT NULL,
    position_top INTEGER NOT NULL,
    message TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'open',
    closed_at DATETIME,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


def _ts(value) -> str:
    if hasattr(value, "strftime"):
        return value.strftime(_TS_FORMAT)
    return str(value)


class TradeHistory:
    """Durable trade log fed by EventStore notifications.

    Rows are never deleted by the menu: settling or deleting a trade closes
    its open row (status = action). ``cleanup`` drops old rows.
    """

    def __init__(self, path: str = DB_PATH):
        self.path = path
        self._local = threading.local()
        self._conn_lock = threading.Lock()
        self._connections = []
        self._write_lock = threading.Lock()
        if path != ":memory:":
            ensure_parent_dir(path)
        self._init_schema()

    # -----------------------
    # Verbindungen (thread-lokal)
    # -----------------------
    def get_connection(self) -> sqlite3.Connection:
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = sqlite3.connect(self.path, check_same_thread=False)
            self._local.conn = conn
            with self._conn_lock:
                self._connections.append(conn)
        return conn

    def close(self) -> None:
        """Close the connections of all threads; later calls open fresh ones."""
        with self._conn_lock:
            connections, self._connections = self._connections, []
            self._local = threading.local()
        for conn in connections:
            try:
                conn.close()
            except sqlite3.Error as exc:
                log_error("[DB] Closing connection failed", exc)

    def _init_schema(self) -> None:
        conn = self.get_connection()
        c = conn.cursor()
        if self.path != ":memory:":
            c.execute("PRAGMA journal_mode=WAL")
        c.execute(_SCHEMA)
        # Migration: ältere Datenbanken ohne Status-Spalten
        c.execute("PRAGMA table_info(trades)")
        cols = [r[1] for r in c.fetchall()]
        if "direction" not in cols:
            c.execute("ALTER TABLE trades ADD COLUMN direction TEXT NOT NULL DEFAULT 'buy'")
        if "status" not in cols:
            c.execute("ALTER TABLE trades ADD COLUMN status TEXT NOT NULL DEFAULT 'open'")
        if "closed_at" not in cols:
            c.execute("ALTER TABLE trades ADD COLUMN closed_at DATETIME")
        c.execute("CREATE INDEX IF NOT EXISTS idx_trades_key ON trades(player_name, item_name, position_left, position_top)")
        c.execute("CREATE INDEX IF NOT EXISTS idx_trades_timestamp ON trades(timestamp DESC)")
        conn.commit()

    # -----------------------
    # Schreiben
    # -----------------------
    def add_trade(self, event) -> int:
        with self._write_lock:
            conn = self.get_connection()
            c = conn.cursor()
            c.execute(
                """
                INSERT INTO trades (
                    timestamp, trigger_type, direction, player_name, item_name, league,
                    currency_amount, currency_type, stash_tab,
                    position_left, position_top, message
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    _ts(event.timestamp), event.rule_name, event.direction.value,
                    event.player_name, event.item_name, event.league,
                    float(event.amount), event.currency, event.stash_tab,
                    event.position[0], event.position[1], event.raw_line,
                ),
            )
            conn.commit()
            return c.lastrowid

    def update_open_trade(self, event) -> bool:
        """Refresh the open row for the event's key; False if there is none."""
        with self._write_lock:
            conn = self.get_connection()
            c = conn.cursor()
            c.execute(
                """
                UPDATE trades
                SET timestamp = ?, trigger_type = ?, direction = ?, league = ?,
                    currency_amount = ?, currency_type = ?, stash_tab = ?, message = ?
                WHERE id = (
                    SELECT id FROM trades
                    WHERE player_name = ? AND item_name = ? AND position_left = ? AND position_top = ?
                      AND status = 'open'
                    ORDER BY id DESC LIMIT 1
                )
                """,
                (
                    _ts(event.timestamp), event.rule_name, event.direction.value, event.league,
                    float(event.amount), event.currency, event.stash_tab, event.raw_line,
                    event.player_name, event.item_name, event.position[0], event.position[1],
                ),
            )
            conn.commit()
            return c.rowcount > 0

    def close_trades(self, events: Iterable, status: str) -> int:
        closed = 0
        now = datetime.datetime.now().strftime(_TS_FORMAT)
        with self._write_lock:
            conn = self.get_connection()
            c = conn.cursor()
            for event in events:
                c.execute(
                    """
                    UPDATE trades SET status = ?, closed_at = ?
                    WHERE player_name = ? AND item_name = ? AND position_left = ? AND position_top = ?
                      AND status = 'open'
                    """,
                    (status, now, event.player_name, event.item_name, event.position[0], event.position[1]),
                )
                closed += c.rowcount
            conn.commit()
        return closed

    def cleanup(self, older_than: datetime.timedelta) -> int:
        cutoff = (datetime.datetime.now() - older_than).strftime(_TS_FORMAT)
        with self._write_lock:
            conn = self.get_connection()
            c = conn.cursor()
            c.execute("DELETE FROM trades WHERE timestamp < ?", (cutoff,))
            conn.commit()
            log_debug(f"[DB] Cleanup removed {c.rowcount} trade(s) older than {cutoff}")
            return c.rowcount

    # EventStore sink
    def on_upsert(self, event, replaced: bool) -> None:
        if replaced and self.update_open_trade(event):
            return
        self.add_trade(event)

    def on_remove(self, events, action) -> None:
        status = getattr(action, "value", str(action))
        self.close_trades(events, status)

    # -----------------------
    # Lesen
    # -----------------------
    def read_trades(self, start=None, end=None, item: Optional[str] = None,
                    direction: Optional[str] = None, status: Optional[str] = None) -> pd.DataFrame:
        query = "SELECT * FROM trades WHERE 1 = 1"
        params = []
        if start is not None:
            query += " AND timestamp >= ?"
            params.append(_ts(start))
        if end is not None:
            query += " AND timestamp <= ?"
            params.append(_ts(end))
        if item:
            query += " AND item_name LIKE ?"
            params.append(f"%{item}%")
        if direction in ("buy", "sell"):
            query += " AND direction = ?"
            params.append(direction)
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY timestamp DESC, id DESC"
        df = pd.read_sql_query(query, self.get_connection(), params=params)
        if not df.empty:
            df["timestamp"] = pd.to_datetime(df["timestamp"])
        return df

    def get_trades(self, **filters) -> list:
        return self.read_trades(**filters).to_dict("records")


def export_trades(history: TradeHistory, path: str, fmt: str = "csv") -> Optional[str]:
    """Write all trades to CSV or JSON; None if there is nothing to export."""
    try:
        df = history.read_trades()
    except sqlite3.Error as exc:
        log_error("[DB] Export query failed", exc)
        raise
    if df.empty:
        return None
    if fmt == "csv":
        df.to_csv(path, index=False)
    elif fmt == "json":
        df.to_json(path, orient="records", force_ascii=False, date_format="iso")
    else:
        raise ValueError(f"unknown export format {fmt!r}")
    return path


def summarize_trades(df: pd.DataFrame) -> list:
    """Summary lines for the history window: counts, settled volume per currency, top items."""
    if df.empty:
        return ["Keine Trades."]
    type_counts = df["direction"].value_counts().to_dict()
    status_counts = df["status"].value_counts().to_dict()
    lines = [
        f"Trades gesamt: {len(df)} (Verkauf: {type_counts.get('buy', 0)} | Einkauf: {type_counts.get('sell', 0)})",
        "Status: " + ", ".join(f"{k}: {v}" for k, v in sorted(status_counts.items())),
    ]
    settled = df[df["status"] == "settle"]
    if settled.empty:
        lines.append("Abgeschlossenes Volumen: -")
    else:
        volume = settled.groupby(["direction", "currency_type"])["currency_amount"].sum()
        parts = []
        for (direction, currency), total in volume.items():
            label = "verkauft" if direction == "buy" else "gekauft"
            parts.append(f"{label} {total:g} {currency_label(currency)}")
        lines.append("Abgeschlossenes Volumen: " + ", ".join(parts))
    top_items = df["item_name"].value_counts().head(3)
    lines.append("Top Items: " + ", ".join(f"{name} ({count}x)" for name, count in top_items.items()))
    return lines
