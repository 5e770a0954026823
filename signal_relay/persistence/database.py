#===================================================================
# database.py
#
# - One Database object per process, constructed in RelayService
#   and injected into every repository (no module globals)
# - WAL + busy_timeout for concurrent HTTP / scheduler threads
# - Schema is created idempotently (CREATE TABLE IF NOT EXISTS)
#===================================================================

import sqlite3
import threading
from pathlib import Path
from typing import Any, Iterable, List, Optional

from signal_relay.logging.logger_config import get_component_logger

logger = get_component_logger('persistence')

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS channel_profiles (
        channel_id TEXT PRIMARY KEY,
        name TEXT,
        profile_json TEXT NOT NULL,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS account_profiles (
        account_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        profile_json TEXT NOT NULL,
        updated_at TEXT,
        PRIMARY KEY (account_id, platform)
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS signals (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        channel_id TEXT NOT NULL,
        message_id INTEGER,
        raw_text TEXT,
        parsed_data TEXT,
        status TEXT,
        relay_id TEXT,
        group_id TEXT,
        created_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        ticket TEXT,
        signal_id INTEGER,
        channel_id TEXT,
        account_id TEXT NOT NULL,
        platform TEXT NOT NULL,

        symbol TEXT,
        side TEXT,
        entry_price REAL,
        stop_loss REAL,
        take_profits TEXT,
        lot_size REAL,

        group_id TEXT,
        tp_level INTEGER,

        status TEXT NOT NULL,
        profit REAL DEFAULT 0,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS modifications (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        signal_ref TEXT NOT NULL,
        channel_id TEXT,
        message_id INTEGER,
        modification_type TEXT NOT NULL,
        price REAL,
        pips REAL,
        percentage REAL,
        tp_level INTEGER,
        original_action TEXT,
        status TEXT NOT NULL,
        raw_text TEXT,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS order_groups (
        group_id TEXT PRIMARY KEY,
        signal_id INTEGER,
        account_id TEXT,
        platform TEXT,
        symbol TEXT,
        side TEXT,
        total_lot REAL,
        state_json TEXT NOT NULL,
        created_at TEXT,
        updated_at TEXT
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS daily_risk_stats (
        account_id TEXT NOT NULL,
        platform TEXT NOT NULL,
        trade_date TEXT NOT NULL,
        trades_opened INTEGER DEFAULT 0,
        trades_closed INTEGER DEFAULT 0,
        profit_loss REAL DEFAULT 0,
        limit_hit INTEGER DEFAULT 0,
        limit_kind TEXT,
        limit_hit_at TEXT,
        PRIMARY KEY (account_id, platform, trade_date)
    )
    """,
    "CREATE INDEX IF NOT EXISTS idx_orders_account_status ON orders(account_id, platform, status)",
    "CREATE INDEX IF NOT EXISTS idx_orders_signal ON orders(signal_id)",
    "CREATE INDEX IF NOT EXISTS idx_signals_message ON signals(channel_id, message_id)",
)


class Database:
    """
    Thin locked wrapper over one sqlite3 connection.

    ":memory:" is accepted (tests); any other path has its parent created.
    """

    def __init__(self, path: str = ":memory:"):
        self.path = path
        self._lock = threading.RLock()

        if path != ":memory:":
            Path(path).parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(path, check_same_thread=False)
        self._conn.row_factory = sqlite3.Row

        if path != ":memory:":
            # 🔒 WAL for concurrent read/write from HTTP + scheduler threads
            self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA busy_timeout=5000")

        self._create_schema()
        logger.info("Database ready: %s", path)

    def _create_schema(self) -> None:
        with self._lock:
            for statement in SCHEMA:
                self._conn.execute(statement)
            self._conn.commit()

    # ------------------------------------------------------------------
    # ACCESS
    # ------------------------------------------------------------------

    def execute(self, sql: str, params: Iterable[Any] = ()) -> sqlite3.Cursor:
        """Run a write statement and commit. Raises sqlite3.Error to the caller."""
        with self._lock:
            try:
                cur = self._conn.execute(sql, tuple(params))
                self._conn.commit()
                return cur
            except sqlite3.Error:
                self._conn.rollback()
                raise

    def fetch_all(self, sql: str, params: Iterable[Any] = ()) -> List[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchall()

    def fetch_one(self, sql: str, params: Iterable[Any] = ()) -> Optional[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, tuple(params)).fetchone()

    def close(self) -> None:
        with self._lock:
            self._conn.close()
