# ===================================================================
# SIGNAL / ORDER / MODIFICATION REPOSITORIES
#
# Guarantees:
# - No business logic
# - Storage errors are caught here, logged, and degrade to
#   None / [] / False (the pipeline never crashes on a sqlite hiccup)
# - Active = status IN ('pending', 'open') unless include_closed
# ===================================================================

import json
import sqlite3
from datetime import datetime
from typing import List, Optional

from signal_relay.domain.intents import ModificationIntent
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.persistence.database import Database
from signal_relay.persistence.models import OrderRecord, SignalRecord

logger = get_component_logger('ledger')

ACTIVE_STATUSES = ("pending", "open")


def _now() -> str:
    return datetime.utcnow().isoformat()


def _status_clause(include_closed: bool) -> str:
    return "" if include_closed else " AND status IN ('pending', 'open')"


class SignalRepository:
    """Raw signals as received, with their parsed payload."""

    def __init__(self, db: Database):
        self.db = db

    def record(self, record: SignalRecord) -> Optional[int]:
        try:
            cur = self.db.execute(
                """
                INSERT INTO signals (channel_id, message_id, raw_text, parsed_data, status, relay_id, group_id, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    record.channel_id,
                    record.message_id,
                    record.raw_text,
                    json.dumps(record.parsed_data),
                    record.status,
                    record.relay_id,
                    record.group_id,
                    record.created_at or _now(),
                ),
            )
            return cur.lastrowid
        except sqlite3.Error as e:
            logger.error("Failed to record signal | channel=%s msg=%s | %s", record.channel_id, record.message_id, e)
            return None

    def get(self, signal_id: int) -> Optional[SignalRecord]:
        try:
            row = self.db.fetch_one("SELECT * FROM signals WHERE id = ?", (signal_id,))
        except sqlite3.Error as e:
            logger.error("Signal lookup failed | id=%s | %s", signal_id, e)
            return None
        return self._to_record(row) if row else None

    def find_by_message(self, channel_id: str, message_id: int) -> Optional[SignalRecord]:
        """Resolve a reply target: the latest signal recorded for (channel, message)."""
        try:
            row = self.db.fetch_one(
                """
                SELECT * FROM signals
                WHERE channel_id = ? AND message_id = ?
                ORDER BY id DESC LIMIT 1
                """,
                (str(channel_id), message_id),
            )
        except sqlite3.Error as e:
            logger.error("Reply lookup failed | channel=%s msg=%s | %s", channel_id, message_id, e)
            return None
        return self._to_record(row) if row else None

    def latest_in_channel(self, channel_id: str) -> Optional[SignalRecord]:
        """Most recent signal that reached the queue for a channel."""
        try:
            row = self.db.fetch_one(
                "SELECT * FROM signals WHERE channel_id = ? AND status = 'queued' ORDER BY id DESC LIMIT 1",
                (str(channel_id),),
            )
        except sqlite3.Error as e:
            logger.error("Latest signal lookup failed | channel=%s | %s", channel_id, e)
            return None
        return self._to_record(row) if row else None

    def update_status(self, signal_id: int, status: str) -> bool:
        try:
            self.db.execute("UPDATE signals SET status = ? WHERE id = ?", (status, signal_id))
            return True
        except sqlite3.Error as e:
            logger.error("Signal status update failed | id=%s | %s", signal_id, e)
            return False

    def set_relay_id(self, signal_id: int, relay_id: str, group_id: Optional[str] = None) -> bool:
        try:
            self.db.execute(
                "UPDATE signals SET relay_id = ?, group_id = COALESCE(?, group_id) WHERE id = ?",
                (relay_id, group_id, signal_id),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Relay id update failed | id=%s | %s", signal_id, e)
            return False

    @staticmethod
    def _to_record(row: sqlite3.Row) -> SignalRecord:
        data = dict(row)
        data["parsed_data"] = json.loads(data["parsed_data"] or "{}")
        return SignalRecord(**data)


class OrderLedger:
    """
    SINGLE SOURCE OF TRUTH for tracked orders.

    Rows are created from agent acknowledgments (ticket + fill price) or relay
    reconciliation; status moves pending -> open -> closed from agent reports.
    """

    def __init__(self, db: Database):
        self.db = db

    # -----------------------------
    # CREATE
    # -----------------------------
    def record(self, order: OrderRecord) -> Optional[int]:
        now = _now()
        try:
            cur = self.db.execute(
                """
                INSERT INTO orders (
                    ticket, signal_id, channel_id, account_id, platform,
                    symbol, side, entry_price, stop_loss, take_profits, lot_size,
                    group_id, tp_level, status, profit, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    order.ticket,
                    order.signal_id,
                    order.channel_id,
                    order.account_id,
                    order.platform,
                    order.symbol,
                    order.side,
                    order.entry_price,
                    order.stop_loss,
                    json.dumps(order.take_profits),
                    order.lot_size,
                    order.group_id,
                    order.tp_level,
                    order.status,
                    order.profit,
                    order.created_at or now,
                    order.updated_at or now,
                ),
            )
            logger.info(
                "📒 Order recorded | ticket=%s account=%s symbol=%s status=%s",
                order.ticket, order.account_id, order.symbol, order.status,
            )
            return cur.lastrowid
        except sqlite3.Error as e:
            logger.error("Failed to record order | ticket=%s | %s", order.ticket, e)
            return None

    # -----------------------------
    # UPDATE
    # -----------------------------
    def mark_status(
        self,
        ticket: str,
        account_id: str,
        status: str,
        profit: Optional[float] = None,
    ) -> bool:
        try:
            if profit is None:
                cur = self.db.execute(
                    "UPDATE orders SET status = ?, updated_at = ? WHERE ticket = ? AND account_id = ?",
                    (status, _now(), str(ticket), account_id),
                )
            else:
                cur = self.db.execute(
                    "UPDATE orders SET status = ?, profit = ?, updated_at = ? WHERE ticket = ? AND account_id = ?",
                    (status, profit, _now(), str(ticket), account_id),
                )
            return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error("Order status update failed | ticket=%s | %s", ticket, e)
            return False

    def update_stop_loss(self, ticket: str, account_id: str, new_sl: float) -> bool:
        try:
            cur = self.db.execute(
                "UPDATE orders SET stop_loss = ?, updated_at = ? WHERE ticket = ? AND account_id = ?",
                (new_sl, _now(), str(ticket), account_id),
            )
            return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error("Stop update failed | ticket=%s | %s", ticket, e)
            return False

    def remove_pending(self, ticket: str, account_id: str) -> bool:
        """The only delete path: a cancelled pending order."""
        try:
            cur = self.db.execute(
                "DELETE FROM orders WHERE ticket = ? AND account_id = ? AND status = 'pending'",
                (str(ticket), account_id),
            )
            return cur.rowcount > 0
        except sqlite3.Error as e:
            logger.error("Pending removal failed | ticket=%s | %s", ticket, e)
            return False

    # -----------------------------
    # READ
    # -----------------------------
    def by_signal(self, signal_id: int, include_closed: bool = False) -> List[OrderRecord]:
        return self._select("signal_id = ?", (signal_id,), include_closed)

    def by_symbol(self, symbol: str, account_id: str, platform: str, include_closed: bool = False) -> List[OrderRecord]:
        return self._select(
            "symbol = ? AND account_id = ? AND platform = ?",
            (symbol, account_id, platform),
            include_closed,
        )

    def by_channel(self, channel_id: str, account_id: str, platform: Optional[str] = None,
                   include_closed: bool = False) -> List[OrderRecord]:
        if platform is None:
            return self._select("channel_id = ? AND account_id = ?", (str(channel_id), account_id), include_closed)
        return self._select(
            "channel_id = ? AND account_id = ? AND platform = ?",
            (str(channel_id), account_id, platform),
            include_closed,
        )

    def by_group(self, group_id: str, include_closed: bool = False) -> List[OrderRecord]:
        return self._select("group_id = ?", (group_id,), include_closed)

    def by_ticket(self, ticket: str, account_id: Optional[str] = None) -> Optional[OrderRecord]:
        if account_id is None:
            rows = self._select("ticket = ?", (str(ticket),), include_closed=True)
        else:
            rows = self._select("ticket = ? AND account_id = ?", (str(ticket), account_id), include_closed=True)
        return rows[-1] if rows else None

    def exists_ticket(self, ticket: str, account_id: str) -> bool:
        return self.by_ticket(ticket, account_id) is not None

    def all_active(self, account_id: Optional[str] = None, platform: Optional[str] = None) -> List[OrderRecord]:
        clauses, params = ["1 = 1"], []
        if account_id is not None:
            clauses.append("account_id = ?")
            params.append(account_id)
        if platform is not None:
            clauses.append("platform = ?")
            params.append(platform)
        return self._select(" AND ".join(clauses), params, include_closed=False)

    def _select(self, where: str, params, include_closed: bool) -> List[OrderRecord]:
        try:
            rows = self.db.fetch_all(
                f"SELECT * FROM orders WHERE {where}{_status_clause(include_closed)} ORDER BY id",
                params,
            )
        except sqlite3.Error as e:
            logger.error("Order query failed | where=%s | %s", where, e)
            return []

        records = []
        for r in rows:
            d = dict(r)
            d["take_profits"] = json.loads(d["take_profits"] or "[]")
            records.append(OrderRecord(**d))
        return records


class ModificationRepository:

    def __init__(self, db: Database):
        self.db = db

    def record(self, mod: ModificationIntent) -> Optional[int]:
        now = _now()
        try:
            cur = self.db.execute(
                """
                INSERT INTO modifications (
                    signal_ref, channel_id, message_id, modification_type,
                    price, pips, percentage, tp_level, original_action,
                    status, raw_text, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    str(mod.signal_ref),
                    mod.channel_id,
                    mod.message_id,
                    mod.modification_type,
                    mod.price,
                    mod.pips,
                    mod.percentage,
                    mod.tp_level,
                    mod.original_action,
                    mod.status,
                    mod.raw_text,
                    now,
                    now,
                ),
            )
            mod.id = cur.lastrowid
            return mod.id
        except sqlite3.Error as e:
            logger.error("Failed to record modification | type=%s | %s", mod.modification_type, e)
            return None

    def update_status(self, modification_id: int, status: str) -> bool:
        try:
            self.db.execute(
                "UPDATE modifications SET status = ?, updated_at = ? WHERE id = ?",
                (status, _now(), modification_id),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Modification status update failed | id=%s | %s", modification_id, e)
            return False

    def get(self, modification_id: int) -> Optional[ModificationIntent]:
        try:
            row = self.db.fetch_one("SELECT * FROM modifications WHERE id = ?", (modification_id,))
        except sqlite3.Error as e:
            logger.error("Modification lookup failed | id=%s | %s", modification_id, e)
            return None
        return self._to_intent(row) if row else None

    def pending(self) -> List[ModificationIntent]:
        try:
            rows = self.db.fetch_all("SELECT * FROM modifications WHERE status = 'pending' ORDER BY id")
        except sqlite3.Error as e:
            logger.error("Pending modification query failed | %s", e)
            return []
        return [self._to_intent(r) for r in rows]

    @staticmethod
    def _to_intent(row: sqlite3.Row) -> ModificationIntent:
        ref = row["signal_ref"]
        return ModificationIntent(
            modification_type=row["modification_type"],
            signal_ref=int(ref) if str(ref).isdigit() else ref,
            channel_id=row["channel_id"] or "",
            message_id=row["message_id"],
            price=row["price"],
            pips=row["pips"],
            percentage=row["percentage"],
            tp_level=row["tp_level"],
            original_action=row["original_action"],
            status=row["status"],
            raw_text=row["raw_text"] or "",
            id=row["id"],
        )
