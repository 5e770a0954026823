# ===================================================================
# ORDER GROUP / DAILY RISK / PROFILE STORAGE
#
# Same contract as repository.py: storage errors are logged and
# degrade to None / [] / False.
# ===================================================================

import json
import sqlite3
from dataclasses import asdict
from datetime import datetime, timedelta
from typing import List, Optional

from signal_relay.core import account_profile, channel_profile
from signal_relay.core.account_profile import AccountProfile
from signal_relay.core.channel_profile import ChannelProfile
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.persistence.database import Database
from signal_relay.persistence.models import DailyRiskStats, GroupMember, OrderGroup

logger = get_component_logger('persistence')


def _now() -> str:
    return datetime.utcnow().isoformat()


class OrderGroupRepository:

    def __init__(self, db: Database):
        self.db = db

    def save(self, group: OrderGroup) -> bool:
        state = asdict(group)
        try:
            self.db.execute(
                """
                INSERT INTO order_groups (
                    group_id, signal_id, account_id, platform, symbol, side,
                    total_lot, state_json, created_at, updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(group_id) DO UPDATE SET
                    state_json = excluded.state_json,
                    updated_at = excluded.updated_at
                """,
                (
                    group.group_id,
                    group.signal_id,
                    group.account_id,
                    group.platform,
                    group.symbol,
                    group.side,
                    group.total_lot,
                    json.dumps(state),
                    group.created_at or _now(),
                    _now(),
                ),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Failed to save order group | id=%s | %s", group.group_id, e)
            return False

    def load_since(self, cutoff: datetime) -> List[OrderGroup]:
        try:
            rows = self.db.fetch_all(
                "SELECT state_json FROM order_groups WHERE created_at >= ? ORDER BY created_at",
                (cutoff.replace(tzinfo=None).isoformat(),),
            )
        except sqlite3.Error as e:
            logger.error("Failed to load order groups | %s", e)
            return []

        groups = []
        for row in rows:
            state = json.loads(row["state_json"])
            members = [GroupMember(**m) for m in state.pop("members", [])]
            groups.append(OrderGroup(members=members, **state))
        return groups

    def purge_older_than(self, days: int, now: Optional[datetime] = None) -> int:
        cutoff = (now or datetime.utcnow()) - timedelta(days=days)
        try:
            cur = self.db.execute(
                "DELETE FROM order_groups WHERE created_at < ?", (cutoff.replace(tzinfo=None).isoformat(),)
            )
            return cur.rowcount
        except sqlite3.Error as e:
            logger.error("Order group purge failed | %s", e)
            return 0


class RiskStatsRepository:

    def __init__(self, db: Database):
        self.db = db

    def latest(self, account_id: str, platform: str) -> Optional[DailyRiskStats]:
        """Most recent row; the governor discards it once its trade_date is past."""
        try:
            row = self.db.fetch_one(
                """
                SELECT * FROM daily_risk_stats
                WHERE account_id = ? AND platform = ?
                ORDER BY trade_date DESC LIMIT 1
                """,
                (account_id, platform),
            )
        except sqlite3.Error as e:
            logger.error("Risk stats lookup failed | account=%s | %s", account_id, e)
            return None
        if row is None:
            return None
        data = dict(row)
        data["limit_hit"] = bool(data["limit_hit"])
        return DailyRiskStats(**data)

    def save(self, stats: DailyRiskStats) -> bool:
        try:
            self.db.execute(
                """
                INSERT OR REPLACE INTO daily_risk_stats (
                    account_id, platform, trade_date, trades_opened, trades_closed,
                    profit_loss, limit_hit, limit_kind, limit_hit_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    stats.account_id,
                    stats.platform,
                    stats.trade_date,
                    stats.trades_opened,
                    stats.trades_closed,
                    stats.profit_loss,
                    1 if stats.limit_hit else 0,
                    stats.limit_kind,
                    stats.limit_hit_at,
                ),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Risk stats save failed | account=%s | %s", stats.account_id, e)
            return False

    def delete(self, account_id: str, platform: str) -> bool:
        try:
            self.db.execute(
                "DELETE FROM daily_risk_stats WHERE account_id = ? AND platform = ?",
                (account_id, platform),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Risk stats delete failed | account=%s | %s", account_id, e)
            return False


class ProfileRepository:
    """Channel and account profiles, always returned through apply_defaults()."""

    def __init__(self, db: Database):
        self.db = db

    # ---- channels ----
    def get_channel(self, channel_id: str) -> Optional[ChannelProfile]:
        try:
            row = self.db.fetch_one(
                "SELECT profile_json FROM channel_profiles WHERE channel_id = ?", (str(channel_id),)
            )
        except sqlite3.Error as e:
            logger.error("Channel profile lookup failed | channel=%s | %s", channel_id, e)
            return None
        if row is None:
            return None
        return channel_profile.apply_defaults(json.loads(row["profile_json"]), channel_id=str(channel_id))

    def save_channel(self, profile: ChannelProfile) -> bool:
        try:
            self.db.execute(
                """
                INSERT OR REPLACE INTO channel_profiles (channel_id, name, profile_json, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (profile.channel_id, profile.name, json.dumps(profile.to_dict()), _now()),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Channel profile save failed | channel=%s | %s", profile.channel_id, e)
            return False

    # ---- accounts ----
    def list_accounts(self) -> List[AccountProfile]:
        try:
            rows = self.db.fetch_all("SELECT * FROM account_profiles ORDER BY account_id, platform")
        except sqlite3.Error as e:
            logger.error("Account profile query failed | %s", e)
            return []
        return [
            account_profile.apply_defaults(json.loads(r["profile_json"]), r["account_id"], r["platform"])
            for r in rows
        ]

    def get_account(self, account_id: str, platform: str) -> Optional[AccountProfile]:
        for profile in self.list_accounts():
            if profile.key == (account_id, platform):
                return profile
        return None

    def save_account(self, profile: AccountProfile) -> bool:
        try:
            self.db.execute(
                """
                INSERT OR REPLACE INTO account_profiles (account_id, platform, profile_json, updated_at)
                VALUES (?, ?, ?, ?)
                """,
                (profile.account_id, profile.platform, json.dumps(profile.to_dict()), _now()),
            )
            return True
        except sqlite3.Error as e:
            logger.error("Account profile save failed | account=%s | %s", profile.account_id, e)
            return False
