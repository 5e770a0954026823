#!/usr/bin/env python3
"""
Risk Governor
=============

Per (account, platform) daily limit state machine: normal <-> limit-hit.

ROLE:
- Decide WHETHER a new order may open (can_open)
- Track the day's trades and realized P&L from agent reports
- Latch each breached cap once and emit its policy action
  (close-all Command, stop-new-trades, notification)
- Discard the day's stats at the account's reset time, or on first use
  after the UTC date changes

Every read-modify-write of an account's stats happens under that account's
lock. Events are published after the lock is released.
"""

import threading
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from signal_relay.core.account_profile import AccountProfile, RiskLimits
from signal_relay.core.events import (
    CommandIssued,
    EventBus,
    LimitHit,
    OrderClosed,
    OrderOpened,
    StatsReset,
)
from signal_relay.core.scheduler import Clock
from signal_relay.execution.command_router import build_commands
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.persistence.models import DailyRiskStats
from signal_relay.persistence.repository import OrderLedger
from signal_relay.persistence.state_repository import RiskStatsRepository

logger = get_component_logger('risk_governor')

AccountKey = Tuple[str, str]
BalanceProvider = Callable[[str, str], float]
AccountsProvider = Callable[[], Iterable[AccountProfile]]

LIMIT_CHECK_ORDER = ("profit", "loss", "trades")


@dataclass(frozen=True)
class RiskDecision:
    allowed: bool
    reason: str = "OK"


class RiskGovernor:

    # --------------------------------------------------
    # INIT
    # --------------------------------------------------

    def __init__(
        self,
        stats_repository: RiskStatsRepository,
        ledger: OrderLedger,
        bus: EventBus,
        clock: Clock,
        accounts: AccountsProvider,
        balance_provider: BalanceProvider,
    ):
        self.stats_repository = stats_repository
        self.ledger = ledger
        self.bus = bus
        self.clock = clock
        self.accounts = accounts
        self.balance_provider = balance_provider

        self._registry_lock = threading.Lock()
        self._locks: Dict[AccountKey, threading.RLock] = {}
        self._stats: Dict[AccountKey, DailyRiskStats] = {}

    # --------------------------------------------------
    # ENTRY GATING
    # --------------------------------------------------

    def can_open(self, account: str, platform: str) -> RiskDecision:
        profile = self._profile(account, platform)
        if profile is None or not profile.risk.enabled:
            return RiskDecision(True)

        risk = profile.risk
        with self._lock_for((account, platform)):
            stats = self._current(account, platform)

            if stats.limit_hit and risk.pause_until_reset and not risk.allow_close_only:
                return self._deny(account, f"Daily {self._first_kind(stats)} limit reached, paused until {risk.reset_time} UTC")

            if risk.enable_max_trades and stats.trades_opened >= risk.max_daily_trades:
                return self._deny(account, f"Max daily trades reached ({stats.trades_opened}/{risk.max_daily_trades})")

            loss_limit = self._loss_limit(account, platform, risk)
            if stats.profit_loss < 0 and loss_limit > 0 and abs(stats.profit_loss) >= loss_limit:
                return self._deny(account, f"Daily loss limit reached ({stats.profit_loss:.2f} / -{loss_limit:.2f})")

            profit_target = self._profit_target(account, platform, risk)
            if risk.stop_new_trades_on_profit and profit_target > 0 and stats.profit_loss >= profit_target:
                return self._deny(account, f"Daily profit target reached ({stats.profit_loss:.2f} / {profit_target:.2f})")

        logger.debug("RISK: Entry ALLOWED | account=%s pnl=%.2f", account, stats.profit_loss)
        return RiskDecision(True)

    # --------------------------------------------------
    # TRADE EVENTS
    # --------------------------------------------------

    def on_trade_opened(self, event: OrderOpened) -> None:
        self._update(event.account, event.platform, opened=1)

    def on_trade_closed(self, event: OrderClosed) -> None:
        self._update(event.account, event.platform, closed=1, profit=event.profit)

    def _update(self, account: str, platform: str, opened: int = 0, closed: int = 0, profit: float = 0.0) -> None:
        profile = self._profile(account, platform)
        outgoing: List[object] = []

        with self._lock_for((account, platform)):
            stats = self._current(account, platform)
            stats.trades_opened += opened
            stats.trades_closed += closed
            stats.profit_loss = round(stats.profit_loss + profit, 2)

            if profile is not None and profile.risk.enabled:
                outgoing = self._check_limits(profile, stats)

            self.stats_repository.save(stats)

        for event in outgoing:
            self.bus.publish(event)

    # --------------------------------------------------
    # LIMIT EVALUATION
    # --------------------------------------------------

    def _check_limits(self, profile: AccountProfile, stats: DailyRiskStats) -> List[object]:
        risk = profile.risk
        account, platform = profile.account_id, profile.platform

        events: List[object] = []
        for kind in LIMIT_CHECK_ORDER:
            if not self._breached(kind, account, platform, risk, stats):
                continue

            fired = self._kinds(stats)
            if kind in fired:
                logger.debug("RISK: %s limit already handled, skipping duplicate | account=%s", kind, account)
                continue

            stats.limit_hit = True
            stats.limit_kind = ",".join(fired + [kind])
            stats.limit_hit_at = self.clock.now().isoformat()
            events.extend(self._limit_actions(kind, profile, stats))

        return events

    def _breached(self, kind: str, account: str, platform: str, risk: RiskLimits, stats: DailyRiskStats) -> bool:
        pnl = stats.profit_loss
        if kind == "profit":
            target = self._profit_target(account, platform, risk)
            return target > 0 and pnl >= target
        if kind == "loss":
            limit = self._loss_limit(account, platform, risk)
            return pnl < 0 and limit > 0 and abs(pnl) >= limit
        return risk.enable_max_trades and stats.trades_opened >= risk.max_daily_trades

    def _limit_actions(self, kind: str, profile: AccountProfile, stats: DailyRiskStats) -> List[object]:
        risk = profile.risk
        account, platform = profile.account_id, profile.platform

        if (kind == "profit" and risk.close_all_on_profit) or (kind == "loss" and risk.close_all_on_loss):
            action = "close_all"
        elif kind == "profit" and not risk.stop_new_trades_on_profit:
            action = "notify_only"
        else:
            action = "stop_new_trades"

        message = (
            f"Daily {kind} limit hit | account={account} platform={platform} "
            f"pnl={stats.profit_loss:.2f} trades={stats.trades_opened}"
        )
        logger.warning("🔴 RISK LIMIT HIT | %s | action=%s", message, action)

        events: List[object] = []
        if action == "close_all":
            orders = self.ledger.all_active(account, platform)
            for command in build_commands("close_all", orders, f"risk: daily {kind} limit", percentage=100.0):
                events.append(CommandIssued(command=command, source="risk_governor"))
            if not orders:
                logger.info("RISK: close-all requested but no active orders | account=%s", account)

        events.append(LimitHit(
            account=account,
            platform=platform,
            kind=kind,
            action=action,
            message=message,
            at=self.clock.now(),
            notify=risk.notify_on_limit,
        ))
        return events

    # --------------------------------------------------
    # RESET
    # --------------------------------------------------

    def check_resets(self, now: Optional[datetime] = None) -> List[AccountKey]:
        """Minute job: reset every account whose reset time is now (UTC HH:MM)."""
        now = now or self.clock.now()
        current = now.strftime("%H:%M")
        reset = []
        for profile in self.accounts():
            if profile.risk.reset_time == current and self.reset(profile.account_id, profile.platform):
                reset.append(profile.key)
        return reset

    def reset(self, account: str, platform: str) -> bool:
        key = (account, platform)
        with self._lock_for(key):
            had_stats = key in self._stats or self.stats_repository.latest(account, platform) is not None
            self._stats.pop(key, None)
            self.stats_repository.delete(account, platform)

        if had_stats:
            logger.info("🔄 Daily risk stats reset | account=%s platform=%s", account, platform)
            self.bus.publish(StatsReset(account=account, platform=platform))
        return had_stats

    # --------------------------------------------------
    # STATUS
    # --------------------------------------------------

    def state(self, account: str, platform: str) -> str:
        with self._lock_for((account, platform)):
            return "limit-hit" if self._current(account, platform).limit_hit else "normal"

    def get_status(self, account: str, platform: str) -> Dict:
        profile = self._profile(account, platform)
        risk = profile.risk if profile else RiskLimits()

        with self._lock_for((account, platform)):
            stats = self._current(account, platform)
            pnl = stats.profit_loss
            profit_target = self._profit_target(account, platform, risk)
            loss_limit = self._loss_limit(account, platform, risk)

            return {
                "account": account,
                "platform": platform,
                "enabled": risk.enabled,
                "state": "limit-hit" if stats.limit_hit else "normal",
                "limit_kind": self._first_kind(stats),
                "limit_hit_at": stats.limit_hit_at,
                "stats": {
                    "trade_date": stats.trade_date,
                    "trades_opened": stats.trades_opened,
                    "trades_closed": stats.trades_closed,
                    "profit_loss": pnl,
                },
                "limits": {
                    "profit_target": profit_target,
                    "loss_limit": loss_limit,
                    "max_trades": risk.max_daily_trades if risk.enable_max_trades else None,
                },
                "remaining": {
                    "profit": round(max(0.0, profit_target - pnl), 2),
                    "loss": round(max(0.0, loss_limit + min(0.0, pnl)), 2),
                    "trades": (
                        max(0, risk.max_daily_trades - stats.trades_opened) if risk.enable_max_trades else None
                    ),
                },
                "ms_until_reset": self.ms_until_reset(risk.reset_time),
            }

    def ms_until_reset(self, reset_time: str) -> int:
        now = self.clock.now()
        hour, minute = (int(p) for p in reset_time.split(":"))
        target = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
        if target <= now:
            target += timedelta(days=1)
        return int((target - now).total_seconds() * 1000)

    # --------------------------------------------------
    # INTERNAL
    # --------------------------------------------------

    def _lock_for(self, key: AccountKey) -> threading.RLock:
        with self._registry_lock:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.RLock()
            return lock

    def _current(self, account: str, platform: str) -> DailyRiskStats:
        key = (account, platform)
        today = self.clock.now().strftime("%Y-%m-%d")
        stats = self._stats.get(key)
        if stats is None:
            stats = self.stats_repository.latest(account, platform)

        if stats is not None and stats.trade_date != today:
            # stats belong to a single UTC date
            logger.info(
                "🔄 New trading day, stats rolled over | account=%s platform=%s previous=%s",
                account, platform, stats.trade_date,
            )
            self.stats_repository.delete(account, platform)
            stats = None

        if stats is None:
            stats = DailyRiskStats(account_id=account, platform=platform, trade_date=today)
        self._stats[key] = stats
        return stats

    def _profile(self, account: str, platform: str) -> Optional[AccountProfile]:
        for profile in self.accounts():
            if profile.account_id == str(account) and profile.platform == platform:
                return profile
        return None

    def _profit_target(self, account: str, platform: str, risk: RiskLimits) -> float:
        if risk.use_profit_percent:
            return round(self.balance_provider(account, platform) * risk.daily_profit_percent / 100, 2)
        return risk.daily_profit_target

    def _loss_limit(self, account: str, platform: str, risk: RiskLimits) -> float:
        if risk.use_loss_percent:
            return round(self.balance_provider(account, platform) * risk.daily_loss_percent / 100, 2)
        return risk.daily_loss_limit

    @staticmethod
    def _kinds(stats: DailyRiskStats) -> List[str]:
        return [k for k in (stats.limit_kind or "").split(",") if k]

    @classmethod
    def _first_kind(cls, stats: DailyRiskStats) -> Optional[str]:
        kinds = cls._kinds(stats)
        return kinds[0] if kinds else None

    @staticmethod
    def _deny(account: str, reason: str) -> RiskDecision:
        logger.warning("RISK: Entry BLOCKED | account=%s | reason=%s", account, reason)
        return RiskDecision(False, reason)
