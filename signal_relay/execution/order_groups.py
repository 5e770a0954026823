#!/usr/bin/env python3
"""
ORDER GROUP ENGINE
==================

Expands a multi-target signal into one order per target and manages the
resulting group:

- lot allocation: equal shares or weighted shares (renormalized over the
  number of targets), rounded to 0.01, too-small members dropped
- target hit: move the group's stop to breakeven, start trailing
- stop hit: close every member still open

Group state is persisted after every change and restored at startup.
Events/commands are published only after the engine lock is released.
"""

import copy
import threading
import uuid
from datetime import timedelta
from typing import Callable, Dict, List, Optional

from signal_relay.core.account_profile import AccountProfile, MultiTargetSettings
from signal_relay.core.events import CommandIssued, EventBus, OrderClosed, OrderOpened, StopHit, TargetHit, TrailingStarted
from signal_relay.core.scheduler import Clock
from signal_relay.domain.intents import Command, NewOrderIntent
from signal_relay.execution.command_router import build_commands
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.parsing.pips import target_from_pips
from signal_relay.persistence.models import GroupMember, OrderGroup
from signal_relay.persistence.repository import OrderLedger
from signal_relay.persistence.state_repository import OrderGroupRepository

logger = get_component_logger('order_groups')

LOT_DECIMALS = 2

ProfileLookup = Callable[[str, str], Optional[AccountProfile]]


def allocate_lots(total: float, count: int, settings: MultiTargetSettings) -> List[float]:
    """Split `total` over `count` targets; no min-lot filtering here."""
    if count <= 0:
        return []

    weights = [max(0.0, w) for w in settings.weights[:count]]
    weights += [0.0] * (count - len(weights))

    if settings.strategy == "weighted" and sum(weights) > 0:
        scale = sum(weights)
        lots = [total * w / scale for w in weights]
    else:
        lots = [total / count] * count

    if settings.round_lots:
        lots = [round(lot, LOT_DECIMALS) for lot in lots]
    return lots


class OrderGroupEngine:

    def __init__(
        self,
        repository: OrderGroupRepository,
        ledger: OrderLedger,
        bus: EventBus,
        clock: Clock,
        profile_lookup: ProfileLookup,
        retention_days: int = 7,
    ):
        self.repository = repository
        self.ledger = ledger
        self.bus = bus
        self.clock = clock
        self.profile_lookup = profile_lookup
        self.retention_days = retention_days

        self._lock = threading.RLock()
        self._groups: Dict[str, OrderGroup] = {}

    # ======================================================
    # SPLIT
    # ======================================================
    def expand(
        self,
        intent: NewOrderIntent,
        account: AccountProfile,
        signal_id: Optional[int] = None,
    ) -> List[NewOrderIntent]:
        """
        Returns the intents to enqueue for one account: the members of a new
        group, or the intent itself (with the account lot) when no split applies.
        """
        settings = account.multi_target
        total = intent.lot_size if intent.lot_size is not None else account.lot_size
        targets = list(intent.take_profits)

        single = copy.deepcopy(intent)
        single.lot_size = total

        if not settings.enabled or len(targets) <= 1:
            return [single]

        lots = allocate_lots(total, len(targets), settings)

        group_id = f"grp_{uuid.uuid4().hex[:12]}"
        members: List[GroupMember] = []
        for i, (tp, lot) in enumerate(zip(targets, lots)):
            if lot < settings.min_lot:
                if settings.skip_if_too_small:
                    logger.info("Skipping TP%d: lot %.2f below minimum %.2f", i + 1, lot, settings.min_lot)
                    continue
                lot = settings.min_lot
            members.append(GroupMember(
                order_number=len(members) + 1,
                tp_level=i + 1,
                take_profit=tp,
                lot_size=lot,
                percentage=round(lot / total * 100, 2) if total else 0.0,
                is_last=False,
                comment=f"TP{i + 1} [{group_id[-6:]}]",
            ))

        if not members:
            logger.warning("All group members below minimum lot; sending single order | symbol=%s", intent.symbol)
            return [single]

        members[-1].is_last = True

        group = OrderGroup(
            group_id=group_id,
            signal_id=signal_id,
            account_id=account.account_id,
            platform=account.platform,
            symbol=intent.symbol,
            side=intent.side,
            total_lot=total,
            members=members,
            current_sl=intent.stop_loss,
            average_entry=intent.entry_price or 0.0,
            created_at=self.clock.now().replace(tzinfo=None).isoformat(),
        )
        with self._lock:
            self._groups[group_id] = group
            self.repository.save(group)

        logger.info(
            "🧩 Order group created | id=%s account=%s symbol=%s members=%d lots=%s",
            group_id, account.account_id, intent.symbol, len(members), [m.lot_size for m in members],
        )

        expanded = []
        for m in members:
            member_intent = copy.deepcopy(intent)
            member_intent.take_profits = [m.take_profit]
            member_intent.take_profit_pips = []
            member_intent.lot_size = m.lot_size
            member_intent.group_id = group_id
            member_intent.tp_level = m.tp_level
            member_intent.is_last_in_group = m.is_last
            member_intent.comment = m.comment
            expanded.append(member_intent)
        return expanded

    # ======================================================
    # QUERIES
    # ======================================================
    def get(self, group_id: str) -> Optional[OrderGroup]:
        with self._lock:
            return self._groups.get(group_id)

    def active_groups(self) -> List[OrderGroup]:
        with self._lock:
            return list(self._groups.values())

    # ======================================================
    # EVENT HANDLERS
    # ======================================================
    def on_order_opened(self, event: OrderOpened) -> None:
        if not event.group_id:
            return
        with self._lock:
            group = self._groups.get(event.group_id)
            if group is None:
                return
            member = self._member(group, event.tp_level)
            if member is not None:
                member.ticket = str(event.ticket)
                member.status = "open"
            group.orders_opened += 1
            group.average_entry = self._average_entry(group)
            self.repository.save(group)

    def on_order_closed(self, event: OrderClosed) -> None:
        if not event.group_id:
            return
        with self._lock:
            group = self._groups.get(event.group_id)
            if group is None:
                return
            member = self._member(group, event.tp_level)
            if member is not None:
                member.status = "closed"
            group.orders_closed += 1
            group.total_profit = round(group.total_profit + event.profit, 2)
            self.repository.save(group)

    def on_target_hit(self, event: TargetHit) -> None:
        commands: List[Command] = []
        notices: List[TrailingStarted] = []

        with self._lock:
            group = self._groups.get(event.group_id)
            if group is None:
                logger.debug("TargetHit for unknown group %s", event.group_id)
                return
            settings = self._settings(group)

            if event.tp_level not in group.tps_hit:
                group.tps_hit.append(event.tp_level)
                group.tps_hit.sort()

            if (
                settings.breakeven_enabled
                and not group.is_at_breakeven
                and event.tp_level >= settings.breakeven_after_tp
            ):
                be_price = target_from_pips(group.average_entry, settings.breakeven_offset_pips, group.side, group.symbol)
                remaining = self._open_orders(group, exclude_ticket=event.ticket)
                commands = build_commands(
                    "modify_sl", remaining, f"breakeven after TP{event.tp_level} ({group.group_id})", new_value=be_price,
                )
                group.current_sl = be_price
                group.is_at_breakeven = True
                logger.info(
                    "🛡️ Group at breakeven | id=%s sl=%s orders=%d",
                    group.group_id, be_price, len(remaining),
                )

            if (
                settings.trailing_enabled
                and not group.is_trailing
                and event.tp_level >= settings.trailing_after_tp
            ):
                group.is_trailing = True
                notices.append(TrailingStarted(
                    group_id=group.group_id,
                    tp_level=event.tp_level,
                    distance_pips=settings.trailing_distance_pips,
                ))
                logger.info("📈 Trailing started | id=%s after TP%d", group.group_id, event.tp_level)

            self.repository.save(group)

        self._publish(commands, notices)

    def on_stop_hit(self, event: StopHit) -> None:
        commands: List[Command] = []

        with self._lock:
            group = self._groups.get(event.group_id)
            if group is None:
                return
            settings = self._settings(group)
            if settings.close_all_if_sl_hit:
                remaining = self._open_orders(group, exclude_ticket=event.ticket)
                commands = build_commands(
                    "close", remaining, f"stop hit on group {group.group_id}", percentage=100.0,
                )
                logger.warning(
                    "🛑 Stop hit | group=%s closing %d remaining orders", group.group_id, len(remaining),
                )
            self.repository.save(group)

        self._publish(commands, [])

    # ======================================================
    # HOUSEKEEPING
    # ======================================================
    def load(self) -> int:
        cutoff = self.clock.now() - timedelta(days=self.retention_days)
        groups = self.repository.load_since(cutoff)
        with self._lock:
            for g in groups:
                self._groups[g.group_id] = g
        logger.info("Restored %d order groups", len(groups))
        return len(groups)

    def purge(self, now=None) -> int:
        now = now or self.clock.now()
        cutoff = (now - timedelta(days=self.retention_days)).replace(tzinfo=None).isoformat()
        with self._lock:
            stale = [gid for gid, g in self._groups.items() if g.created_at and g.created_at < cutoff]
            for gid in stale:
                del self._groups[gid]
        removed = self.repository.purge_older_than(self.retention_days, now.replace(tzinfo=None))
        if stale or removed:
            logger.info("🧹 Purged order groups | memory=%d stored=%d", len(stale), removed)
        return len(stale)

    # ======================================================
    # INTERNAL
    # ======================================================
    def _settings(self, group: OrderGroup) -> MultiTargetSettings:
        profile = self.profile_lookup(group.account_id, group.platform)
        return profile.multi_target if profile else MultiTargetSettings()

    @staticmethod
    def _member(group: OrderGroup, tp_level: Optional[int]) -> Optional[GroupMember]:
        for m in group.members:
            if m.tp_level == tp_level:
                return m
        return None

    def _open_orders(self, group: OrderGroup, exclude_ticket: str = ""):
        return [
            o for o in self.ledger.by_group(group.group_id)
            if o.account_id == group.account_id
            and o.platform == group.platform
            and str(o.ticket) != str(exclude_ticket)
        ]

    def _average_entry(self, group: OrderGroup) -> float:
        entries = [o.entry_price for o in self.ledger.by_group(group.group_id, include_closed=True) if o.entry_price]
        if not entries:
            return group.average_entry
        return round(sum(entries) / len(entries), 5)

    def _publish(self, commands: List[Command], notices: List[TrailingStarted]) -> None:
        for command in commands:
            self.bus.publish(CommandIssued(command=command, source="order_groups"))
        for notice in notices:
            self.bus.publish(notice)
