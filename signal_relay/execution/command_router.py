#!/usr/bin/env python3
"""
COMMAND ROUTER
==============

ModificationIntent / UpdateIntent -> Command(s) for the delivery queue.

Rules:
- Target orders come from the OrderLedger (active only)
- One Command per (account, platform) and modification type, except where
  the new value differs per order (breakeven, pip-based SL/TP)
- A Command with no tickets is never produced
- Every produced Command is published as CommandIssued(source="router")
"""

from collections import OrderedDict
from typing import Iterable, List, Optional, Tuple

from signal_relay.core.account_profile import AccountProfile
from signal_relay.core.events import CommandIssued, EventBus
from signal_relay.domain.intents import Command, ModificationIntent, UpdateIntent
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.parsing.pips import stop_from_pips, target_from_pips
from signal_relay.persistence.models import OrderRecord
from signal_relay.persistence.repository import ModificationRepository, OrderLedger

logger = get_component_logger('router')

INERT_MODIFICATIONS = ("enable_trailing", "disable_trailing", "update_entry")


def group_by_account(orders: Iterable[OrderRecord]) -> "OrderedDict[Tuple[str, str], List[OrderRecord]]":
    groups: "OrderedDict[Tuple[str, str], List[OrderRecord]]" = OrderedDict()
    for order in orders:
        groups.setdefault((order.account_id, order.platform), []).append(order)
    return groups


def build_commands(
    kind: str,
    orders: Iterable[OrderRecord],
    reason: str,
    new_value=None,
    percentage: Optional[float] = None,
) -> List[Command]:
    """One Command per (account, platform); orders without a ticket are skipped."""
    commands = []
    for (account, platform), members in group_by_account(orders).items():
        tickets = tuple(str(o.ticket) for o in members if o.ticket)
        if not tickets:
            continue
        commands.append(Command(
            kind=kind,
            account=account,
            platform=platform,
            tickets=tickets,
            reason=reason,
            new_value=new_value,
            percentage=percentage,
        ))
    return commands


class CommandRouter:

    def __init__(self, ledger: OrderLedger, modifications: ModificationRepository, bus: EventBus):
        self.ledger = ledger
        self.modifications = modifications
        self.bus = bus

    # ======================================================
    # MODIFICATIONS (reply / global)
    # ======================================================
    def route_modification(self, mod: ModificationIntent) -> List[Command]:
        mtype = mod.modification_type

        if mtype in INERT_MODIFICATIONS:
            logger.info("ℹ️ %s noted, not actionable | signal=%s", mtype, mod.signal_ref)
            self._finish(mod, "ignored")
            return []

        orders = self.ledger.all_active() if mod.is_global else self.ledger.by_signal(mod.signal_ref)
        if not orders:
            logger.warning("No active orders for modification | type=%s signal=%s", mtype, mod.signal_ref)
            self._finish(mod, "failed")
            return []

        reason = f"{mtype} (signal {mod.signal_ref})"
        commands: List[Command] = []

        if mtype == "breakeven":
            commands = self._per_order("modify_sl", orders, lambda o: o.entry_price or None, reason)

        elif mtype == "close_partial":
            percentage = mod.percentage if mod.percentage is not None else 100.0
            pending = [o for o in orders if o.status == "pending"]
            if mod.original_action == "delete" and pending:
                commands = build_commands("delete", pending, reason)
            else:
                commands = build_commands("close", orders, reason, percentage=percentage)

        elif mtype == "close_all":
            commands = build_commands("close", orders, reason, percentage=100.0)

        elif mtype == "cancel_pending":
            pending = [o for o in orders if o.status == "pending"]
            if not pending:
                logger.info("No pending orders to cancel | signal=%s", mod.signal_ref)
            commands = build_commands("delete", pending, reason)

        elif mtype in ("update_sl", "update_tp"):
            commands = self._price_update(mod, orders, reason)

        else:
            logger.warning("Unknown modification type: %s", mtype)

        self._finish(mod, "applied" if commands else "failed")
        return self._issue(commands)

    def _price_update(self, mod: ModificationIntent, orders: List[OrderRecord], reason: str) -> List[Command]:
        kind = "modify_sl" if mod.modification_type == "update_sl" else "modify_tp"

        if mod.price is not None:
            return build_commands(kind, orders, reason, new_value=mod.price)

        if mod.pips is None:
            logger.warning("%s without price or pips | signal=%s", mod.modification_type, mod.signal_ref)
            return []

        to_price = stop_from_pips if kind == "modify_sl" else target_from_pips

        def resolve(order: OrderRecord) -> Optional[float]:
            if not order.entry_price:
                return None
            return to_price(order.entry_price, mod.pips, order.side, order.symbol)

        return self._per_order(kind, orders, resolve, reason)

    @staticmethod
    def _per_order(kind: str, orders: Iterable[OrderRecord], value_for, reason: str) -> List[Command]:
        commands = []
        for order in orders:
            value = value_for(order)
            if value is None:
                logger.warning("Skipping order without entry price | ticket=%s", order.ticket)
                continue
            commands.extend(build_commands(kind, [order], reason, new_value=value))
        return commands

    # ======================================================
    # CHANNEL UPDATES
    # ======================================================
    def route_update(self, update: UpdateIntent, channel_id: str, accounts: Iterable[AccountProfile]) -> List[Command]:
        """Apply a channel-wide update to every account's orders from that channel."""
        commands: List[Command] = []
        for account in accounts:
            if not account.is_enabled or not account.accepts_channel(channel_id):
                continue
            orders = self.ledger.by_channel(channel_id, account.account_id, account.platform)
            if orders:
                commands.extend(self._update_commands(update, orders, channel_id))

        if not commands:
            logger.info("Update produced no commands | type=%s channel=%s", update.update_type, channel_id)
        return self._issue(commands)

    def _update_commands(self, update: UpdateIntent, orders: List[OrderRecord], channel_id: str) -> List[Command]:
        utype = update.update_type
        reason = f"{utype} (channel {channel_id})"
        values = update.values
        pending = [o for o in orders if o.status == "pending"]

        if utype.startswith("close_tp"):
            level = update.tp_level
            return build_commands("close", [o for o in orders if o.tp_level == level], reason, percentage=100.0)

        if utype == "close_full":
            return build_commands("close", orders, reason, percentage=100.0)

        if utype == "close_half":
            return build_commands("close", orders, reason, percentage=50.0)

        if utype == "close_partial":
            pct = update.percentage if update.percentage is not None else 50.0
            return build_commands("close", orders, reason, percentage=pct)

        if utype == "break_even":
            return self._per_order("modify_sl", orders, lambda o: o.entry_price or None, reason)

        if utype.startswith("set_tp"):
            if not values:
                logger.warning("%s without a value | channel=%s", utype, channel_id)
                return []
            level = update.tp_level
            targets = [o for o in orders if o.tp_level == level] if level else orders
            if level and not targets:
                # ungrouped orders carry no tp_level
                targets = [o for o in orders if o.tp_level is None]
            new_value = values[0] if len(values) == 1 or level else tuple(values)
            return build_commands("modify_tp", targets, reason, new_value=new_value)

        if utype == "set_sl":
            if not values:
                logger.warning("set_sl without a value | channel=%s", channel_id)
                return []
            return build_commands("modify_sl", orders, reason, new_value=values[0])

        if utype in ("delete_pending", "delete_all"):
            return build_commands("delete", pending, reason)

        if utype == "close_all":
            return build_commands("close_all", orders, reason, percentage=100.0)

        if utype == "remove_sl":
            return build_commands("modify_sl", orders, reason, new_value=0.0)

        if utype == "layer":
            logger.info("Layer update noted | channel=%s", channel_id)
            return []

        logger.warning("Unhandled update type: %s", utype)
        return []

    # ======================================================
    # INTERNAL
    # ======================================================
    def _issue(self, commands: List[Command]) -> List[Command]:
        for command in commands:
            logger.info(
                "➡️ Command | %s account=%s tickets=%s value=%s pct=%s",
                command.kind, command.account, list(command.tickets), command.new_value, command.percentage,
            )
            self.bus.publish(CommandIssued(command=command, source="router"))
        return commands

    def _finish(self, mod: ModificationIntent, status: str) -> None:
        mod.status = status
        if mod.id is not None:
            self.modifications.update_status(mod.id, status)

