#!/usr/bin/env python3
"""
AGENT PROTOCOL
==============

Wire semantics of the execution agent's pull / acknowledge loop.
Transport-free: the Flask routes in api/http/agent_app.py are thin wrappers.

    list signals        -> {"signals": [...]}          (no removal)
    ack signal          -> remove entry, record Order, OrderOpened
    list modifications  -> {"modifications": [...]}    (empty tickets filtered)
    ack modifications   -> remove every entry for the account
    report close        -> Order closed, OrderClosed (+ TargetHit / StopHit)
"""

from typing import Any, Dict, Optional, Tuple

from signal_relay.core.events import EventBus, OrderClosed, OrderOpened, StopHit, TargetHit
from signal_relay.delivery.queue import DeliveryQueue, SignalEnvelope
from signal_relay.delivery.relay_client import RelayClient
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.persistence.models import OrderRecord
from signal_relay.persistence.repository import OrderLedger
from signal_relay.utils.utils import safe_float

logger = get_component_logger('delivery')

SUCCESS_STATUSES = ("success", "executed", "ok", "filled", "opened")


def parse_fill_message(message: Optional[str]) -> Optional[Tuple[str, Optional[float]]]:
    """'123456|1.10512' -> ('123456', 1.10512); a bare ticket is accepted too."""
    if not message:
        return None
    ticket, _, price = str(message).partition("|")
    ticket = ticket.strip()
    if not ticket:
        return None
    entry = safe_float(price.strip(), default=0.0) if price else 0.0
    return ticket, entry or None


class AgentProtocol:

    def __init__(
        self,
        queue: DeliveryQueue,
        ledger: OrderLedger,
        bus: EventBus,
        relay: Optional[RelayClient] = None,
    ):
        self.queue = queue
        self.ledger = ledger
        self.bus = bus
        self.relay = relay

    # ======================================================
    # SIGNALS
    # ======================================================
    def list_signals(self, account: str) -> Dict[str, Any]:
        return {"signals": [self.signal_payload(e) for e in self.queue.pending_signals(account)]}

    @staticmethod
    def signal_payload(envelope: SignalEnvelope) -> Dict[str, Any]:
        payload = envelope.intent.to_wire()
        payload["id"] = envelope.served_id
        payload["signalGroupId"] = envelope.intent.group_id
        return payload

    def ack_signal(self, signal_id: str, account: str, status: str, message: Optional[str]) -> Dict[str, Any]:
        envelope = self.queue.ack_signal(signal_id)

        if envelope is None:
            logger.warning("⚠️ Ack for unknown signal | id=%s account=%s (already acknowledged?)", signal_id, account)
            return {"success": True}

        if envelope.account != str(account):
            logger.warning(
                "Ack account mismatch | id=%s queued_for=%s acked_by=%s", signal_id, envelope.account, account,
            )

        if str(status).lower() not in SUCCESS_STATUSES:
            logger.warning("❌ Agent rejected signal | id=%s account=%s | %s", signal_id, account, message)
            return {"success": True}

        fill = parse_fill_message(message)
        if fill is None:
            logger.warning("Ack without ticket | id=%s message=%r", signal_id, message)
            return {"success": True}

        ticket, fill_price = fill
        self._record_fill(envelope, ticket, fill_price)

        if self.relay is not None:
            forwarded = self.relay.acknowledge({
                "signalId": envelope.served_id,
                "accountNumber": envelope.account,
                "status": status,
                "message": message,
            })
            if not forwarded:
                logger.warning("Relay acknowledgment not forwarded | id=%s", envelope.served_id)

        return {"success": True, "ticket": ticket}

    def _record_fill(self, envelope: SignalEnvelope, ticket: str, fill_price: Optional[float]) -> None:
        intent = envelope.intent

        if self.ledger.exists_ticket(ticket, envelope.account):
            logger.info("Ticket already tracked | ticket=%s account=%s", ticket, envelope.account)
            return

        self.ledger.record(OrderRecord(
            ticket=ticket,
            signal_id=envelope.signal_id,
            channel_id=envelope.channel_id,
            account_id=envelope.account,
            platform=envelope.platform,
            symbol=intent.symbol,
            side=intent.side,
            entry_price=fill_price or intent.entry_price or 0.0,
            stop_loss=intent.stop_loss or 0.0,
            take_profits=list(intent.take_profits),
            lot_size=intent.lot_size or 0.0,
            group_id=intent.group_id,
            tp_level=intent.tp_level,
            status="pending" if intent.is_pending else "open",
        ))

        self.bus.publish(OrderOpened(
            account=envelope.account,
            platform=envelope.platform,
            ticket=ticket,
            symbol=intent.symbol,
            signal_id=envelope.signal_id,
            group_id=intent.group_id,
            tp_level=intent.tp_level,
        ))

    # ======================================================
    # MODIFICATIONS
    # ======================================================
    def list_modifications(self, account: str) -> Dict[str, Any]:
        commands = [c for c in self.queue.pending_commands(account) if c.tickets]
        return {"modifications": [c.to_wire() for c in commands]}

    def ack_modifications(self, account: str, trades: Any, status: str) -> Dict[str, Any]:
        removed = self.queue.ack_commands(account)
        logger.info("✅ Modifications acknowledged | account=%s status=%s removed=%d trades=%s",
                    account, status, removed, trades)
        return {"success": True, "removed": removed}

    # ======================================================
    # CLOSE REPORTS
    # ======================================================
    def report_closed(self, account: str, platform: str, ticket: str, profit: float, reason: str) -> Dict[str, Any]:
        order = self.ledger.by_ticket(ticket, account)
        if order is None:
            logger.warning("Close report for unknown ticket | ticket=%s account=%s", ticket, account)
            return {"success": False, "error": "Unknown ticket"}

        if order.status == "closed":
            logger.info("Ticket already closed | ticket=%s", ticket)
            return {"success": True, "duplicate": True}

        self.ledger.mark_status(ticket, account, "closed", profit=profit)
        platform = platform or order.platform
        reason = (reason or "").lower()

        self.bus.publish(OrderClosed(
            account=account,
            platform=platform,
            ticket=str(ticket),
            profit=profit,
            reason=reason,
            group_id=order.group_id,
            tp_level=order.tp_level,
        ))

        if order.group_id and reason == "tp" and order.tp_level:
            self.bus.publish(TargetHit(
                group_id=order.group_id,
                tp_level=order.tp_level,
                account=account,
                platform=platform,
                ticket=str(ticket),
                profit=profit,
            ))
        elif order.group_id and reason == "sl":
            self.bus.publish(StopHit(group_id=order.group_id, account=account, platform=platform, ticket=str(ticket)))

        logger.info("📕 Order closed | ticket=%s account=%s profit=%.2f reason=%s", ticket, account, profit, reason)
        return {"success": True}
