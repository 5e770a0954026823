#!/usr/bin/env python3
"""
Relay reconciliation: executed trades reported to the relay by agents are
inserted into the local ledger when their ticket is not already tracked.
"""

from typing import Any, Callable, Dict, Iterable, List

from signal_relay.core.account_profile import AccountProfile
from signal_relay.delivery.relay_client import RelayClient
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.persistence.models import OrderRecord
from signal_relay.persistence.repository import OrderLedger
from signal_relay.utils.utils import safe_float, safe_int

logger = get_component_logger('relay_client')


class RelaySync:

    def __init__(self, client: RelayClient, ledger: OrderLedger, accounts: Callable[[], Iterable[AccountProfile]]):
        self.client = client
        self.ledger = ledger
        self.accounts = accounts
        self.last_inserted = 0

    def sync(self) -> int:
        inserted = 0
        for profile in self.accounts():
            if not profile.is_enabled:
                continue
            for trade in self.client.fetch_executed(profile.account_id):
                if self._reconcile(trade, profile):
                    inserted += 1

        self.last_inserted = inserted
        if inserted:
            logger.info("🔁 Relay sync inserted %d trades", inserted)
        return inserted

    def _reconcile(self, trade: Dict[str, Any], profile: AccountProfile) -> bool:
        ticket = str(trade.get("ticket") or "").strip()
        if not ticket:
            return False

        account = str(trade.get("accountNumber") or profile.account_id)
        if self.ledger.exists_ticket(ticket, account):
            return False

        side = str(trade.get("side") or trade.get("direction") or "").upper()
        if not side:
            logger.debug("Relay trade without side skipped | ticket=%s", ticket)
            return False

        signal_id = trade.get("localSignalId")
        status = str(trade.get("status") or "open").lower()
        record = OrderRecord(
            ticket=ticket,
            signal_id=safe_int(signal_id) if signal_id is not None else None,
            channel_id=str(trade.get("channelId") or ""),
            account_id=account,
            platform=str(trade.get("platform") or profile.platform),
            symbol=str(trade.get("symbol") or "").upper(),
            side=side,
            entry_price=safe_float(trade.get("entryPrice")),
            stop_loss=safe_float(trade.get("stopLoss")),
            take_profits=self._targets(trade),
            lot_size=safe_float(trade.get("lotSize")),
            group_id=trade.get("signalGroupId"),
            tp_level=trade.get("tpLevel"),
            status=status if status in ("pending", "open", "closed") else "open",
        )
        return self.ledger.record(record) is not None

    @staticmethod
    def _targets(trade: Dict[str, Any]) -> List[float]:
        if isinstance(trade.get("takeProfits"), list):
            return [safe_float(v) for v in trade["takeProfits"] if safe_float(v) > 0]
        values = [safe_float(trade.get(f"takeProfit{i}")) for i in range(1, 6)]
        if not any(values):
            values = [safe_float(trade.get("takeProfit"))]
        return [v for v in values if v > 0]
