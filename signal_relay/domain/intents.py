#===========================================================
# Pipeline domain types
# RawMessage -> NewOrderIntent | UpdateIntent | ModificationIntent -> Command
#===========================================================

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Tuple, Union

from signal_relay.utils.utils import wire_ticket

# =========================
# ENUM-LIKE TYPES
# =========================

Side = Literal["BUY", "SELL", "BUY LIMIT", "SELL LIMIT", "BUY STOP", "SELL STOP"]

PENDING_SIDES = ("BUY LIMIT", "SELL LIMIT", "BUY STOP", "SELL STOP")

UpdateType = Literal[
    "close_tp1", "close_tp2", "close_tp3", "close_tp4",
    "close_full", "close_half", "close_partial", "break_even",
    "set_tp1", "set_tp2", "set_tp3", "set_tp4", "set_tp5", "set_tp", "set_sl",
    "delete_pending",
    "layer", "close_all", "delete_all", "remove_sl",
]

ModificationType = Literal[
    "breakeven",
    "close_partial",
    "close_all",
    "cancel_pending",
    "update_sl",
    "update_tp",
    "enable_trailing",
    "disable_trailing",
    "update_entry",
]

ModificationStatus = Literal["pending", "applied", "failed", "ignored"]

CommandKind = Literal["close", "close_all", "delete", "modify_sl", "modify_tp"]

OrderStatus = Literal["pending", "open", "closed"]

# Modification reference meaning "every open/pending order on every account"
GLOBAL_SIGNAL = "global"


def base_side(side: str) -> str:
    """'SELL LIMIT' -> 'SELL'"""
    return "BUY" if side.startswith("BUY") else "SELL"


# =========================
# INBOUND
# =========================

@dataclass(frozen=True)
class RawMessage:
    channel_id: str
    message_id: int
    text: str
    reply_to_id: Optional[int] = None
    received_at: datetime = field(default_factory=datetime.utcnow)
    is_forwarded: bool = False
    channel_name: str = ""


# =========================
# NEW ORDER
# =========================

@dataclass
class NewOrderIntent:
    """
    Parsed new-order signal. Filter stages mutate it in place.

    stop_loss / take_profits are absolute prices. A pip distance that could
    not be resolved (no entry price) stays in stop_loss_pips / take_profit_pips.
    """
    symbol: str
    side: Side
    entry_price: Optional[float] = None
    entry_prices: List[float] = field(default_factory=list)
    stop_loss: Optional[float] = None
    take_profits: List[float] = field(default_factory=list)
    stop_loss_pips: Optional[float] = None
    take_profit_pips: List[float] = field(default_factory=list)
    confidence: float = 0.0
    raw_text: str = ""
    force_market: bool = False

    # ---- order-group member fields ----
    lot_size: Optional[float] = None
    group_id: Optional[str] = None
    tp_level: Optional[int] = None
    is_last_in_group: bool = False
    comment: str = ""

    @property
    def base_side(self) -> str:
        return base_side(self.side)

    @property
    def is_pending(self) -> bool:
        return self.side in PENDING_SIDES

    @property
    def has_stop(self) -> bool:
        return bool(self.stop_loss) or bool(self.stop_loss_pips)

    @property
    def has_targets(self) -> bool:
        return bool(self.take_profits) or bool(self.take_profit_pips)

    def to_wire(self) -> Dict[str, Any]:
        tps = list(self.take_profits)
        payload: Dict[str, Any] = {
            "symbol": self.symbol,
            "side": self.side,
            "direction": self.side,
            "entryPrice": self.entry_price or 0,
            "stopLoss": self.stop_loss or 0,
            "takeProfits": tps,
            "confidence": round(self.confidence, 2),
            "forceMarket": self.force_market,
        }
        for i in range(5):
            payload[f"takeProfit{i + 1}"] = tps[i] if i < len(tps) else 0
        if self.entry_prices:
            payload["entryPrices"] = list(self.entry_prices)
        if self.stop_loss_pips:
            payload["stopLossPips"] = self.stop_loss_pips
        if self.take_profit_pips:
            payload["takeProfitPips"] = list(self.take_profit_pips)
        if self.lot_size is not None:
            payload["lotSize"] = self.lot_size
        if self.group_id:
            payload["tpLevel"] = self.tp_level
            payload["isLastOrder"] = self.is_last_in_group
            payload["comment"] = self.comment
        return payload


# =========================
# UPDATES / MODIFICATIONS
# =========================

@dataclass(frozen=True)
class UpdateIntent:
    """Channel-scoped update detected by the classifier keyword sets."""
    update_type: UpdateType
    values: Tuple[float, ...] = ()
    percentage: Optional[float] = None
    raw_text: str = ""

    @property
    def tp_level(self) -> Optional[int]:
        if self.update_type.startswith(("close_tp", "set_tp")) and self.update_type[-1].isdigit():
            return int(self.update_type[-1])
        return None


@dataclass
class ModificationIntent:
    modification_type: ModificationType
    signal_ref: Union[int, str]             # signal id or GLOBAL_SIGNAL
    channel_id: str = ""
    message_id: Optional[int] = None
    price: Optional[float] = None
    pips: Optional[float] = None
    percentage: Optional[float] = None
    tp_level: Optional[int] = None
    original_action: Optional[Literal["close", "delete"]] = None
    status: ModificationStatus = "pending"
    raw_text: str = ""
    id: Optional[int] = None

    @property
    def is_global(self) -> bool:
        return self.signal_ref == GLOBAL_SIGNAL


# =========================
# OUTBOUND
# =========================

@dataclass(frozen=True)
class Command:
    kind: CommandKind
    account: str
    platform: str
    tickets: Tuple[str, ...]
    reason: str
    new_value: Optional[Union[float, Tuple[float, ...]]] = None
    percentage: Optional[float] = None

    def to_wire(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "type": self.kind,
            "accountNumber": self.account,
            "platform": self.platform,
            "tickets": [wire_ticket(t) for t in self.tickets],
            "reason": self.reason,
        }
        if self.new_value is not None:
            payload["newValue"] = list(self.new_value) if isinstance(self.new_value, tuple) else self.new_value
        if self.percentage is not None:
            payload["percentage"] = self.percentage
        return payload
