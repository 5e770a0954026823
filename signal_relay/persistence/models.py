#===================================================================
# 🔒 ORDER STATUS CONTRACT
#
# pending : accepted by the agent as a pending (limit/stop) order
# open    : filled / market position
# closed  : closed, cancelled or deleted
#
# Transitions: pending -> open -> closed, driven by agent reports.
#===================================================================

from dataclasses import dataclass, field
from typing import Dict, List, Optional


@dataclass
class SignalRecord:
    channel_id: str
    message_id: Optional[int]
    raw_text: str
    parsed_data: Dict
    status: str                 # queued | blocked | rejected | update
    relay_id: Optional[str] = None
    group_id: Optional[str] = None
    created_at: str = ""
    id: Optional[int] = None


@dataclass
class OrderRecord:
    # ---- Identity ----
    ticket: Optional[str]
    signal_id: Optional[int]
    channel_id: str
    account_id: str
    platform: str

    # ---- Instrument ----
    symbol: str
    side: str                   # BUY | SELL | BUY LIMIT ...
    entry_price: float = 0.0
    stop_loss: float = 0.0
    take_profits: List[float] = field(default_factory=list)
    lot_size: float = 0.0

    # ---- Group membership ----
    group_id: Optional[str] = None
    tp_level: Optional[int] = None

    # ---- State ----
    status: str = "open"        # pending | open | closed
    profit: float = 0.0
    created_at: str = ""
    updated_at: str = ""
    id: Optional[int] = None


@dataclass
class GroupMember:
    order_number: int
    tp_level: int
    take_profit: float
    lot_size: float
    percentage: float
    is_last: bool
    comment: str
    ticket: Optional[str] = None
    status: str = "queued"      # queued | open | closed


@dataclass
class OrderGroup:
    group_id: str
    signal_id: Optional[int]
    account_id: str
    platform: str
    symbol: str
    side: str
    total_lot: float
    members: List[GroupMember] = field(default_factory=list)
    orders_opened: int = 0
    orders_closed: int = 0
    tps_hit: List[int] = field(default_factory=list)
    current_sl: Optional[float] = None
    is_at_breakeven: bool = False
    is_trailing: bool = False
    total_profit: float = 0.0
    average_entry: float = 0.0
    created_at: str = ""


@dataclass
class DailyRiskStats:
    account_id: str
    platform: str
    trade_date: str             # YYYY-MM-DD (UTC)
    trades_opened: int = 0
    trades_closed: int = 0
    profit_loss: float = 0.0
    limit_hit: bool = False
    limit_kind: Optional[str] = None
    limit_hit_at: Optional[str] = None
