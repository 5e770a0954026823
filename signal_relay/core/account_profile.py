#!/usr/bin/env python3
"""
ACCOUNT PROFILE
===============

Per (account, platform) execution settings:
- base lot size and channel allow-list
- multi-target (order group) split rules
- daily risk limits

Same rule as channel profiles: apply_defaults() names every field.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Literal, Mapping, Optional, Tuple

from signal_relay.core.channel_profile import _flag, _number, _numbers, _section, _text, _words

SplitStrategy = Literal["equal", "weighted"]


@dataclass
class MultiTargetSettings:
    enabled: bool = True
    strategy: SplitStrategy = "weighted"
    weights: List[float] = field(default_factory=lambda: [40.0, 30.0, 20.0, 10.0, 0.0])
    breakeven_enabled: bool = True
    breakeven_after_tp: int = 1
    breakeven_offset_pips: float = 0.0
    trailing_enabled: bool = False
    trailing_after_tp: int = 2
    trailing_distance_pips: float = 20.0
    close_all_if_sl_hit: bool = True
    min_lot: float = 0.01
    round_lots: bool = True
    skip_if_too_small: bool = True


@dataclass
class RiskLimits:
    enabled: bool = False

    daily_profit_target: float = 500.0
    daily_profit_percent: float = 5.0
    use_profit_percent: bool = False

    daily_loss_limit: float = 200.0
    daily_loss_percent: float = 2.0
    use_loss_percent: bool = False

    max_daily_trades: int = 10
    enable_max_trades: bool = False

    close_all_on_profit: bool = True
    close_all_on_loss: bool = True
    stop_new_trades_on_profit: bool = True
    notify_on_limit: bool = True

    reset_time: str = "00:00"   # HH:MM, UTC
    pause_until_reset: bool = True
    allow_close_only: bool = True


@dataclass
class AccountProfile:
    account_id: str
    platform: str = "MT5"
    is_enabled: bool = True
    lot_size: float = 0.01
    channel_ids: List[str] = field(default_factory=list)   # empty -> every channel
    multi_target: MultiTargetSettings = field(default_factory=MultiTargetSettings)
    risk: RiskLimits = field(default_factory=RiskLimits)

    @property
    def key(self) -> Tuple[str, str]:
        return self.account_id, self.platform

    def accepts_channel(self, channel_id: str) -> bool:
        return not self.channel_ids or str(channel_id) in self.channel_ids

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def apply_defaults(raw: Optional[Mapping[str, Any]], account_id: str = "", platform: str = "MT5") -> AccountProfile:
    raw = raw or {}
    mt = _section(raw, "multi_target")
    rk = _section(raw, "risk")

    return AccountProfile(
        account_id=str(raw.get("account_id") or account_id),
        platform=_text(raw, "platform", platform),
        is_enabled=_flag(raw, "is_enabled", True),
        lot_size=_number(raw, "lot_size", 0.01),
        channel_ids=_words(raw, "channel_ids"),
        multi_target=MultiTargetSettings(
            enabled=_flag(mt, "enabled", True),
            strategy=_text(mt, "strategy", "weighted", ("equal", "weighted")),
            weights=_numbers(mt, "weights", [40.0, 30.0, 20.0, 10.0, 0.0]),
            breakeven_enabled=_flag(mt, "breakeven_enabled", True),
            breakeven_after_tp=int(_number(mt, "breakeven_after_tp", 1)),
            breakeven_offset_pips=_number(mt, "breakeven_offset_pips", 0.0),
            trailing_enabled=_flag(mt, "trailing_enabled", False),
            trailing_after_tp=int(_number(mt, "trailing_after_tp", 2)),
            trailing_distance_pips=_number(mt, "trailing_distance_pips", 20.0),
            close_all_if_sl_hit=_flag(mt, "close_all_if_sl_hit", True),
            min_lot=_number(mt, "min_lot", 0.01),
            round_lots=_flag(mt, "round_lots", True),
            skip_if_too_small=_flag(mt, "skip_if_too_small", True),
        ),
        risk=RiskLimits(
            enabled=_flag(rk, "enabled", False),
            daily_profit_target=_number(rk, "daily_profit_target", 500.0),
            daily_profit_percent=_number(rk, "daily_profit_percent", 5.0),
            use_profit_percent=_flag(rk, "use_profit_percent", False),
            daily_loss_limit=_number(rk, "daily_loss_limit", 200.0),
            daily_loss_percent=_number(rk, "daily_loss_percent", 2.0),
            use_loss_percent=_flag(rk, "use_loss_percent", False),
            max_daily_trades=int(_number(rk, "max_daily_trades", 10)),
            enable_max_trades=_flag(rk, "enable_max_trades", False),
            close_all_on_profit=_flag(rk, "close_all_on_profit", True),
            close_all_on_loss=_flag(rk, "close_all_on_loss", True),
            stop_new_trades_on_profit=_flag(rk, "stop_new_trades_on_profit", True),
            notify_on_limit=_flag(rk, "notify_on_limit", True),
            reset_time=_text(rk, "reset_time", "00:00"),
            pause_until_reset=_flag(rk, "pause_until_reset", True),
            allow_close_only=_flag(rk, "allow_close_only", True),
        ),
    )
