#!/usr/bin/env python3
"""
CHANNEL PROFILE
===============

Per-channel keyword lists and behaviour toggles, read-only for the pipeline.

apply_defaults() enumerates every field explicitly: a stored profile is never
deep-merged into a default object. Unknown keys are ignored, missing keys get
the default listed here.
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Literal, Mapping, Optional

EntryRangeStrategy = Literal["first", "last", "middle"]
PreferEntry = Literal["first", "second", "average", "all"]
TpFormatMode = Literal["separate_keywords", "comma_separated"]
OverrideMode = Literal["use_signal", "predefined"]

WEEKDAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

# Keyword ids usable in require_confirmation_for
CONFIRMATION_KEYWORD_IDS = (
    "closeAll", "deleteAll", "breakEven", "closePartial",
    "setSL", "setTP", "trail", "updateEntry",
)


# ------------------------------------------------------------------
# FIELD READERS
# ------------------------------------------------------------------

def _section(raw: Mapping[str, Any], key: str) -> Mapping[str, Any]:
    value = raw.get(key) if raw else None
    return value if isinstance(value, Mapping) else {}


def _words(raw: Mapping[str, Any], key: str) -> List[str]:
    value = raw.get(key)
    if isinstance(value, str):
        value = [w for w in value.split(",")]
    if not isinstance(value, (list, tuple)):
        return []
    return [str(w).strip() for w in value if str(w).strip()]


def _flag(raw: Mapping[str, Any], key: str, default: bool) -> bool:
    value = raw.get(key)
    return value if isinstance(value, bool) else default


def _number(raw: Mapping[str, Any], key: str, default: float) -> float:
    value = raw.get(key)
    if isinstance(value, bool) or value is None:
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _text(raw: Mapping[str, Any], key: str, default: str, allowed: Optional[tuple] = None) -> str:
    value = raw.get(key)
    if not isinstance(value, str):
        return default
    if allowed is not None and value not in allowed:
        return default
    return value


def _numbers(raw: Mapping[str, Any], key: str, default: List[float], length: Optional[int] = None) -> List[float]:
    value = raw.get(key)
    if not isinstance(value, (list, tuple)):
        return list(default)
    out = []
    for v in value:
        try:
            out.append(float(v))
        except (TypeError, ValueError):
            out.append(0.0)
    if length is not None:
        out = (out + [0.0] * length)[:length]
    return out


# ------------------------------------------------------------------
# SECTIONS
# ------------------------------------------------------------------

@dataclass
class SignalKeywords:
    entry_point: List[str] = field(default_factory=list)
    buy: List[str] = field(default_factory=list)
    sell: List[str] = field(default_factory=list)
    stop_loss: List[str] = field(default_factory=list)
    take_profit: List[str] = field(default_factory=list)


@dataclass
class UpdateKeywords:
    close_tp1: List[str] = field(default_factory=list)
    close_tp2: List[str] = field(default_factory=list)
    close_tp3: List[str] = field(default_factory=list)
    close_tp4: List[str] = field(default_factory=list)
    close_full: List[str] = field(default_factory=list)
    close_half: List[str] = field(default_factory=list)
    close_partial: List[str] = field(default_factory=list)
    break_even: List[str] = field(default_factory=list)
    set_tp1: List[str] = field(default_factory=list)
    set_tp2: List[str] = field(default_factory=list)
    set_tp3: List[str] = field(default_factory=list)
    set_tp4: List[str] = field(default_factory=list)
    set_tp5: List[str] = field(default_factory=list)
    set_tp: List[str] = field(default_factory=list)
    set_sl: List[str] = field(default_factory=list)
    delete_pending: List[str] = field(default_factory=list)


@dataclass
class AdditionalKeywords:
    layer: List[str] = field(default_factory=list)
    close_all: List[str] = field(default_factory=list)
    delete_all: List[str] = field(default_factory=list)
    ignore: List[str] = field(default_factory=list)
    skip: List[str] = field(default_factory=list)
    market_order: List[str] = field(default_factory=list)
    remove_sl: List[str] = field(default_factory=list)


@dataclass
class AdvancedSettings:
    delay_ms: int = 0
    entry_range_strategy: EntryRangeStrategy = "first"
    sl_in_pips: bool = False
    tp_in_pips: bool = False
    tp_format_mode: TpFormatMode = "separate_keywords"
    prefer_entry: PreferEntry = "first"
    read_forwarded: bool = True


@dataclass
class TradeFilters:
    ignore_without_sl: bool = False
    ignore_without_tp: bool = False
    force_market: bool = False


@dataclass
class SlTpOverride:
    sl_mode: OverrideMode = "use_signal"
    tp_mode: OverrideMode = "use_signal"
    predefined_sl_pips: float = 0.0
    predefined_tp_pips: List[float] = field(default_factory=lambda: [0.0] * 5)
    enable_rr: bool = False
    rr_ratios: List[float] = field(default_factory=lambda: [2.0, 3.0, 4.0, 5.0, 6.0])


@dataclass
class SignalAdjustments:
    reverse_signal: bool = False
    reverse_sltp_in_pips: bool = False
    entry_pips: float = 0.0
    sl_pips: float = 0.0
    tp_pips: float = 0.0


@dataclass
class SymbolMapping:
    enabled: bool = False
    prefix: str = ""
    suffix: str = ""
    skip_prefix_suffix: List[str] = field(default_factory=list)
    excluded: List[str] = field(default_factory=list)
    symbols_to_trade: List[str] = field(default_factory=list)


@dataclass
class TimeFilter:
    enabled: bool = False
    start_time: str = "01:00"
    end_time: str = "23:00"
    days: Dict[str, bool] = field(default_factory=lambda: {d: True for d in WEEKDAYS})


@dataclass
class ModificationSettings:
    enabled: bool = True
    auto_apply: bool = True
    detect_replies_only: bool = True
    require_confirmation_for: List[str] = field(default_factory=list)
    trailing_distance_pips: float = 5.0


@dataclass
class ChannelProfile:
    channel_id: str = ""
    name: str = ""
    is_enabled: bool = True
    use_fallback_parser: bool = True
    signal_keywords: SignalKeywords = field(default_factory=SignalKeywords)
    update_keywords: UpdateKeywords = field(default_factory=UpdateKeywords)
    additional_keywords: AdditionalKeywords = field(default_factory=AdditionalKeywords)
    advanced: AdvancedSettings = field(default_factory=AdvancedSettings)
    trade_filters: TradeFilters = field(default_factory=TradeFilters)
    sltp_override: SlTpOverride = field(default_factory=SlTpOverride)
    adjustments: SignalAdjustments = field(default_factory=SignalAdjustments)
    symbol_mapping: SymbolMapping = field(default_factory=SymbolMapping)
    time_filter: TimeFilter = field(default_factory=TimeFilter)
    signal_modifications: ModificationSettings = field(default_factory=ModificationSettings)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


# ------------------------------------------------------------------
# DEFAULTS
# ------------------------------------------------------------------

def apply_defaults(raw: Optional[Mapping[str, Any]], channel_id: str = "") -> ChannelProfile:
    """Build a complete ChannelProfile from a partial stored mapping."""
    raw = raw or {}

    sk = _section(raw, "signal_keywords")
    uk = _section(raw, "update_keywords")
    ak = _section(raw, "additional_keywords")
    adv = _section(raw, "advanced")
    tf = _section(raw, "trade_filters")
    ov = _section(raw, "sltp_override")
    adj = _section(raw, "adjustments")
    sm = _section(raw, "symbol_mapping")
    tfl = _section(raw, "time_filter")
    mod = _section(raw, "signal_modifications")
    days = _section(tfl, "days")

    return ChannelProfile(
        channel_id=str(raw.get("channel_id") or channel_id),
        name=_text(raw, "name", ""),
        is_enabled=_flag(raw, "is_enabled", True),
        use_fallback_parser=_flag(raw, "use_fallback_parser", True),
        signal_keywords=SignalKeywords(
            entry_point=_words(sk, "entry_point"),
            buy=_words(sk, "buy"),
            sell=_words(sk, "sell"),
            stop_loss=_words(sk, "stop_loss"),
            take_profit=_words(sk, "take_profit"),
        ),
        update_keywords=UpdateKeywords(
            close_tp1=_words(uk, "close_tp1"),
            close_tp2=_words(uk, "close_tp2"),
            close_tp3=_words(uk, "close_tp3"),
            close_tp4=_words(uk, "close_tp4"),
            close_full=_words(uk, "close_full"),
            close_half=_words(uk, "close_half"),
            close_partial=_words(uk, "close_partial"),
            break_even=_words(uk, "break_even"),
            set_tp1=_words(uk, "set_tp1"),
            set_tp2=_words(uk, "set_tp2"),
            set_tp3=_words(uk, "set_tp3"),
            set_tp4=_words(uk, "set_tp4"),
            set_tp5=_words(uk, "set_tp5"),
            set_tp=_words(uk, "set_tp"),
            set_sl=_words(uk, "set_sl"),
            delete_pending=_words(uk, "delete_pending"),
        ),
        additional_keywords=AdditionalKeywords(
            layer=_words(ak, "layer"),
            close_all=_words(ak, "close_all"),
            delete_all=_words(ak, "delete_all"),
            ignore=_words(ak, "ignore"),
            skip=_words(ak, "skip"),
            market_order=_words(ak, "market_order"),
            remove_sl=_words(ak, "remove_sl"),
        ),
        advanced=AdvancedSettings(
            delay_ms=int(_number(adv, "delay_ms", 0)),
            entry_range_strategy=_text(adv, "entry_range_strategy", "first", ("first", "last", "middle")),
            sl_in_pips=_flag(adv, "sl_in_pips", False),
            tp_in_pips=_flag(adv, "tp_in_pips", False),
            tp_format_mode=_text(adv, "tp_format_mode", "separate_keywords",
                                 ("separate_keywords", "comma_separated")),
            prefer_entry=_text(adv, "prefer_entry", "first", ("first", "second", "average", "all")),
            read_forwarded=_flag(adv, "read_forwarded", True),
        ),
        trade_filters=TradeFilters(
            ignore_without_sl=_flag(tf, "ignore_without_sl", False),
            ignore_without_tp=_flag(tf, "ignore_without_tp", False),
            force_market=_flag(tf, "force_market", False),
        ),
        sltp_override=SlTpOverride(
            sl_mode=_text(ov, "sl_mode", "use_signal", ("use_signal", "predefined")),
            tp_mode=_text(ov, "tp_mode", "use_signal", ("use_signal", "predefined")),
            predefined_sl_pips=_number(ov, "predefined_sl_pips", 0.0),
            predefined_tp_pips=_numbers(ov, "predefined_tp_pips", [0.0] * 5, length=5),
            enable_rr=_flag(ov, "enable_rr", False),
            rr_ratios=_numbers(ov, "rr_ratios", [2.0, 3.0, 4.0, 5.0, 6.0]),
        ),
        adjustments=SignalAdjustments(
            reverse_signal=_flag(adj, "reverse_signal", False),
            reverse_sltp_in_pips=_flag(adj, "reverse_sltp_in_pips", False),
            entry_pips=_number(adj, "entry_pips", 0.0),
            sl_pips=_number(adj, "sl_pips", 0.0),
            tp_pips=_number(adj, "tp_pips", 0.0),
        ),
        symbol_mapping=SymbolMapping(
            enabled=_flag(sm, "enabled", False),
            prefix=_text(sm, "prefix", ""),
            suffix=_text(sm, "suffix", ""),
            skip_prefix_suffix=[s.upper() for s in _words(sm, "skip_prefix_suffix")],
            excluded=[s.upper() for s in _words(sm, "excluded")],
            symbols_to_trade=[s.upper() for s in _words(sm, "symbols_to_trade")],
        ),
        time_filter=TimeFilter(
            enabled=_flag(tfl, "enabled", False),
            start_time=_text(tfl, "start_time", "01:00"),
            end_time=_text(tfl, "end_time", "23:00"),
            days={d: _flag(days, d, True) for d in WEEKDAYS},
        ),
        signal_modifications=ModificationSettings(
            enabled=_flag(mod, "enabled", True),
            auto_apply=_flag(mod, "auto_apply", True),
            detect_replies_only=_flag(mod, "detect_replies_only", True),
            require_confirmation_for=[
                k for k in _words(mod, "require_confirmation_for") if k in CONFIRMATION_KEYWORD_IDS
            ],
            trailing_distance_pips=_number(mod, "trailing_distance_pips", 5.0),
        ),
    )
