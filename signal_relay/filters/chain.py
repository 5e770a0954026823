#!/usr/bin/env python3
"""
FILTER / OVERRIDE CHAIN
=======================

Ordered, short-circuiting stages over an accepted NewOrderIntent:

  1. trade filters     SL/TP presence policy, force-market
  2. overrides         predefined SL/TP pips or risk:reward ladder
  3. adjustments       reversal, fixed pip shifts of entry/SL/TP
  4. symbol mapping    deny/allow lists, prefix/suffix rename

A stage returning None vetoes the signal. The chain works on a copy, so a
veto discards whatever earlier stages changed.

The time-of-day gate (passes_time_filter) runs earlier, in the classifier.
"""

import copy
from datetime import datetime
from typing import Callable, List, Optional

from signal_relay.core.channel_profile import ChannelProfile, TimeFilter, WEEKDAYS
from signal_relay.domain.intents import NewOrderIntent
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.parsing.pips import pip_size, price_distance_pips, stop_from_pips, target_from_pips

logger = get_component_logger('filters')

Stage = Callable[[NewOrderIntent, ChannelProfile], Optional[NewOrderIntent]]

REVERSED_SIDE = {
    "BUY": "SELL",
    "SELL": "BUY",
    "BUY STOP": "SELL STOP",
    "SELL STOP": "BUY STOP",
    "BUY LIMIT": "SELL LIMIT",
    "SELL LIMIT": "BUY LIMIT",
}


# ======================================================
# TIME FILTER
# ======================================================

def passes_time_filter(time_filter: TimeFilter, now: datetime) -> bool:
    """Weekday flag plus HH:MM window (inclusive, same-day or overnight)."""
    if not time_filter.enabled:
        return True

    if not time_filter.days.get(WEEKDAYS[now.weekday()], True):
        return False

    current = now.strftime("%H:%M")
    start, end = time_filter.start_time, time_filter.end_time
    if start <= end:
        return start <= current <= end
    # overnight window, e.g. 22:00 -> 04:00
    return current >= start or current <= end


# ======================================================
# STAGES
# ======================================================

def apply_trade_filters(intent: NewOrderIntent, profile: ChannelProfile) -> Optional[NewOrderIntent]:
    tf = profile.trade_filters

    if tf.ignore_without_sl and not intent.has_stop:
        logger.info("Signal vetoed: no stop loss | symbol=%s", intent.symbol)
        return None

    if tf.ignore_without_tp and not intent.has_targets:
        logger.info("Signal vetoed: no take profit | symbol=%s", intent.symbol)
        return None

    if (tf.force_market or intent.force_market) and intent.is_pending:
        logger.debug("Forcing market order | %s -> %s", intent.side, intent.base_side)
        intent.side = intent.base_side
        intent.force_market = True

    return intent


def apply_overrides(intent: NewOrderIntent, profile: ChannelProfile) -> Optional[NewOrderIntent]:
    ov = profile.sltp_override
    entry = intent.entry_price

    if ov.sl_mode == "predefined" and ov.predefined_sl_pips > 0:
        if entry:
            intent.stop_loss = stop_from_pips(entry, ov.predefined_sl_pips, intent.side, intent.symbol)
            intent.stop_loss_pips = None
        else:
            intent.stop_loss = None
            intent.stop_loss_pips = ov.predefined_sl_pips

    if ov.enable_rr:
        if entry and intent.stop_loss:
            distance = abs(entry - intent.stop_loss)
            direction = 1 if intent.base_side == "BUY" else -1
            ladder = [round(entry + direction * distance * rr, 5) for rr in ov.rr_ratios if rr > 0]
            intent.take_profits = [tp for tp in ladder if tp > 0]
            intent.take_profit_pips = []
        elif intent.stop_loss_pips:
            intent.take_profits = []
            intent.take_profit_pips = [intent.stop_loss_pips * rr for rr in ov.rr_ratios if rr > 0]
        else:
            logger.debug("R:R override skipped: no entry/stop | symbol=%s", intent.symbol)

    elif ov.tp_mode == "predefined":
        levels = [p for p in ov.predefined_tp_pips if p > 0]
        if levels:
            if entry:
                intent.take_profits = [target_from_pips(entry, p, intent.side, intent.symbol) for p in levels]
                intent.take_profit_pips = []
            else:
                intent.take_profits = []
                intent.take_profit_pips = levels

    return intent


def apply_adjustments(intent: NewOrderIntent, profile: ChannelProfile) -> Optional[NewOrderIntent]:
    adj = profile.adjustments
    pip = pip_size(intent.symbol)

    if adj.reverse_signal:
        intent.side = REVERSED_SIDE.get(intent.side, intent.side)

        entry = intent.entry_price
        if adj.reverse_sltp_in_pips and entry and intent.stop_loss:
            sl_pips = price_distance_pips(entry, intent.stop_loss, intent.symbol)
            intent.stop_loss = stop_from_pips(entry, sl_pips, intent.side, intent.symbol)
            intent.take_profits = [
                target_from_pips(entry, price_distance_pips(entry, tp, intent.symbol), intent.side, intent.symbol)
                for tp in intent.take_profits
            ]
        logger.debug("Signal reversed -> %s", intent.side)

    if adj.entry_pips and intent.entry_price:
        shift = adj.entry_pips * pip
        intent.entry_price = round(intent.entry_price + shift, 5)
        intent.entry_prices = [round(e + shift, 5) for e in intent.entry_prices]

    if adj.sl_pips and intent.stop_loss:
        intent.stop_loss = round(intent.stop_loss + adj.sl_pips * pip, 5)

    if adj.tp_pips and intent.take_profits:
        intent.take_profits = [round(tp + adj.tp_pips * pip, 5) for tp in intent.take_profits]

    return intent


def apply_symbol_mapping(intent: NewOrderIntent, profile: ChannelProfile) -> Optional[NewOrderIntent]:
    mapping = profile.symbol_mapping
    symbol = intent.symbol.upper()

    if symbol in mapping.excluded:
        logger.info("Signal vetoed: symbol excluded | symbol=%s", symbol)
        return None

    if mapping.symbols_to_trade and symbol not in mapping.symbols_to_trade:
        logger.info("Signal vetoed: symbol not in allow-list | symbol=%s", symbol)
        return None

    if mapping.enabled and symbol not in mapping.skip_prefix_suffix:
        intent.symbol = f"{mapping.prefix}{intent.symbol}{mapping.suffix}"

    return intent


# ======================================================
# CHAIN
# ======================================================

class FilterChain:

    def __init__(self, stages: Optional[List[Stage]] = None):
        self.stages: List[Stage] = stages if stages is not None else [
            apply_trade_filters,
            apply_overrides,
            apply_adjustments,
            apply_symbol_mapping,
        ]

    def apply(self, intent: NewOrderIntent, profile: ChannelProfile) -> Optional[NewOrderIntent]:
        working = copy.deepcopy(intent)
        for stage in self.stages:
            working = stage(working, profile)
            if working is None:
                return None
        return working
