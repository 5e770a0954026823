#!/usr/bin/env python3
"""
MODIFICATION EXTRACTOR
======================

Reply (or channel-wide) message -> ModificationIntent | None

Detection order (first hit wins):
  1. breakeven
  2. close all      non-reply -> global close_all, reply -> close_partial 100%
  3. close partial  percentage required
  4. cancel         non-reply -> global cancel_pending, reply -> close_partial 100% (delete)
  5. update SL      pips or price required
  6. update TP      pips or price required
  7. trailing       disable checked before enable
  8. update entry   price required

A detected type whose value cannot be parsed is dropped (logged).
Signal-scoped modifications are resolved to a recorded signal through the
replied-to message id.
"""

import re
from typing import List, Optional

from signal_relay.core.channel_profile import ChannelProfile
from signal_relay.domain.intents import GLOBAL_SIGNAL, ModificationIntent, RawMessage
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.parsing.keywords import find_keyword
from signal_relay.parsing.values import parse_percentage, parse_pips, parse_price
from signal_relay.persistence.repository import SignalRepository

logger = get_component_logger('modifications')

# ------------------------------------------------------------------
# Built-in keyword sets (used when the channel leaves its list empty)
# ------------------------------------------------------------------
DEFAULT_BREAKEVEN = [
    "move to be", "sl to be", "sl to entry", "breakeven", "sl be", "sl at be",
    "move sl to be", "move stop to entry", "stop to be", "break even",
]
DEFAULT_CLOSE_PARTIAL = [
    "close", "take profit", "book profit", "partial close", "exit", "tp hit", "target hit",
]
DEFAULT_CLOSE_ALL = [
    "close all", "exit all", "close position", "exit position", "full exit", "close everything",
]
DEFAULT_CANCEL = [
    "cancel", "delete", "remove", "cancel order", "delete order", "remove order", "cancel pending",
]
DEFAULT_UPDATE_SL = [
    "sl to", "move sl to", "stop to", "sl:", "stop loss to", "move stop to", "change sl", "update sl",
]
DEFAULT_UPDATE_TP = [
    "tp to", "tp:", "target", "target to", "new tp", "take profit to", "change tp", "update tp", "new target",
]
DEFAULT_UPDATE_ENTRY = [
    "entry to", "change entry", "new entry", "entry:", "update entry", "move entry",
]

# modification type -> keyword id listed in require_confirmation_for
CONFIRMATION_ID_BY_TYPE = {
    "close_all": "closeAll",
    "cancel_pending": "deleteAll",
    "breakeven": "breakEven",
    "close_partial": "closePartial",
    "update_sl": "setSL",
    "update_tp": "setTP",
    "enable_trailing": "trail",
    "disable_trailing": "trail",
    "update_entry": "updateEntry",
}

_DISABLE_TRAILING_RE = re.compile(r"\b(?:stop|disable|remove|cancel)\s+trail", re.IGNORECASE)
_TRAILING_RE = re.compile(r"\btrail", re.IGNORECASE)
_ENTRY_MOVE_RE = re.compile(r"\b(?:entry|price)\s+(?:to|at|:)\s*\d+", re.IGNORECASE)
_PENDING_WORDS_RE = re.compile(r"\b(?:pending|limit|stop)\b", re.IGNORECASE)
_PIP_UNIT_RE = re.compile(r"\d\s*(?:pips?|points?)\b", re.IGNORECASE)
_TP_LEVEL_RE = re.compile(r"\btp\s*([1-5])\b", re.IGNORECASE)


def _keywords(configured: List[str], defaults: List[str]) -> List[str]:
    words = [w.lower() for w in configured if w]
    # longest first so "close all" is tested before "close"
    return sorted(words or defaults, key=len, reverse=True)


class ModificationExtractor:

    def __init__(self, signals: SignalRepository):
        self.signals = signals

    # --------------------------------------------------
    # Gating
    # --------------------------------------------------
    @staticmethod
    def should_process(message: RawMessage, profile: ChannelProfile) -> bool:
        return profile.signal_modifications.enabled

    @staticmethod
    def requires_confirmation(mod: ModificationIntent, profile: ChannelProfile) -> bool:
        settings = profile.signal_modifications
        if not settings.auto_apply:
            return True
        return CONFIRMATION_ID_BY_TYPE.get(mod.modification_type) in settings.require_confirmation_for

    # --------------------------------------------------
    # Entry point
    # --------------------------------------------------
    def extract(self, message: RawMessage, profile: ChannelProfile) -> Optional[ModificationIntent]:
        if not self.should_process(message, profile):
            return None

        is_reply = message.reply_to_id is not None
        mod = self.detect(message.text, is_reply, profile)
        if mod is None:
            return None

        mod.channel_id = str(message.channel_id)
        mod.message_id = message.message_id

        if mod.is_global:
            logger.info("🌐 Global modification detected | type=%s channel=%s", mod.modification_type, mod.channel_id)
            return mod

        if is_reply:
            record = self.signals.find_by_message(message.channel_id, message.reply_to_id)
        elif not profile.signal_modifications.detect_replies_only:
            record = self.signals.latest_in_channel(message.channel_id)
        else:
            record = None

        if record is None or record.id is None:
            logger.debug(
                "No signal for modification | channel=%s reply_to=%s type=%s",
                message.channel_id, message.reply_to_id, mod.modification_type,
            )
            return None

        mod.signal_ref = record.id
        logger.info(
            "✏️ Modification detected | type=%s signal=%s channel=%s",
            mod.modification_type, mod.signal_ref, mod.channel_id,
        )
        return mod

    # --------------------------------------------------
    # Detection (no storage access)
    # --------------------------------------------------
    def detect(self, text: str, is_reply: bool, profile: ChannelProfile) -> Optional[ModificationIntent]:
        lower = text.lower()
        uk = profile.update_keywords
        ak = profile.additional_keywords

        def build(mod_type: str, ref=None, **values) -> ModificationIntent:
            return ModificationIntent(modification_type=mod_type, signal_ref=ref or "", raw_text=text, **values)

        # 1. breakeven
        if find_keyword(lower, _keywords(uk.break_even, DEFAULT_BREAKEVEN)):
            return build("breakeven")

        # 2. close all
        if find_keyword(lower, _keywords(ak.close_all, DEFAULT_CLOSE_ALL)):
            if not is_reply:
                return build("close_all", ref=GLOBAL_SIGNAL, percentage=100.0)
            return build("close_partial", percentage=100.0, original_action="close")

        # 3. close partial
        half_words = [w.lower() for w in uk.close_half if w]
        partial_words = uk.close_partial + uk.close_full + uk.close_half
        if find_keyword(lower, _keywords(partial_words, DEFAULT_CLOSE_PARTIAL)):
            if half_words and find_keyword(lower, half_words):
                percentage = 50.0
            elif find_keyword(lower, [w.lower() for w in uk.close_full if w]):
                percentage = 100.0
            else:
                percentage = parse_percentage(lower)
            if percentage is None:
                logger.debug("Close-partial without percentage dropped | %r", text[:80])
                return None
            return build("close_partial", percentage=percentage, original_action="close")

        # 4. cancel / delete
        cancel_words = uk.delete_pending + ak.delete_all
        if not _TRAILING_RE.search(lower) and find_keyword(lower, _keywords(cancel_words, DEFAULT_CANCEL)):
            if not is_reply:
                return build("cancel_pending", ref=GLOBAL_SIGNAL)
            return build("close_partial", percentage=100.0, original_action="delete")

        # 5 / 6. stop and target updates
        for mod_type, configured, defaults in (
            ("update_sl", uk.set_sl, DEFAULT_UPDATE_SL),
            ("update_tp", uk.set_tp, DEFAULT_UPDATE_TP),
        ):
            if find_keyword(lower, _keywords(configured, defaults)):
                level = _TP_LEVEL_RE.search(lower) if mod_type == "update_tp" else None
                tp_level = int(level.group(1)) if level else None
                if _PIP_UNIT_RE.search(lower):
                    pips = parse_pips(lower)
                    if pips is not None:
                        return build(mod_type, pips=pips, tp_level=tp_level)
                price = parse_price(lower)
                if price is None:
                    logger.debug("%s without value dropped | %r", mod_type, text[:80])
                    return None
                return build(mod_type, price=price, tp_level=tp_level)

        # 7. trailing
        if _DISABLE_TRAILING_RE.search(lower):
            return build("disable_trailing")
        if _TRAILING_RE.search(lower):
            pips = parse_pips(lower)
            if pips is None:
                pips = profile.signal_modifications.trailing_distance_pips
            return build("enable_trailing", pips=pips)

        # 8. pending entry move
        if (_ENTRY_MOVE_RE.search(lower) and _PENDING_WORDS_RE.search(lower)) or find_keyword(lower, DEFAULT_UPDATE_ENTRY):
            price = parse_price(lower)
            if price is None:
                logger.debug("update_entry without price dropped | %r", text[:80])
                return None
            return build("update_entry", price=price)

        return None
