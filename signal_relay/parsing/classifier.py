#!/usr/bin/env python3
"""
SIGNAL CLASSIFIER / EXTRACTOR
=============================

Raw message text + channel profile -> NewOrderIntent | UpdateIntent | None

Order of evaluation:
  1. ignore / skip keywords, time filter          -> None
  2. update keyword sets (first match wins)        -> UpdateIntent
  3. new-signal extraction                         -> NewOrderIntent
     symbol, side, entry, stop, targets, confidence
  4. confidence < 0.4 -> fallback parser (if enabled) or None

Pip-mode stops/targets are resolved to prices here when the entry is known.
"""

import re
from datetime import datetime, timezone
from typing import List, Optional, Tuple, Union

from signal_relay.core.channel_profile import ChannelProfile
from signal_relay.domain.intents import NewOrderIntent, UpdateIntent
from signal_relay.filters.chain import passes_time_filter
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.parsing.fallback_parser import FallbackParser
from signal_relay.parsing.keywords import NUMBER, find_keyword, keyword_alternation, keyword_pattern
from signal_relay.parsing.pips import stop_from_pips, target_from_pips
from signal_relay.parsing.symbols import detect_symbol
from signal_relay.parsing.values import numbers_in, parse_percentage

logger = get_component_logger('parser')

MIN_CONFIDENCE = 0.4

CONFIDENCE_WEIGHTS = {
    "symbol": 0.3,
    "side": 0.3,
    "entry": 0.15,
    "stop": 0.15,
    "targets": 0.1,
}

DEFAULT_BUY = ["BUY", "LONG"]
DEFAULT_SELL = ["SELL", "SHORT"]
DEFAULT_ENTRY = ["ENTRY POINT", "ENTRY PRICE", "ENTRY", "ENTER", "PRICE", "OPEN"]
DEFAULT_STOP = ["STOP LOSS", "SL", "STOP", "S.L", "S/L"]
DEFAULT_TARGET = ["TAKE PROFIT", "TP", "TARGET", "T.P"]

PENDING_FORMS = (
    ("BUY STOP", re.compile(r"\bBUY\s+STOP\b(?!\s*LOSS)")),
    ("SELL STOP", re.compile(r"\bSELL\s+STOP\b(?!\s*LOSS)")),
    ("BUY LIMIT", re.compile(r"\bBUY\s+LIMIT\b")),
    ("SELL LIMIT", re.compile(r"\bSELL\s+LIMIT\b")),
)

_SEP = r"[ \t:@=\-_*]*"
_PIPS_AFTER = re.compile(r"[ \t]*(?:PIPS?|POINTS?)\b")
_RANGE_TAIL = NUMBER + r"[ \t]*[-–~][ \t]*" + NUMBER + r"(?![\d.])"

Intent = Union[NewOrderIntent, UpdateIntent]


def _unique(values: List[float]) -> List[float]:
    seen, out = set(), []
    for v in values:
        if v not in seen:
            seen.add(v)
            out.append(v)
    return out


class SignalClassifier:

    def __init__(self, fallback: Optional[FallbackParser] = None):
        self.fallback = fallback or FallbackParser()

    # ------------------------------------------------------------------
    # ENTRY POINT
    # ------------------------------------------------------------------

    def classify(self, text: str, profile: ChannelProfile, now: Optional[datetime] = None) -> Optional[Intent]:
        if not text or not text.strip():
            return None

        upper = text.upper()
        extra = profile.additional_keywords

        skipped = find_keyword(upper, extra.ignore + extra.skip)
        if skipped:
            logger.debug("Message skipped by keyword '%s'", skipped)
            return None

        if not passes_time_filter(profile.time_filter, now or datetime.now(timezone.utc)):
            logger.debug("Message outside channel time window")
            return None

        update = self.detect_update(upper, profile)
        if update is not None:
            logger.info("📝 Update detected | type=%s values=%s pct=%s",
                        update.update_type, list(update.values), update.percentage)
            return update

        intent = self.extract_signal(upper, profile)
        if intent is not None and intent.confidence >= MIN_CONFIDENCE:
            intent.raw_text = text
            logger.info(
                "📈 Signal parsed | %s %s entry=%s sl=%s tps=%s conf=%.2f",
                intent.side, intent.symbol, intent.entry_price, intent.stop_loss,
                intent.take_profits, intent.confidence,
            )
            return intent

        if profile.use_fallback_parser:
            fallback = self.fallback.parse(text)
            if fallback is not None:
                logger.info("📈 Signal parsed by fallback | %s %s conf=%.2f",
                            fallback.side, fallback.symbol, fallback.confidence)
                return fallback

        logger.debug("Not a signal (confidence %.2f)", intent.confidence if intent else 0.0)
        return None

    # ------------------------------------------------------------------
    # UPDATES
    # ------------------------------------------------------------------

    def detect_update(self, upper: str, profile: ChannelProfile) -> Optional[UpdateIntent]:
        uk = profile.update_keywords
        ak = profile.additional_keywords

        ordered = (
            ("close_tp1", uk.close_tp1),
            ("close_tp2", uk.close_tp2),
            ("close_tp3", uk.close_tp3),
            ("close_tp4", uk.close_tp4),
            ("close_full", uk.close_full),
            ("close_half", uk.close_half),
            ("close_partial", uk.close_partial),
            ("break_even", uk.break_even),
            ("set_tp1", uk.set_tp1),
            ("set_tp2", uk.set_tp2),
            ("set_tp3", uk.set_tp3),
            ("set_tp4", uk.set_tp4),
            ("set_tp5", uk.set_tp5),
            ("set_tp", uk.set_tp),
            ("set_sl", uk.set_sl),
            ("delete_pending", uk.delete_pending),
            ("layer", ak.layer),
            ("close_all", ak.close_all),
            ("delete_all", ak.delete_all),
            ("remove_sl", ak.remove_sl),
        )

        for update_type, keywords in ordered:
            matched = find_keyword(upper, keywords)
            if not matched:
                continue

            values: Tuple[float, ...] = ()
            percentage = None

            if update_type.startswith("set_"):
                m = keyword_pattern(matched).search(upper)
                values = tuple(numbers_in(upper[m.end():]))
            elif update_type == "close_partial":
                percentage = parse_percentage(upper)
            elif update_type == "close_half":
                percentage = 50.0

            return UpdateIntent(update_type=update_type, values=values, percentage=percentage, raw_text=upper)

        return None

    # ------------------------------------------------------------------
    # NEW SIGNAL
    # ------------------------------------------------------------------

    def extract_signal(self, upper: str, profile: ChannelProfile) -> Optional[NewOrderIntent]:
        sk = profile.signal_keywords
        adv = profile.advanced

        symbol = detect_symbol(upper)
        side = self._detect_side(upper, sk.buy or DEFAULT_BUY, sk.sell or DEFAULT_SELL)

        confidence = 0.0
        if symbol:
            confidence += CONFIDENCE_WEIGHTS["symbol"]
        if side:
            confidence += CONFIDENCE_WEIGHTS["side"]

        if not symbol or not side:
            return NewOrderIntent(symbol=symbol or "", side=side or "BUY", confidence=confidence) \
                if confidence else None

        entry, entries = self._extract_entry(upper, symbol, sk.entry_point or DEFAULT_ENTRY, profile)
        stop, stop_pips = self._extract_stop(upper, sk.stop_loss or DEFAULT_STOP, adv.sl_in_pips)
        targets, target_pips = self._extract_targets(upper, sk.take_profit or DEFAULT_TARGET, profile)

        # pip offsets -> prices once entry is known
        if stop_pips is not None and entry:
            stop = stop_from_pips(entry, stop_pips, side, symbol)
            stop_pips = None
        if target_pips and entry:
            targets = targets + [target_from_pips(entry, p, side, symbol) for p in target_pips]
            target_pips = []

        if entry:
            confidence += CONFIDENCE_WEIGHTS["entry"]
        if stop or stop_pips:
            confidence += CONFIDENCE_WEIGHTS["stop"]
        if targets or target_pips:
            confidence += CONFIDENCE_WEIGHTS["targets"]

        ak = profile.additional_keywords
        return NewOrderIntent(
            symbol=symbol,
            side=side,
            entry_price=entry,
            entry_prices=entries,
            stop_loss=stop,
            take_profits=targets,
            stop_loss_pips=stop_pips,
            take_profit_pips=target_pips,
            confidence=round(confidence, 2),
            force_market=bool(find_keyword(upper, ak.market_order)),
        )

    # ---- side ----
    @staticmethod
    def _detect_side(upper: str, buy_words: List[str], sell_words: List[str]) -> Optional[str]:
        for side, pattern in PENDING_FORMS:
            if pattern.search(upper):
                return side

        best: Optional[Tuple[int, str]] = None
        for side, words in (("BUY", buy_words), ("SELL", sell_words)):
            for word in words:
                m = keyword_pattern(word.upper()).search(upper)
                if m and (best is None or m.start() < best[0]):
                    best = (m.start(), side)
        return best[1] if best else None

    # ---- entry ----
    def _extract_entry(
        self, upper: str, symbol: str, entry_words: List[str], profile: ChannelProfile
    ) -> Tuple[Optional[float], List[float]]:
        adv = profile.advanced
        entry_alt = keyword_alternation(w.upper() for w in entry_words)
        prefixes = r"(?:BUY|SELL|LONG|SHORT|LIMIT|STOP|NOW|@|" + re.escape(symbol) + \
            (r"|" + entry_alt if entry_alt else "") + r")"

        # ranges "A-B" anchored to a side / symbol / entry keyword
        m = re.search(prefixes + r"[ \t:@=]*" + _RANGE_TAIL, upper)
        if m:
            low, high = float(m.group(1)), float(m.group(2))
            if adv.entry_range_strategy == "last":
                chosen = high
            elif adv.entry_range_strategy == "middle":
                chosen = round((low + high) / 2, 5)
            else:
                chosen = low
            return chosen, [low, high]

        candidates: List[float] = []
        patterns = [
            r"\b(?:BUY|SELL)[ \t]+(?:STOP|LIMIT)[ \t]*(?:@|AT)?[ \t]*" + NUMBER,
            r"\b(?:BUY|SELL|LONG|SHORT)(?:[ \t]+NOW)?[ \t]*(?:@|AT)?[ \t]*" + NUMBER + r"(?![\d.])",
            r"(?<![A-Z0-9])" + re.escape(symbol) + r"[ \t:@]*" + NUMBER + r"(?![\d.])",
        ]
        if entry_alt:
            patterns.append(r"(?<![\w.])(?:" + entry_alt + r")(?!\w)" + _SEP + NUMBER)
        patterns.append(r"@[ \t]*" + NUMBER)

        for pattern in patterns:
            for found in re.finditer(pattern, upper):
                candidates.append(float(found.group(1)))

        candidates = [c for c in _unique(candidates) if c > 0]
        if not candidates:
            return None, []

        prefer = adv.prefer_entry
        if prefer == "second" and len(candidates) > 1:
            return candidates[1], candidates
        if prefer == "average":
            return round(sum(candidates) / len(candidates), 5), candidates
        if prefer == "all":
            return candidates[0], candidates
        return candidates[0], candidates if len(candidates) > 1 else []

    # ---- stop ----
    @staticmethod
    def _extract_stop(upper: str, stop_words: List[str], in_pips: bool) -> Tuple[Optional[float], Optional[float]]:
        alt = keyword_alternation(w.upper() for w in stop_words)
        pattern = re.compile(r"(?<![\w.])(?:" + alt + r")(?!\w)" + _SEP + NUMBER)

        for m in pattern.finditer(upper):
            # "BUY STOP 1.2345" is an order side, not a stop loss
            if re.search(r"(?:BUY|SELL)\s*$", upper[:m.start()]):
                continue
            value = float(m.group(1))
            if in_pips or _PIPS_AFTER.match(upper, m.end()):
                return None, value
            return value, None
        return None, None

    # ---- targets ----
    def _extract_targets(
        self, upper: str, target_words: List[str], profile: ChannelProfile
    ) -> Tuple[List[float], List[float]]:
        alt = keyword_alternation(w.upper() for w in target_words)
        in_pips = profile.advanced.tp_in_pips
        prices: List[float] = []
        pips: List[float] = []

        def _keep(value: float, end: int):
            if in_pips or _PIPS_AFTER.match(upper, end):
                pips.append(value)
            else:
                prices.append(value)

        if profile.advanced.tp_format_mode == "comma_separated":
            pattern = re.compile(
                r"(?<![\w.])(?:" + alt + r")(?!\w)" + _SEP +
                r"(\d+(?:\.\d+)?(?:[ \t]*[,;/][ \t]*\d+(?:\.\d+)?|[ \t]+\d+(?:\.\d+)?)*)"
            )
            for m in pattern.finditer(upper):
                values = [float(v) for v in re.split(r"[,;/\s]+", m.group(1).strip()) if v]
                for v in values:
                    _keep(v, m.end())
            return _unique([p for p in prices if p > 0]), _unique([p for p in pips if p > 0])

        numbered = re.compile(r"(?<![\w.])(?:" + alt + r")[ \t]*([1-5])(?![\d.])[ \t:@=\-_*).]*" + NUMBER)
        levels = {}
        for m in numbered.finditer(upper):
            levels.setdefault(int(m.group(1)), (float(m.group(2)), m.end()))

        if levels:
            for level in sorted(levels):
                value, end = levels[level]
                _keep(value, end)
        else:
            plain = re.compile(r"(?<![\w.])(?:" + alt + r")(?!\w)" + _SEP + NUMBER)
            for m in plain.finditer(upper):
                _keep(float(m.group(1)), m.end())

        return _unique([p for p in prices if p > 0]), _unique([p for p in pips if p > 0])
