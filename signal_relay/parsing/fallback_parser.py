"""
Generic fallback parser.

Looser, profile-independent patterns for channels whose keywords are not
configured. Used only when the primary extraction scores below threshold.
"""

import re
from typing import Optional

from signal_relay.domain.intents import NewOrderIntent
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.parsing.keywords import NUMBER
from signal_relay.parsing.pips import stop_from_pips
from signal_relay.parsing.symbols import detect_symbol

logger = get_component_logger('parser')

FALLBACK_MIN_CONFIDENCE = 0.5

_SUPERSCRIPTS = str.maketrans("¹²³⁴⁵", "12345")

_PENDING_RE = re.compile(r"\b(BUY|SELL)\s+(STOP|LIMIT)\b(?!\s*LOSS)")
_BUY_RE = re.compile(r"\b(?:BUY|LONG)\b")
_SELL_RE = re.compile(r"\b(?:SELL|SHORT)\b")

_ENTRY_RANGE_RE = re.compile(r"(?<![\w.])" + NUMBER + r"\s*-\s*" + NUMBER + r"(?![\d.])")
_ENTRY_KW_RE = re.compile(r"(?:\bENTRY\b|\bENTER\b|@|\bPRICE\b)[:\s@]*" + NUMBER)

_SL_PIPS_RE = re.compile(r"\bSL[:\s]+(\d+)\s*PIPS?\b")
_SL_RE = re.compile(r"(?:\bSL\b|\bSTOP\s*LOSS\b|\bS/L\b)[:\s@]*" + NUMBER)
_TP_RE = re.compile(r"(?:\bTP\d?|\bTAKE\s*PROFIT\d?|\bTARGET\d?)\b[:\s@]*" + NUMBER)


class FallbackParser:

    def parse(self, text: str) -> Optional[NewOrderIntent]:
        upper = text.upper().translate(_SUPERSCRIPTS)

        symbol = detect_symbol(upper)
        side = self._side(upper)
        entry = self._entry(upper, symbol)
        stop, stop_pips = self._stop(upper)
        targets = [float(v) for v in _TP_RE.findall(upper) if float(v) > 0]

        if stop_pips is not None and entry and side and symbol:
            stop = stop_from_pips(entry, stop_pips, side, symbol)
            stop_pips = None

        confidence = (
            (0.3 if symbol else 0)
            + (0.3 if side else 0)
            + (0.15 if entry else 0)
            + (0.15 if stop or stop_pips else 0)
            + (0.1 if targets else 0)
        )

        if not symbol or not side or confidence < FALLBACK_MIN_CONFIDENCE:
            logger.debug("Fallback parser: no signal (confidence %.2f)", confidence)
            return None

        return NewOrderIntent(
            symbol=symbol,
            side=side,
            entry_price=entry,
            stop_loss=stop,
            stop_loss_pips=stop_pips,
            take_profits=list(dict.fromkeys(targets)),
            confidence=round(confidence, 2),
            raw_text=text,
        )

    @staticmethod
    def _side(upper: str) -> Optional[str]:
        m = _PENDING_RE.search(upper)
        if m:
            return f"{m.group(1)} {m.group(2)}"
        buy, sell = _BUY_RE.search(upper), _SELL_RE.search(upper)
        if buy and (not sell or buy.start() < sell.start()):
            return "BUY"
        if sell:
            return "SELL"
        return None

    @staticmethod
    def _entry(upper: str, symbol: Optional[str]) -> Optional[float]:
        m = _ENTRY_RANGE_RE.search(upper)
        if m:
            return float(m.group(1))
        if symbol:
            m = re.search(re.escape(symbol) + r"[ \t:@]*" + NUMBER + r"(?![\d.])", upper)
            if m:
                return float(m.group(1))
        m = _ENTRY_KW_RE.search(upper)
        if m:
            return float(m.group(1))
        return None

    @staticmethod
    def _stop(upper: str):
        m = _SL_PIPS_RE.search(upper)
        if m:
            return None, float(m.group(1))
        m = _SL_RE.search(upper)
        if m:
            return float(m.group(1)), None
        return None, None
