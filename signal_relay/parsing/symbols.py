"""Curated instrument table and symbol detection."""

import re
from typing import Optional

KNOWN_SYMBOLS = (
    # Forex majors
    "EURUSD", "GBPUSD", "USDJPY", "USDCHF", "AUDUSD", "USDCAD", "NZDUSD",
    # Forex crosses
    "EURGBP", "EURJPY", "GBPJPY", "EURCHF", "EURAUD", "EURCAD", "GBPCHF",
    "GBPAUD", "AUDJPY", "AUDNZD", "AUDCAD", "CADJPY", "CHFJPY", "NZDJPY",
    # Metals
    "XAUUSD", "XAGUSD", "GOLD", "SILVER",
    # Indices
    "US30", "NAS100", "SPX500", "GER30", "UK100", "JPN225", "AUS200",
    "US100", "USTEC", "SPX", "DOW", "NASDAQ",
    # Crypto
    "BTCUSD", "ETHUSD", "BTCUSDT", "ETHUSDT", "XRPUSDT", "BNBUSDT",
)

# Longest first so BTCUSDT wins over BTCUSD and NAS100 over NASDAQ-like prefixes
_ORDERED = sorted(KNOWN_SYMBOLS, key=len, reverse=True)
_KNOWN_RE = re.compile(r"(?<![A-Z0-9])(" + "|".join(_ORDERED) + r")(?![A-Z0-9])")
_SLASH_PAIR_RE = re.compile(r"\b([A-Z]{3})\s*/\s*([A-Z]{3})\b")
_SIX_LETTER_RE = re.compile(r"\b([A-Z]{6})\b")

# Six-letter words that show up in signal text and are not instruments
_NOT_SYMBOLS = {
    "TARGET", "PROFIT", "SIGNAL", "ENTERS", "RESULT", "SECURE", "LEVELS",
    "MARKET", "TRADES", "UPDATE", "CLOSED", "BUYING", "STOPPE", "PIPSSS",
}


def detect_symbol(text: str) -> Optional[str]:
    """First known instrument, else an XXX/YYY pair, else a plausible six-letter pair."""
    upper = text.upper()

    m = _KNOWN_RE.search(upper)
    if m:
        return m.group(1)

    m = _SLASH_PAIR_RE.search(upper)
    if m:
        return m.group(1) + m.group(2)

    for m in _SIX_LETTER_RE.finditer(upper):
        if m.group(1) not in _NOT_SYMBOLS:
            return m.group(1)

    return None
