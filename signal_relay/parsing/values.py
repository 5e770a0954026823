"""Small value grammars: percentages, prices, pip distances."""

import re
from typing import List, Optional

from signal_relay.parsing.keywords import NUMBER

PRICE_NOISE_FLOOR = 0.001

_PERCENT_RE = re.compile(NUMBER + r"\s*(?:%|percent\b)", re.IGNORECASE)
_CLOSE_N_RE = re.compile(r"\bclose\s+" + NUMBER + r"(?![\d.])(?!\s*(?:pips?|points?)\b)", re.IGNORECASE)
_HALF_RE = re.compile(r"\bhalf\b", re.IGNORECASE)
_QUARTER_RE = re.compile(r"\bquarter\b", re.IGNORECASE)
_ALL_RE = re.compile(r"\ball\b", re.IGNORECASE)

_PREFIXED_PRICE_RE = re.compile(
    r"(?:\bto\b|\bat\b|:|=)\s*" + NUMBER + r"(?![\d.])(?!\s*(?:%|pips?\b|points?\b))", re.IGNORECASE
)
_BARE_NUMBER_RE = re.compile(r"(?<![\w.])" + NUMBER + r"(?![\w.]|\s*(?:%|pips?\b|points?\b))", re.IGNORECASE)

_PIPS_RE = re.compile(NUMBER + r"\s*(?:pips?|points?)\b", re.IGNORECASE)
_BY_RE = re.compile(r"\bby\s+" + NUMBER, re.IGNORECASE)

_ANY_NUMBER_RE = re.compile(r"(?<![\w.])" + NUMBER)


def parse_percentage(text: str) -> Optional[float]:
    """'45%' -> 45, 'half' -> 50, 'quarter' -> 25, 'all' -> 100, 'close 30' -> 30."""
    m = _PERCENT_RE.search(text)
    if m:
        return float(m.group(1))
    if _HALF_RE.search(text):
        return 50.0
    if _QUARTER_RE.search(text):
        return 25.0
    if _ALL_RE.search(text):
        return 100.0
    m = _CLOSE_N_RE.search(text)
    if m:
        return float(m.group(1))
    return None


def parse_price(text: str) -> Optional[float]:
    """Price after to/at/:/=, else the first bare number; anything under the noise floor is ignored."""
    for m in _PREFIXED_PRICE_RE.finditer(text):
        value = float(m.group(1))
        if value > PRICE_NOISE_FLOOR:
            return value
    for m in _BARE_NUMBER_RE.finditer(text):
        value = float(m.group(1))
        if value > PRICE_NOISE_FLOOR:
            return value
    return None


def parse_pips(text: str) -> Optional[float]:
    """'20 pips' / '15 points' / 'by 10'."""
    m = _PIPS_RE.search(text)
    if m:
        return float(m.group(1))
    m = _BY_RE.search(text)
    if m:
        return float(m.group(1))
    return None


def numbers_in(text: str) -> List[float]:
    return [float(n) for n in _ANY_NUMBER_RE.findall(text)]
