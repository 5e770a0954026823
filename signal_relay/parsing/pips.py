"""
Pip sizes and pip -> price conversion.

Stop distances sit against the trade (below a long, above a short);
target distances sit with it.
"""

from signal_relay.domain.intents import base_side

DEFAULT_PIP_SIZE = 0.0001


def pip_size(symbol: str) -> float:
    s = (symbol or "").upper()
    if "JPY" in s:
        return 0.01
    if "XAU" in s or "GOLD" in s:
        return 0.1
    if "XAG" in s or "SILVER" in s:
        return 0.01
    if any(idx in s for idx in ("US30", "NAS100", "SPX500")):
        return 1.0
    if "BTC" in s:
        return 1.0
    if "ETH" in s:
        return 0.1
    return DEFAULT_PIP_SIZE


def _round(price: float, symbol: str) -> float:
    decimals = max(0, len(repr(pip_size(symbol)).split(".")[-1])) + 1
    return round(price, decimals)


def stop_from_pips(entry: float, pips: float, side: str, symbol: str) -> float:
    """Stop price `pips` away from entry, against the trade direction."""
    direction = -1 if base_side(side) == "BUY" else 1
    return _round(entry + direction * abs(pips) * pip_size(symbol), symbol)


def target_from_pips(entry: float, pips: float, side: str, symbol: str) -> float:
    """Target price `pips` away from entry, in the trade direction."""
    direction = 1 if base_side(side) == "BUY" else -1
    return _round(entry + direction * abs(pips) * pip_size(symbol), symbol)


def price_distance_pips(a: float, b: float, symbol: str) -> float:
    return abs(a - b) / pip_size(symbol)

