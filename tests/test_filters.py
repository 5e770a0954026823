from datetime import datetime, timezone

import pytest

from signal_relay.core.channel_profile import TimeFilter, WEEKDAYS
from signal_relay.domain.intents import NewOrderIntent
from signal_relay.filters.chain import FilterChain, passes_time_filter

from tests.conftest import make_channel


def eurusd_buy(**overrides):
    values = dict(
        symbol="EURUSD",
        side="BUY",
        entry_price=1.1000,
        stop_loss=1.0950,
        take_profits=[1.1100],
        confidence=1.0,
    )
    values.update(overrides)
    return NewOrderIntent(**values)


@pytest.fixture
def chain():
    return FilterChain()


# -------------------------------
# Trade filters
# -------------------------------

def test_missing_stop_is_vetoed_when_required(chain):
    profile = make_channel(trade_filters={"ignore_without_sl": True})
    assert chain.apply(eurusd_buy(stop_loss=None), profile) is None
    assert chain.apply(eurusd_buy(), profile) is not None


def test_missing_target_is_vetoed_when_required(chain):
    profile = make_channel(trade_filters={"ignore_without_tp": True})
    assert chain.apply(eurusd_buy(take_profits=[]), profile) is None


def test_force_market_converts_pending_side(chain):
    profile = make_channel(trade_filters={"force_market": True})
    result = chain.apply(eurusd_buy(side="BUY LIMIT"), profile)
    assert result.side == "BUY"
    assert result.force_market is True


# -------------------------------
# Overrides
# -------------------------------

def test_predefined_stop_in_pips(chain):
    profile = make_channel(sltp_override={"sl_mode": "predefined", "predefined_sl_pips": 20})
    result = chain.apply(eurusd_buy(), profile)
    assert result.stop_loss == pytest.approx(1.0980)


def test_predefined_stop_without_entry_stays_in_pips(chain):
    profile = make_channel(sltp_override={"sl_mode": "predefined", "predefined_sl_pips": 20})
    result = chain.apply(eurusd_buy(entry_price=None), profile)
    assert result.stop_loss is None
    assert result.stop_loss_pips == 20


def test_risk_reward_ladder(chain):
    profile = make_channel(sltp_override={"enable_rr": True, "rr_ratios": [2, 3]})
    result = chain.apply(eurusd_buy(stop_loss=1.0990), profile)
    assert result.take_profits == [pytest.approx(1.1020), pytest.approx(1.1030)]


def test_predefined_targets(chain):
    profile = make_channel(sltp_override={"tp_mode": "predefined", "predefined_tp_pips": [10, 20]})
    result = chain.apply(eurusd_buy(side="SELL", stop_loss=1.1050), profile)
    assert result.take_profits == [pytest.approx(1.0990), pytest.approx(1.0980)]


# -------------------------------
# Adjustments
# -------------------------------

def test_reverse_signal_mirrors_stop_and_targets(chain):
    profile = make_channel(adjustments={"reverse_signal": True, "reverse_sltp_in_pips": True})
    result = chain.apply(eurusd_buy(), profile)

    assert result.side == "SELL"
    assert result.stop_loss == pytest.approx(1.1050)
    assert result.take_profits == [pytest.approx(1.0900)]


def test_pip_shifts(chain):
    profile = make_channel(adjustments={"entry_pips": 5, "sl_pips": -10, "tp_pips": 10})
    result = chain.apply(eurusd_buy(), profile)

    assert result.entry_price == pytest.approx(1.1005)
    assert result.stop_loss == pytest.approx(1.0940)
    assert result.take_profits == [pytest.approx(1.1110)]


# -------------------------------
# Symbol mapping
# -------------------------------

def test_symbol_suffix_and_skip_list(chain):
    profile = make_channel(symbol_mapping={"enabled": True, "suffix": ".m", "skip_prefix_suffix": ["xauusd"]})

    assert chain.apply(eurusd_buy(), profile).symbol == "EURUSD.m"
    assert chain.apply(eurusd_buy(symbol="XAUUSD"), profile).symbol == "XAUUSD"


def test_allow_list_vetoes_other_symbols(chain):
    profile = make_channel(symbol_mapping={"symbols_to_trade": ["XAUUSD"]})
    assert chain.apply(eurusd_buy(), profile) is None


def test_veto_leaves_input_untouched(chain):
    intent = eurusd_buy()
    profile = make_channel(adjustments={"entry_pips": 10}, symbol_mapping={"excluded": ["EURUSD"]})

    assert chain.apply(intent, profile) is None
    assert intent.entry_price == 1.1000


# -------------------------------
# Time filter
# -------------------------------

def test_overnight_window():
    window = TimeFilter(enabled=True, start_time="22:00", end_time="04:00")
    assert passes_time_filter(window, datetime(2026, 1, 5, 23, 30, tzinfo=timezone.utc))
    assert passes_time_filter(window, datetime(2026, 1, 6, 3, 0, tzinfo=timezone.utc))
    assert not passes_time_filter(window, datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc))


def test_disabled_weekday():
    days = {d: d != "saturday" for d in WEEKDAYS}
    window = TimeFilter(enabled=True, start_time="00:00", end_time="23:59", days=days)
    assert not passes_time_filter(window, datetime(2026, 1, 10, 12, 0, tzinfo=timezone.utc))
    assert passes_time_filter(window, datetime(2026, 1, 9, 12, 0, tzinfo=timezone.utc))
