from datetime import datetime, timezone

import pytest

from signal_relay.domain.intents import NewOrderIntent, UpdateIntent
from signal_relay.parsing.classifier import SignalClassifier
from signal_relay.parsing.fallback_parser import FallbackParser
from signal_relay.parsing.pips import pip_size, stop_from_pips, target_from_pips
from signal_relay.parsing.symbols import detect_symbol
from signal_relay.parsing.values import parse_percentage, parse_pips, parse_price

from tests.conftest import GOLD_SIGNAL, make_channel

NOON = datetime(2026, 1, 5, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def classifier():
    return SignalClassifier(FallbackParser())


# -------------------------------
# Value grammars
# -------------------------------

def test_percentage_forms():
    assert parse_percentage("close 45%") == 45.0
    assert parse_percentage("close half now") == 50.0
    assert parse_percentage("close a quarter") == 25.0
    assert parse_percentage("close 30") == 30.0
    assert parse_percentage("book profits") is None


def test_price_prefers_prefixed_number():
    assert parse_price("sl to 1.0950") == pytest.approx(1.095)
    assert parse_price("move stop at 2345.5 after tp1") == pytest.approx(2345.5)
    assert parse_price("nothing here") is None


def test_pips_forms():
    assert parse_pips("move sl 20 pips") == 20.0
    assert parse_pips("trail by 15") == 15.0
    assert parse_pips("no distance") is None


# -------------------------------
# Pips and symbols
# -------------------------------

def test_pip_sizes():
    assert pip_size("EURUSD") == 0.0001
    assert pip_size("USDJPY") == 0.01
    assert pip_size("XAUUSD") == 0.1
    assert pip_size("US30") == 1.0


def test_pip_offsets_follow_trade_direction():
    assert stop_from_pips(1.1000, 20, "BUY", "EURUSD") == pytest.approx(1.0980)
    assert stop_from_pips(1.1000, 20, "SELL LIMIT", "EURUSD") == pytest.approx(1.1020)
    assert target_from_pips(150.00, 20, "SELL", "USDJPY") == pytest.approx(149.80)


def test_symbol_detection():
    assert detect_symbol("SELL XAUUSD NOW") == "XAUUSD"
    assert detect_symbol("eur/usd buy") == "EURUSD"
    assert detect_symbol("BTCUSDT long") == "BTCUSDT"
    assert detect_symbol("good morning traders") is None


# -------------------------------
# Classifier
# -------------------------------

def test_multi_target_sell_signal(classifier):
    intent = classifier.classify(GOLD_SIGNAL, make_channel(), now=NOON)

    assert isinstance(intent, NewOrderIntent)
    assert intent.side == "SELL"
    assert intent.symbol == "XAUUSD"
    assert intent.entry_price == 4329.0
    assert intent.entry_prices == [4329.0, 4332.0]
    assert intent.stop_loss == 4335.0
    assert intent.take_profits == [4325.0, 4320.0, 4315.0]
    assert intent.confidence == pytest.approx(1.0)
    assert intent.raw_text == GOLD_SIGNAL


def test_entry_range_strategy_last(classifier):
    profile = make_channel(advanced={"entry_range_strategy": "last"})
    intent = classifier.classify(GOLD_SIGNAL, profile, now=NOON)
    assert intent.entry_price == 4332.0


def test_stop_in_pips_resolved_against_entry(classifier):
    intent = classifier.classify("BUY EURUSD @ 1.1000 SL 20 pips TP 1.1050", make_channel(), now=NOON)

    assert intent.side == "BUY"
    assert intent.entry_price == pytest.approx(1.1)
    assert intent.stop_loss == pytest.approx(1.098)
    assert intent.stop_loss_pips is None
    assert intent.take_profits == [pytest.approx(1.105)]


def test_pending_order_side(classifier):
    intent = classifier.classify("EURUSD BUY LIMIT 1.0950 SL 1.0900 TP 1.1000", make_channel(), now=NOON)
    assert intent.side == "BUY LIMIT"
    assert intent.is_pending
    assert intent.entry_price == pytest.approx(1.095)


def test_update_keywords_win_over_signal(classifier):
    profile = make_channel(update_keywords={"set_sl": ["NEW SL"]})
    update = classifier.classify("XAUUSD new sl 4340", profile, now=NOON)

    assert isinstance(update, UpdateIntent)
    assert update.update_type == "set_sl"
    assert update.values == (4340.0,)


def test_close_tp_update_level(classifier):
    profile = make_channel(update_keywords={"close_tp2": ["TP2 HIT CLOSE"]})
    update = classifier.classify("tp2 hit close", profile, now=NOON)
    assert update.update_type == "close_tp2"
    assert update.tp_level == 2


def test_ignore_keyword_drops_message(classifier):
    profile = make_channel(additional_keywords={"ignore": ["RESULTS"]})
    assert classifier.classify("RESULTS: BUY EURUSD 1.1 SL 1.09 TP 1.12", profile, now=NOON) is None


def test_time_filter_outside_window(classifier):
    profile = make_channel(time_filter={"enabled": True, "start_time": "01:00", "end_time": "02:00"})
    assert classifier.classify(GOLD_SIGNAL, profile, now=NOON) is None


def test_chatter_is_not_a_signal(classifier):
    assert classifier.classify("Good morning everyone, big day ahead", make_channel(), now=NOON) is None


def test_market_order_keyword(classifier):
    profile = make_channel(additional_keywords={"market_order": ["NOW"]})
    intent = classifier.classify("BUY EURUSD NOW SL 1.0900 TP 1.1100", profile, now=NOON)
    assert intent.force_market is True


# -------------------------------
# Fallback parser
# -------------------------------

def test_fallback_parses_superscript_targets():
    intent = FallbackParser().parse("XAUUSD buy @ 2350 sl 2340 tp¹ 2360")

    assert intent.symbol == "XAUUSD"
    assert intent.side == "BUY"
    assert intent.entry_price == 2350.0
    assert intent.stop_loss == 2340.0
    assert intent.take_profits == [2360.0]
    assert intent.confidence == pytest.approx(1.0)


def test_fallback_resolves_stop_pips():
    intent = FallbackParser().parse("EURUSD sell @ 1.2000 SL 30 pips")
    assert intent.stop_loss == pytest.approx(1.203)
    assert intent.stop_loss_pips is None


def test_fallback_requires_symbol_and_side():
    assert FallbackParser().parse("XAUUSD @ 2350 sl 2340 tp 2360") is None
    assert FallbackParser().parse("buy now, sl 10 tp 20") is None
