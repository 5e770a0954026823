import pytest

from signal_relay.domain.intents import GLOBAL_SIGNAL
from signal_relay.parsing.modification_extractor import ModificationExtractor
from signal_relay.persistence.models import SignalRecord

from tests.conftest import CHANNEL, make_channel, message


@pytest.fixture
def extractor(signals):
    return ModificationExtractor(signals)


@pytest.fixture
def recorded_signal(signals):
    return signals.record(SignalRecord(
        channel_id=CHANNEL, message_id=10, raw_text="BUY EURUSD", parsed_data={}, status="queued",
    ))


def detect(extractor, text, is_reply=True, **profile):
    return extractor.detect(text, is_reply, make_channel(**profile))


# -------------------------------
# Detection order
# -------------------------------

def test_breakeven_beats_stop_update(extractor):
    assert detect(extractor, "Move SL to BE now").modification_type == "breakeven"


def test_plain_be_in_chatter_is_not_breakeven(extractor):
    assert detect(extractor, "TP will be hit soon") is None
    assert detect(extractor, "SL at BE").modification_type == "breakeven"


def test_close_all_outside_reply_is_global(extractor):
    mod = detect(extractor, "close all positions", is_reply=False)
    assert mod.modification_type == "close_all"
    assert mod.signal_ref == GLOBAL_SIGNAL
    assert mod.percentage == 100.0


def test_close_all_as_reply_closes_that_signal(extractor):
    mod = detect(extractor, "close all")
    assert mod.modification_type == "close_partial"
    assert mod.percentage == 100.0
    assert mod.original_action == "close"


@pytest.mark.parametrize("text,expected", [
    ("close 50%", 50.0),
    ("close half", 50.0),
    ("book profit 30%", 30.0),
])
def test_partial_close_percentage(extractor, text, expected):
    mod = detect(extractor, text)
    assert mod.modification_type == "close_partial"
    assert mod.percentage == expected


def test_partial_close_without_amount_is_dropped(extractor):
    assert detect(extractor, "take profit now") is None


def test_configured_half_keyword(extractor):
    mod = detect(extractor, "secure half please", update_keywords={"close_half": ["secure half"]})
    assert mod.percentage == 50.0


def test_cancel_forms(extractor):
    assert detect(extractor, "cancel", is_reply=False).modification_type == "cancel_pending"
    mod = detect(extractor, "delete this order")
    assert mod.modification_type == "close_partial"
    assert mod.original_action == "delete"


def test_stop_update_price_and_pips(extractor):
    price = detect(extractor, "sl to 1.0950")
    assert price.modification_type == "update_sl"
    assert price.price == pytest.approx(1.095)

    pips = detect(extractor, "move sl to 30 pips")
    assert pips.modification_type == "update_sl"
    assert pips.pips == 30.0
    assert pips.price is None


def test_target_update_with_level(extractor):
    mod = detect(extractor, "move tp 3 target to 1.1250")
    assert mod.modification_type == "update_tp"
    assert mod.tp_level == 3
    assert mod.price == pytest.approx(1.125)


def test_trailing(extractor):
    assert detect(extractor, "trail 15 pips").pips == 15.0
    assert detect(extractor, "start trailing").pips == 5.0
    assert detect(extractor, "stop trailing").modification_type == "disable_trailing"


def test_signal_text_is_not_a_modification(extractor):
    assert detect(extractor, "SELL XAUUSD 4329-4332\nSL 4335\nTP1 4325", is_reply=False) is None


# -------------------------------
# Resolution
# -------------------------------

def test_reply_resolves_to_recorded_signal(extractor, recorded_signal):
    mod = extractor.extract(message(11, "move sl to be", reply_to_id=10), make_channel())
    assert mod.signal_ref == recorded_signal
    assert mod.channel_id == CHANNEL
    assert mod.message_id == 11


def test_reply_to_unknown_message(extractor, recorded_signal):
    assert extractor.extract(message(11, "move sl to be", reply_to_id=99), make_channel()) is None


def test_non_reply_needs_replies_only_disabled(extractor, recorded_signal):
    text = "sl to 1.0950"
    assert extractor.extract(message(12, text), make_channel()) is None

    profile = make_channel(signal_modifications={"detect_replies_only": False})
    mod = extractor.extract(message(13, text), profile)
    assert mod.signal_ref == recorded_signal


def test_disabled_modifications(extractor, recorded_signal):
    profile = make_channel(signal_modifications={"enabled": False})
    assert extractor.extract(message(11, "move sl to be", reply_to_id=10), profile) is None


def test_confirmation_gate(extractor):
    close_all = detect(extractor, "close all", is_reply=False)
    stop = detect(extractor, "sl to 1.0950")

    gated = make_channel(signal_modifications={"require_confirmation_for": ["closeAll"]})
    assert extractor.requires_confirmation(close_all, gated)
    assert not extractor.requires_confirmation(stop, gated)

    manual = make_channel(signal_modifications={"auto_apply": False})
    assert extractor.requires_confirmation(stop, manual)
