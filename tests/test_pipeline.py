from unittest.mock import MagicMock

from signal_relay.core.events import LimitHit, Notification, SignalAccepted, TrailingStarted
from signal_relay.persistence.database import Database
from signal_relay.services.relay_service import RelayService

from tests.conftest import (
    ACCOUNT,
    CHANNEL,
    GOLD_SIGNAL,
    EventRecorder,
    make_account,
    make_channel,
    make_config,
    message,
)


def ack_all(service, fills=("1001|4330.0", "1002|4331.0", "1003|4332.0")):
    served = service.protocol.list_signals(ACCOUNT)["signals"]
    for payload, fill in zip(served, fills):
        service.protocol.ack_signal(payload["id"], ACCOUNT, "success", fill)
    return served


# -------------------------------
# Gates
# -------------------------------

def test_unmonitored_channel_ignored(service):
    result = service.pipeline.handle_message(message(1, GOLD_SIGNAL, channel_id="elsewhere"))
    assert result.outcome == "ignored"
    assert service.queue.status()["queue_size"] == 0


def test_duplicate_message(service):
    assert service.pipeline.handle_message(message(1, GOLD_SIGNAL)).outcome == "signal"
    assert service.pipeline.handle_message(message(1, GOLD_SIGNAL)).outcome == "duplicate"


def test_disabled_channel(service):
    service.profiles.save_channel(make_channel(is_enabled=False))
    assert service.pipeline.handle_message(message(1, GOLD_SIGNAL)).reason == "channel disabled"


def test_forwarded_message_policy(service):
    service.profiles.save_channel(make_channel(advanced={"read_forwarded": False}))
    result = service.pipeline.handle_message(message(1, GOLD_SIGNAL, is_forwarded=True))
    assert result.reason == "forwarded"


def test_chatter_is_ignored(service):
    result = service.pipeline.handle_message(message(1, "Good luck everyone"))
    assert result.outcome == "ignored"
    assert result.reason == "not a signal"


def test_restarting_monitoring_clears_dedup(service):
    service.pipeline.handle_message(message(1, GOLD_SIGNAL))
    service.pipeline.start_monitoring([CHANNEL])
    assert service.pipeline.handle_message(message(1, GOLD_SIGNAL)).outcome == "signal"


# -------------------------------
# New signals
# -------------------------------

def test_multi_target_signal_end_to_end(service):
    accepted = EventRecorder(service.bus, SignalAccepted)

    result = service.pipeline.handle_message(message(100, GOLD_SIGNAL))
    assert result.outcome == "signal"
    assert result.queued == 3

    served = service.protocol.list_signals(ACCOUNT)["signals"]
    assert [s["lotSize"] for s in served] == [0.04, 0.03, 0.02]
    assert [s["takeProfit1"] for s in served] == [4325.0, 4320.0, 4315.0]
    assert [s["isLastOrder"] for s in served] == [False, False, True]
    assert all(s["side"] == "SELL" and s["stopLoss"] == 4335.0 and s["entryPrice"] == 4329.0 for s in served)
    assert len({s["signalGroupId"] for s in served}) == 1

    record = service.signals.get(result.signal_id)
    assert record.status == "queued"
    assert record.parsed_data["symbol"] == "XAUUSD"
    assert accepted.of(SignalAccepted)[0].accounts == [ACCOUNT]


def test_fills_feed_group_and_breakeven(service):
    service.pipeline.handle_message(message(100, GOLD_SIGNAL))
    served = ack_all(service)
    group = service.groups.get(served[0]["signalGroupId"])

    assert [m.ticket for m in group.members] == ["1001", "1002", "1003"]
    assert service.queue.status()["processed_count"] == 3

    service.protocol.report_closed(ACCOUNT, "MT5", "1001", 40.0, "tp")

    commands = service.protocol.list_modifications(ACCOUNT)["modifications"]
    assert commands == [{
        "type": "modify_sl",
        "accountNumber": ACCOUNT,
        "platform": "MT5",
        "tickets": [1002, 1003],
        "reason": f"breakeven after TP1 ({group.group_id})",
        "newValue": 4331.0,
    }]
    assert service.governor.get_status(ACCOUNT, "MT5")["stats"]["trades_opened"] == 3


def test_rejected_by_filters(service):
    service.profiles.save_channel(make_channel(trade_filters={"ignore_without_sl": True}))
    result = service.pipeline.handle_message(message(5, "BUY EURUSD 1.1000 TP 1.1050"))

    assert result.outcome == "rejected"
    assert service.queue.status()["queue_size"] == 0


def test_account_channel_allow_list(service):
    service.profiles.save_account(make_account(lot_size=0.1, channel_ids=["other"]))
    result = service.pipeline.handle_message(message(5, GOLD_SIGNAL))
    assert result.outcome == "signal"
    assert result.queued == 0
    assert service.signals.get(result.signal_id).status == "blocked"


def test_risk_block_publishes_notification(service):
    notices = EventRecorder(service.bus, Notification)
    service.profiles.save_account(make_account(
        lot_size=0.1, risk={"enabled": True, "enable_max_trades": True, "max_daily_trades": 0},
    ))

    result = service.pipeline.handle_message(message(5, GOLD_SIGNAL))

    assert result.queued == 0
    assert notices.of(Notification)[0].title == "Signal blocked"
    assert notices.of(Notification)[0].level == "warning"


def test_relay_ids_are_served_per_member(clock, relay_client):
    relay_client.push_signal.side_effect = ["r1", "r2", "r3"]
    svc = RelayService(make_config(), clock=clock, database=Database(":memory:"), relay_client=relay_client)
    svc.profiles.save_account(make_account(lot_size=0.1))
    svc.start()
    svc.pipeline.start_monitoring([CHANNEL])
    try:
        result = svc.pipeline.handle_message(message(100, GOLD_SIGNAL))

        assert [s["id"] for s in svc.protocol.list_signals(ACCOUNT)["signals"]] == ["r1", "r2", "r3"]
        assert svc.signals.get(result.signal_id).relay_id == "r1"
        pushed = relay_client.push_signal.call_args_list[0][0][0]
        assert pushed["accountNumber"] == ACCOUNT
        assert pushed["localSignalId"] == result.signal_id
    finally:
        svc.shutdown()


# -------------------------------
# Modifications / updates
# -------------------------------

def test_reply_breakeven_applies_to_signal_orders(service):
    service.pipeline.handle_message(message(100, GOLD_SIGNAL))
    ack_all(service)

    result = service.pipeline.handle_message(message(101, "move sl to be", reply_to_id=100))

    assert result.outcome == "modification"
    assert result.reason == "applied"
    assert result.commands == 3
    values = [c["newValue"] for c in service.protocol.list_modifications(ACCOUNT)["modifications"]]
    assert values == [4330.0, 4331.0, 4332.0]
    assert service.ledger.by_ticket("1001", ACCOUNT).stop_loss == 4330.0
    assert service.ledger.by_ticket("1003", ACCOUNT).stop_loss == 4332.0


def test_reply_without_orders_fails(service):
    service.pipeline.handle_message(message(100, GOLD_SIGNAL))
    result = service.pipeline.handle_message(message(101, "close half", reply_to_id=100))

    assert result.outcome == "modification"
    assert result.reason == "failed"
    assert service.protocol.list_modifications(ACCOUNT)["modifications"] == []


def test_global_close_all(service):
    service.pipeline.handle_message(message(100, GOLD_SIGNAL))
    ack_all(service)

    result = service.pipeline.handle_message(message(102, "close all now"))

    assert result.outcome == "modification"
    commands = service.protocol.list_modifications(ACCOUNT)["modifications"]
    assert commands[0]["type"] == "close"
    assert commands[0]["tickets"] == [1001, 1002, 1003]


def test_confirmation_gate(service):
    service.profiles.save_channel(make_channel(signal_modifications={"auto_apply": False}))
    service.pipeline.handle_message(message(100, GOLD_SIGNAL))
    ack_all(service)

    held = service.pipeline.handle_message(message(101, "move sl to be", reply_to_id=100))
    assert held.outcome == "pending_confirmation"
    assert service.protocol.list_modifications(ACCOUNT)["modifications"] == []

    commands = service.pipeline.confirm_modification(held.modification_id)
    assert len(commands) == 3
    assert service.pipeline.confirm_modification(held.modification_id) == []

    other = service.pipeline.handle_message(message(102, "close 50%", reply_to_id=100))
    assert service.pipeline.reject_modification(other.modification_id)
    assert service.modifications.get(other.modification_id).status == "ignored"


def test_new_signal_wins_over_channel_modification(service):
    service.profiles.save_channel(make_channel(signal_modifications={"detect_replies_only": False}))
    service.pipeline.handle_message(message(100, GOLD_SIGNAL))

    result = service.pipeline.handle_message(message(
        101, "BUY EURUSD 1.1000\nSL: 1.0950\nTP1 1.1050\nTP2 1.1100",
    ))
    assert result.outcome == "signal"


def test_channel_update_keywords(service):
    service.profiles.save_channel(make_channel(update_keywords={"close_full": ["CLOSE NOW"]}))
    service.pipeline.handle_message(message(100, GOLD_SIGNAL))
    ack_all(service)

    result = service.pipeline.handle_message(message(103, "Gold: close now"))

    assert result.outcome == "update"
    assert result.reason == "close_full"
    assert result.commands == 1
    assert service.signals.get(result.signal_id).status == "update"


# -------------------------------
# Notifier wiring
# -------------------------------

def test_notifier_receives_limit_and_trailing(clock):
    notifier = MagicMock()
    svc = RelayService(make_config(), clock=clock, database=Database(":memory:"), notifier=notifier)
    svc.profiles.save_account(make_account(
        lot_size=0.1,
        risk={"enabled": True},
        multi_target={"trailing_enabled": True, "trailing_after_tp": 1},
    ))
    svc.start()
    svc.pipeline.start_monitoring([CHANNEL])
    try:
        svc.pipeline.handle_message(message(100, GOLD_SIGNAL))
        ack_all(svc)
        svc.protocol.report_closed(ACCOUNT, "MT5", "1001", -250.0, "tp")

        assert isinstance(notifier.on_trailing_started.call_args[0][0], TrailingStarted)
        limit = notifier.on_limit_hit.call_args[0][0]
        assert isinstance(limit, LimitHit)
        assert limit.kind == "loss"
    finally:
        svc.shutdown()
