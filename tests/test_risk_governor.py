from datetime import datetime, timezone

import pytest

from signal_relay.core.events import CommandIssued, LimitHit, OrderClosed, OrderOpened, StatsReset
from signal_relay.persistence.state_repository import RiskStatsRepository
from signal_relay.risk.risk_governor import RiskGovernor

from tests.conftest import ACCOUNT, EventRecorder, make_account, make_order


class GovernorHarness:
    """Governor over one mutable account profile."""

    def __init__(self, db, ledger, bus, clock, balance=10000.0, **risk):
        self.profile = make_account(risk=dict({"enabled": True}, **risk))
        self.balance = balance
        self.governor = RiskGovernor(
            RiskStatsRepository(db), ledger, bus, clock,
            accounts=lambda: [self.profile],
            balance_provider=lambda account, platform: self.balance,
        )

    def close(self, profit, ticket="T"):
        self.governor.on_trade_closed(OrderClosed(account=ACCOUNT, platform="MT5", ticket=ticket, profit=profit))

    def open(self, ticket="T"):
        self.governor.on_trade_opened(OrderOpened(account=ACCOUNT, platform="MT5", ticket=ticket))


@pytest.fixture
def events(bus):
    return EventRecorder(bus, LimitHit, CommandIssued, StatsReset)


@pytest.fixture
def harness(db, ledger, bus, clock):
    return GovernorHarness(db, ledger, bus, clock)


# -------------------------------
# Loss limit
# -------------------------------

def test_loss_limit_fires_once(harness, ledger, events):
    ledger.record(make_order("5555"))

    harness.close(-150.0)
    assert events.of(LimitHit) == []

    harness.close(-60.0)
    hits = events.of(LimitHit)
    assert len(hits) == 1
    assert hits[0].kind == "loss"
    assert hits[0].action == "close_all"
    assert hits[0].notify is True

    commands = [e.command for e in events.of(CommandIssued)]
    assert [(c.kind, c.tickets) for c in commands] == [("close_all", ("5555",))]

    harness.close(-10.0)
    assert len(events.of(LimitHit)) == 1
    assert harness.governor.state(ACCOUNT, "MT5") == "limit-hit"


def test_loss_limit_blocks_new_entries(harness):
    harness.close(-250.0)
    decision = harness.governor.can_open(ACCOUNT, "MT5")
    assert not decision.allowed
    assert "loss limit" in decision.reason


def test_percent_loss_limit_uses_balance(db, ledger, bus, clock, events):
    harness = GovernorHarness(db, ledger, bus, clock, balance=5000.0, use_loss_percent=True, daily_loss_percent=2)
    harness.close(-99.0)
    assert events.of(LimitHit) == []
    harness.close(-1.0)
    assert len(events.of(LimitHit)) == 1


def test_disabled_risk_never_blocks(db, ledger, bus, clock, events):
    harness = GovernorHarness(db, ledger, bus, clock, enabled=False)
    harness.close(-5000.0)
    assert harness.governor.can_open(ACCOUNT, "MT5").allowed
    assert events.of(LimitHit) == []


# -------------------------------
# Profit target / trade count
# -------------------------------

def test_profit_target_notify_only(db, ledger, bus, clock, events):
    harness = GovernorHarness(
        db, ledger, bus, clock, close_all_on_profit=False, stop_new_trades_on_profit=False, notify_on_limit=False,
    )
    harness.close(600.0)

    hits = events.of(LimitHit)
    assert [(h.kind, h.action, h.notify) for h in hits] == [("profit", "notify_only", False)]
    assert events.of(CommandIssued) == []
    assert harness.governor.can_open(ACCOUNT, "MT5").allowed


def test_max_daily_trades(db, ledger, bus, clock, events):
    harness = GovernorHarness(db, ledger, bus, clock, enable_max_trades=True, max_daily_trades=2)
    harness.open("1")
    assert harness.governor.can_open(ACCOUNT, "MT5").allowed

    harness.open("2")
    decision = harness.governor.can_open(ACCOUNT, "MT5")
    assert not decision.allowed
    assert "Max daily trades" in decision.reason
    assert events.of(LimitHit)[0].action == "stop_new_trades"


def test_pause_without_close_only_blocks_everything(db, ledger, bus, clock):
    harness = GovernorHarness(db, ledger, bus, clock, allow_close_only=False, close_all_on_loss=False)
    harness.close(-300.0)
    decision = harness.governor.can_open(ACCOUNT, "MT5")
    assert not decision.allowed
    assert "paused until 00:00" in decision.reason


def test_second_kind_is_appended(db, ledger, bus, clock, events):
    harness = GovernorHarness(db, ledger, bus, clock, enable_max_trades=True, max_daily_trades=1)
    harness.open("1")
    harness.close(-250.0, ticket="1")

    assert [h.kind for h in events.of(LimitHit)] == ["trades", "loss"]
    status = harness.governor.get_status(ACCOUNT, "MT5")
    assert status["limit_kind"] == "trades"


def test_kind_breached_after_latch_is_still_recorded(db, ledger, bus, clock, events):
    harness = GovernorHarness(db, ledger, bus, clock, enable_max_trades=True, max_daily_trades=1)
    harness.close(-250.0)
    harness.open("1")

    assert [h.kind for h in events.of(LimitHit)] == ["loss", "trades"]
    assert RiskStatsRepository(db).latest(ACCOUNT, "MT5").limit_kind == "loss,trades"

    harness.open("2")
    assert len(events.of(LimitHit)) == 2


# -------------------------------
# Reset / persistence
# -------------------------------

def test_stats_survive_restart(db, ledger, bus, clock, harness):
    harness.close(-250.0)

    restarted = GovernorHarness(db, ledger, bus, clock)
    assert restarted.governor.state(ACCOUNT, "MT5") == "limit-hit"
    assert restarted.governor.get_status(ACCOUNT, "MT5")["stats"]["profit_loss"] == -250.0


def test_new_day_starts_fresh_without_reset_job(db, ledger, bus, clock, harness):
    harness.close(-250.0)
    clock.set(datetime(2026, 1, 6, 9, 0, tzinfo=timezone.utc))

    restarted = GovernorHarness(db, ledger, bus, clock)
    assert restarted.governor.can_open(ACCOUNT, "MT5").allowed
    assert restarted.governor.get_status(ACCOUNT, "MT5")["stats"]["trade_date"] == "2026-01-06"

    assert harness.governor.can_open(ACCOUNT, "MT5").allowed
    assert harness.governor.state(ACCOUNT, "MT5") == "normal"

    harness.close(-10.0)
    stored = RiskStatsRepository(db).latest(ACCOUNT, "MT5")
    assert (stored.trade_date, stored.profit_loss) == ("2026-01-06", -10.0)


def test_reset_at_configured_time(harness, clock, events):
    harness.close(-250.0)

    assert harness.governor.check_resets() == []

    clock.set(datetime(2026, 1, 6, 0, 0, tzinfo=timezone.utc))
    assert harness.governor.check_resets() == [(ACCOUNT, "MT5")]
    assert len(events.of(StatsReset)) == 1
    assert harness.governor.state(ACCOUNT, "MT5") == "normal"
    assert harness.governor.can_open(ACCOUNT, "MT5").allowed


def test_status_report(harness):
    harness.close(-50.0)
    status = harness.governor.get_status(ACCOUNT, "MT5")

    assert status["state"] == "normal"
    assert status["limits"]["loss_limit"] == 200.0
    assert status["remaining"]["loss"] == 150.0
    assert status["remaining"]["profit"] == 550.0
    assert status["ms_until_reset"] == 12 * 60 * 60 * 1000
