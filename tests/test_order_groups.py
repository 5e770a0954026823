import pytest

from signal_relay.core.account_profile import MultiTargetSettings
from signal_relay.core.events import CommandIssued, OrderOpened, StopHit, TargetHit, TrailingStarted
from signal_relay.domain.intents import NewOrderIntent
from signal_relay.execution.order_groups import OrderGroupEngine, allocate_lots
from signal_relay.persistence.state_repository import OrderGroupRepository

from tests.conftest import ACCOUNT, EventRecorder, make_account, make_order


def gold_sell(**overrides):
    values = dict(
        symbol="XAUUSD",
        side="SELL",
        entry_price=4329.0,
        stop_loss=4335.0,
        take_profits=[4325.0, 4320.0, 4315.0],
        confidence=1.0,
    )
    values.update(overrides)
    return NewOrderIntent(**values)


@pytest.fixture
def account():
    return make_account(lot_size=0.1)


@pytest.fixture
def engine(db, ledger, bus, clock, account):
    return OrderGroupEngine(
        OrderGroupRepository(db), ledger, bus, clock,
        profile_lookup=lambda account_id, platform: account,
    )


@pytest.fixture
def recorder(bus):
    return EventRecorder(bus, CommandIssued, TrailingStarted)


def open_members(engine, ledger, members, entries=(4330.0, 4331.0, 4332.0)):
    for i, (member, entry) in enumerate(zip(members, entries)):
        ticket = str(1001 + i)
        ledger.record(make_order(
            ticket, symbol=member.symbol, side=member.side, entry_price=entry,
            lot_size=member.lot_size, group_id=member.group_id, tp_level=member.tp_level,
        ))
        engine.on_order_opened(OrderOpened(
            account=ACCOUNT, platform="MT5", ticket=ticket, group_id=member.group_id, tp_level=member.tp_level,
        ))


# -------------------------------
# Lot allocation
# -------------------------------

def test_weighted_split_renormalizes():
    settings = MultiTargetSettings(weights=[50, 30, 20])
    assert allocate_lots(0.10, 3, settings) == [0.05, 0.03, 0.02]


def test_default_weights_over_three_targets():
    assert allocate_lots(0.09, 3, MultiTargetSettings()) == [0.04, 0.03, 0.02]


def test_equal_split():
    assert allocate_lots(0.09, 3, MultiTargetSettings(strategy="equal")) == [0.03, 0.03, 0.03]


# -------------------------------
# Expansion
# -------------------------------

def test_expand_creates_one_member_per_target(engine, account):
    members = engine.expand(gold_sell(), account, signal_id=1)

    assert [m.lot_size for m in members] == [0.04, 0.03, 0.02]
    assert [m.take_profits for m in members] == [[4325.0], [4320.0], [4315.0]]
    assert [m.tp_level for m in members] == [1, 2, 3]
    assert [m.is_last_in_group for m in members] == [False, False, True]
    assert len({m.group_id for m in members}) == 1

    group_id = members[0].group_id
    assert members[0].comment == f"TP1 [{group_id[-6:]}]"
    assert len(engine.get(group_id).members) == 3


def test_single_target_is_not_split(engine, account):
    members = engine.expand(gold_sell(take_profits=[4325.0]), account)
    assert len(members) == 1
    assert members[0].group_id is None
    assert members[0].lot_size == 0.1


def test_members_below_min_lot_are_skipped(engine):
    small = make_account(lot_size=0.02)
    members = engine.expand(gold_sell(), small)

    assert [m.lot_size for m in members] == [0.01, 0.01]
    assert members[-1].is_last_in_group


def test_disabled_split(engine):
    plain = make_account(lot_size=0.1, multi_target={"enabled": False})
    assert len(engine.expand(gold_sell(), plain)) == 1


# -------------------------------
# Group management
# -------------------------------

def test_first_target_moves_rest_to_breakeven(engine, ledger, account, recorder):
    members = engine.expand(gold_sell(), account)
    open_members(engine, ledger, members)
    group_id = members[0].group_id
    ledger.mark_status("1001", ACCOUNT, "closed", profit=25.0)

    engine.on_target_hit(TargetHit(group_id=group_id, tp_level=1, account=ACCOUNT, platform="MT5", ticket="1001"))

    commands = [e.command for e in recorder.of(CommandIssued)]
    assert len(commands) == 1
    assert commands[0].kind == "modify_sl"
    assert commands[0].tickets == ("1002", "1003")
    assert commands[0].new_value == pytest.approx(4331.0)

    group = engine.get(group_id)
    assert group.is_at_breakeven
    assert group.tps_hit == [1]


def test_breakeven_applied_once(engine, ledger, account, recorder):
    members = engine.expand(gold_sell(), account)
    open_members(engine, ledger, members)
    group_id = members[0].group_id

    engine.on_target_hit(TargetHit(group_id=group_id, tp_level=1, account=ACCOUNT, platform="MT5", ticket="1001"))
    engine.on_target_hit(TargetHit(group_id=group_id, tp_level=2, account=ACCOUNT, platform="MT5", ticket="1002"))

    assert len(recorder.of(CommandIssued)) == 1


def test_trailing_starts_after_configured_target(engine, ledger, recorder):
    trailing = make_account(lot_size=0.1, multi_target={"trailing_enabled": True, "trailing_after_tp": 2})
    engine.profile_lookup = lambda account_id, platform: trailing
    members = engine.expand(gold_sell(), trailing)
    group_id = members[0].group_id

    engine.on_target_hit(TargetHit(group_id=group_id, tp_level=1, account=ACCOUNT, platform="MT5"))
    assert recorder.of(TrailingStarted) == []

    engine.on_target_hit(TargetHit(group_id=group_id, tp_level=2, account=ACCOUNT, platform="MT5"))
    notices = recorder.of(TrailingStarted)
    assert len(notices) == 1
    assert notices[0].distance_pips == 20.0


def test_stop_hit_closes_remaining(engine, ledger, account, recorder):
    members = engine.expand(gold_sell(), account)
    open_members(engine, ledger, members)
    ledger.mark_status("1001", ACCOUNT, "closed", profit=-30.0)

    engine.on_stop_hit(StopHit(group_id=members[0].group_id, account=ACCOUNT, platform="MT5", ticket="1001"))

    commands = [e.command for e in recorder.of(CommandIssued)]
    assert [(c.kind, c.tickets, c.percentage) for c in commands] == [("close", ("1002", "1003"), 100.0)]


def test_open_tracks_tickets_and_average_entry(engine, ledger, account):
    members = engine.expand(gold_sell(), account)
    open_members(engine, ledger, members)

    group = engine.get(members[0].group_id)
    assert [m.ticket for m in group.members] == ["1001", "1002", "1003"]
    assert group.orders_opened == 3
    assert group.average_entry == pytest.approx(4331.0)


# -------------------------------
# Persistence
# -------------------------------

def test_groups_restored_and_purged(db, ledger, bus, clock, engine, account):
    group_id = engine.expand(gold_sell(), account)[0].group_id

    restored = OrderGroupEngine(OrderGroupRepository(db), ledger, bus, clock, lambda a, p: account)
    assert restored.load() == 1
    assert restored.get(group_id) is not None

    clock.advance(days=8)
    assert restored.purge() == 1
    assert restored.get(group_id) is None

    fresh = OrderGroupEngine(OrderGroupRepository(db), ledger, bus, clock, lambda a, p: account)
    assert fresh.load() == 0
