import pytest
from types import SimpleNamespace
from unittest.mock import MagicMock

from signal_relay.core import account_profile, channel_profile
from signal_relay.core.events import EventBus
from signal_relay.core.scheduler import VirtualClock
from signal_relay.domain.intents import RawMessage
from signal_relay.persistence.database import Database
from signal_relay.persistence.models import OrderRecord
from signal_relay.persistence.repository import ModificationRepository, OrderLedger, SignalRepository
from signal_relay.services.relay_service import RelayService

CHANNEL = "chan1"
ACCOUNT = "5001"

GOLD_SIGNAL = "SELL XAUUSD 4329-4332\nSL 4335\nTP1 4325\nTP2 4320\nTP3 4315"


def make_config(**overrides):
    """Minimal config surface RelayService / AgentApp read."""
    values = dict(
        db_path=":memory:",
        group_retention_days=7,
        dedup_cache_size=1000,
        account_balance=10000.0,
        risk_check_seconds=15,
        relay_sync_seconds=60,
        webhook_secret=None,
        relay_url=None,
        relay_token=None,
    )
    values.update(overrides)
    config = SimpleNamespace(**values)
    config.is_relay_enabled = lambda: bool(config.relay_url and config.relay_token)
    config.get_relay_config = lambda: {"base_url": config.relay_url, "token": config.relay_token}
    return config


def make_account(account_id=ACCOUNT, **raw):
    return account_profile.apply_defaults(raw, account_id=account_id)


def make_channel(channel_id=CHANNEL, **raw):
    return channel_profile.apply_defaults(raw, channel_id=channel_id)


def make_order(ticket, account_id=ACCOUNT, **fields):
    values = dict(
        ticket=str(ticket) if ticket is not None else None,
        signal_id=None,
        channel_id=CHANNEL,
        account_id=account_id,
        platform="MT5",
        symbol="EURUSD",
        side="BUY",
        entry_price=1.1000,
        stop_loss=1.0950,
        take_profits=[1.1100],
        lot_size=0.01,
        status="open",
    )
    values.update(fields)
    return OrderRecord(**values)


def message(message_id, text, channel_id=CHANNEL, **kwargs):
    return RawMessage(channel_id=channel_id, message_id=message_id, text=text, **kwargs)


class EventRecorder:
    """Subscribes to the given event types and keeps everything published."""

    def __init__(self, bus, *event_types):
        self.events = []
        for event_type in event_types:
            bus.subscribe(event_type, self.events.append)

    def of(self, event_type):
        return [e for e in self.events if isinstance(e, event_type)]


# -------------------------------
# Storage / core fixtures
# -------------------------------

@pytest.fixture
def db():
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def clock():
    return VirtualClock()


@pytest.fixture
def bus():
    return EventBus()


@pytest.fixture
def ledger(db):
    return OrderLedger(db)


@pytest.fixture
def signals(db):
    return SignalRepository(db)


@pytest.fixture
def modifications(db):
    return ModificationRepository(db)


@pytest.fixture
def relay_client():
    client = MagicMock()
    client.push_signal.return_value = None
    client.push_modification.return_value = True
    client.acknowledge.return_value = True
    client.fetch_executed.return_value = []
    return client


# -------------------------------
# Full service
# -------------------------------

@pytest.fixture
def service(clock):
    svc = RelayService(make_config(), clock=clock, database=Database(":memory:"))
    svc.profiles.save_account(make_account(lot_size=0.1))
    svc.start()
    svc.pipeline.start_monitoring([CHANNEL])
    yield svc
    svc.shutdown()
