#===================================================================
# 🔒 DELIVERY QUEUE CONTRACT
#
# - Two FIFO arenas: pending signals, pending modification Commands
# - Entries are keyed by correlation id and filtered per account
# - Listing never removes; acknowledgment is the ONLY removal path
#   (an agent restart re-reads everything it has not acknowledged)
# - A Command without tickets is never stored
#===================================================================

import threading
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, Generic, List, Optional, TypeVar

from signal_relay.domain.intents import Command, NewOrderIntent
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.utils.utils import new_correlation_id

logger = get_component_logger('delivery')

T = TypeVar("T")


@dataclass
class SignalEnvelope:
    correlation_id: str
    intent: NewOrderIntent
    account: str
    platform: str
    signal_id: Optional[int] = None
    channel_id: str = ""
    relay_id: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    deliveries: int = 0

    @property
    def served_id(self) -> str:
        """Id the agent sees: the relay id when the relay accepted the signal."""
        return self.relay_id or self.correlation_id


@dataclass
class ModificationEnvelope:
    correlation_id: str
    command: Command
    created_at: datetime = field(default_factory=datetime.utcnow)
    deliveries: int = 0


class EnvelopeArena(Generic[T]):
    """Insertion-ordered envelopes keyed by correlation id."""

    def __init__(self):
        self._lock = threading.Lock()
        self._items: "OrderedDict[str, T]" = OrderedDict()

    def add(self, key: str, envelope: T) -> T:
        with self._lock:
            self._items[key] = envelope
        return envelope

    def get(self, key: str) -> Optional[T]:
        with self._lock:
            return self._items.get(key)

    def remove(self, key: str) -> Optional[T]:
        with self._lock:
            return self._items.pop(key, None)

    def select(self, predicate: Callable[[T], bool]) -> List[T]:
        with self._lock:
            return [e for e in self._items.values() if predicate(e)]

    def remove_where(self, predicate: Callable[[T], bool]) -> List[T]:
        with self._lock:
            keys = [k for k, e in self._items.items() if predicate(e)]
            return [self._items.pop(k) for k in keys]

    def clear(self) -> int:
        with self._lock:
            count = len(self._items)
            self._items.clear()
            return count

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


class DeliveryQueue:

    def __init__(self):
        self.signals: EnvelopeArena[SignalEnvelope] = EnvelopeArena()
        self.modifications: EnvelopeArena[ModificationEnvelope] = EnvelopeArena()
        self._served_index: Dict[str, str] = {}     # served id -> correlation id
        self._index_lock = threading.Lock()
        self.processed_count = 0

    # --------------------------------------------------
    # SIGNALS
    # --------------------------------------------------
    def enqueue_signal(
        self,
        intent: NewOrderIntent,
        account: str,
        platform: str,
        signal_id: Optional[int] = None,
        channel_id: str = "",
        relay_id: Optional[str] = None,
    ) -> SignalEnvelope:
        envelope = SignalEnvelope(
            correlation_id=new_correlation_id("sig"),
            intent=intent,
            account=str(account),
            platform=platform,
            signal_id=signal_id,
            channel_id=str(channel_id),
            relay_id=relay_id,
        )
        self.signals.add(envelope.correlation_id, envelope)
        with self._index_lock:
            self._served_index[envelope.served_id] = envelope.correlation_id

        logger.info(
            "📥 Signal queued | id=%s account=%s symbol=%s side=%s tp_level=%s",
            envelope.served_id, account, intent.symbol, intent.side, intent.tp_level,
        )
        return envelope

    def pending_signals(self, account: str) -> List[SignalEnvelope]:
        envelopes = self.signals.select(lambda e: e.account == str(account))
        for e in envelopes:
            e.deliveries += 1
        return envelopes

    def find_signal(self, served_id: str) -> Optional[SignalEnvelope]:
        with self._index_lock:
            key = self._served_index.get(str(served_id))
        return self.signals.get(key) if key else None

    def ack_signal(self, served_id: str) -> Optional[SignalEnvelope]:
        with self._index_lock:
            key = self._served_index.pop(str(served_id), None)
        envelope = self.signals.remove(key) if key else None
        if envelope is not None:
            self.processed_count += 1
        return envelope

    def clear_signals(self) -> int:
        with self._index_lock:
            self._served_index.clear()
        count = self.signals.clear()
        logger.info("🧹 Signal queue cleared | removed=%d", count)
        return count

    # --------------------------------------------------
    # MODIFICATIONS
    # --------------------------------------------------
    def enqueue_command(self, command: Command) -> Optional[ModificationEnvelope]:
        if not command.tickets:
            logger.warning("Refusing command without tickets | %s account=%s", command.kind, command.account)
            return None
        envelope = ModificationEnvelope(correlation_id=new_correlation_id("mod"), command=command)
        self.modifications.add(envelope.correlation_id, envelope)
        logger.info(
            "📥 Command queued | %s account=%s tickets=%s", command.kind, command.account, list(command.tickets),
        )
        return envelope

    def pending_commands(self, account: str) -> List[Command]:
        envelopes = self.modifications.select(
            lambda e: e.command.account == str(account) and bool(e.command.tickets)
        )
        for e in envelopes:
            e.deliveries += 1
        return [e.command for e in envelopes]

    def ack_commands(self, account: str) -> int:
        removed = self.modifications.remove_where(lambda e: e.command.account == str(account))
        return len(removed)

    # --------------------------------------------------
    # STATUS
    # --------------------------------------------------
    def status(self) -> Dict[str, int]:
        return {
            "queue_size": len(self.signals),
            "modifications_queued": len(self.modifications),
            "processed_count": self.processed_count,
        }
