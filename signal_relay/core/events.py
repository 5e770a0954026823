#!/usr/bin/env python3
"""
INTERNAL EVENT BUS
==================

Typed events between pipeline components.

Rules:
- Handlers run synchronously, in subscription order
- A publish from inside a handler is queued and delivered after the
  current dispatch finishes (FIFO, never nested)
- A failing handler is logged and does not stop the others
- Dispatch is serialized across threads (HTTP workers, scheduler)
"""

import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Deque, Dict, List, Optional, Type

from signal_relay.domain.intents import Command, ModificationIntent, NewOrderIntent
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.utils.utils import log_exception

logger = get_component_logger('core')

Handler = Callable[[Any], None]


# ======================================================
# EVENTS
# ======================================================

@dataclass(frozen=True)
class SignalAccepted:
    signal_id: Optional[int]
    channel_id: str
    intent: NewOrderIntent
    accounts: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class ModificationDetected:
    modification: ModificationIntent


@dataclass(frozen=True)
class OrderOpened:
    account: str
    platform: str
    ticket: str
    symbol: str = ""
    signal_id: Optional[int] = None
    group_id: Optional[str] = None
    tp_level: Optional[int] = None


@dataclass(frozen=True)
class OrderClosed:
    account: str
    platform: str
    ticket: str
    profit: float = 0.0
    reason: str = ""
    group_id: Optional[str] = None
    tp_level: Optional[int] = None


@dataclass(frozen=True)
class TargetHit:
    group_id: str
    tp_level: int
    account: str
    platform: str
    ticket: str = ""
    profit: float = 0.0


@dataclass(frozen=True)
class StopHit:
    group_id: str
    account: str
    platform: str
    ticket: str = ""


@dataclass(frozen=True)
class LimitHit:
    account: str
    platform: str
    kind: str               # profit | loss | trades
    action: str             # close_all | stop_new_trades | notify_only
    message: str
    at: datetime = field(default_factory=datetime.utcnow)
    notify: bool = True


@dataclass(frozen=True)
class StatsReset:
    account: str
    platform: str


@dataclass(frozen=True)
class TrailingStarted:
    group_id: str
    tp_level: int
    distance_pips: float


@dataclass(frozen=True)
class CommandIssued:
    command: Command
    source: str             # router | risk_governor | order_groups


@dataclass(frozen=True)
class Notification:
    title: str
    message: str
    level: str = "info"


# ======================================================
# BUS
# ======================================================

class EventBus:

    def __init__(self):
        self._lock = threading.RLock()
        self._handlers: Dict[Type, List[Handler]] = defaultdict(list)
        self._pending: Deque[Any] = deque()
        self._dispatching = False

    def subscribe(self, event_type: Type, handler: Handler) -> None:
        with self._lock:
            self._handlers[event_type].append(handler)

    def unsubscribe(self, event_type: Type, handler: Handler) -> None:
        with self._lock:
            if handler in self._handlers[event_type]:
                self._handlers[event_type].remove(handler)

    def publish(self, event: Any) -> None:
        with self._lock:
            self._pending.append(event)
            if self._dispatching:
                # re-entrant publish: drained by the outer loop
                return

            self._dispatching = True
            try:
                while self._pending:
                    current = self._pending.popleft()
                    for handler in list(self._handlers.get(type(current), ())):
                        try:
                            handler(current)
                        except Exception as e:
                            log_exception(f"event_handler[{type(current).__name__}]", e)
            finally:
                self._dispatching = False

    def handler_count(self, event_type: Type) -> int:
        return len(self._handlers.get(event_type, ()))
