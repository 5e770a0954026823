from dataclasses import dataclass

from signal_relay.core.events import EventBus
from signal_relay.core.scheduler import MinuteScheduler, VirtualClock, minute_key


@dataclass(frozen=True)
class Ping:
    n: int


@dataclass(frozen=True)
class Pong:
    n: int


# -------------------------------
# Event bus
# -------------------------------

def test_reentrant_publish_is_fifo():
    bus = EventBus()
    seen = []

    def on_ping(event):
        seen.append(("ping", event.n))
        if event.n == 1:
            bus.publish(Pong(1))
            bus.publish(Ping(2))

    bus.subscribe(Ping, on_ping)
    bus.subscribe(Ping, lambda e: seen.append(("ping-2nd", e.n)))
    bus.subscribe(Pong, lambda e: seen.append(("pong", e.n)))

    bus.publish(Ping(1))

    assert seen == [
        ("ping", 1), ("ping-2nd", 1),
        ("pong", 1),
        ("ping", 2), ("ping-2nd", 2),
    ]


def test_failing_handler_does_not_stop_delivery():
    bus = EventBus()
    seen = []

    def broken(event):
        raise RuntimeError("boom")

    bus.subscribe(Ping, broken)
    bus.subscribe(Ping, lambda e: seen.append(e.n))

    bus.publish(Ping(1))
    bus.publish(Ping(2))

    assert seen == [1, 2]


def test_unsubscribe():
    bus = EventBus()
    seen = []
    bus.subscribe(Ping, seen.append)
    bus.unsubscribe(Ping, seen.append)

    bus.publish(Ping(1))

    assert seen == []
    assert bus.handler_count(Ping) == 0


# -------------------------------
# Minute scheduler
# -------------------------------

def test_job_runs_once_per_minute():
    clock = VirtualClock()
    scheduler = MinuteScheduler(clock)
    calls = []
    scheduler.every_minute("reset", calls.append)

    assert scheduler.tick() == ["reset"]
    assert scheduler.tick() == []

    clock.advance(seconds=30)
    assert scheduler.tick() == []

    clock.advance(seconds=30)
    assert scheduler.tick() == ["reset"]
    assert [minute_key(c) for c in calls] == ["2026-01-05T12:00", "2026-01-05T12:01"]


def test_failing_job_is_isolated():
    clock = VirtualClock()
    scheduler = MinuteScheduler(clock)
    calls = []

    def broken(now):
        raise ValueError("bad job")

    scheduler.every_minute("broken", broken)
    scheduler.every_minute("ok", calls.append)

    assert scheduler.tick() == ["ok"]
    assert len(calls) == 1
