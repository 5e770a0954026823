#!/usr/bin/env python3
"""
RELAY SERVICE (COMPOSITION ROOT)
================================

Builds every component in dependency order and wires the event bus.
One instance per process, created by main.py; tests build their own with
an in-memory database and a VirtualClock.

Bus wiring:
    CommandIssued    -> DeliveryQueue (+ relay push)
    OrderOpened      -> RiskGovernor, OrderGroupEngine
    OrderClosed      -> RiskGovernor, OrderGroupEngine
    TargetHit        -> OrderGroupEngine
    StopHit          -> OrderGroupEngine
    LimitHit / TrailingStarted / Notification -> TelegramNotifier (optional)
"""

import threading
from typing import Optional

import schedule

from signal_relay.core.config import Config
from signal_relay.core.events import (
    CommandIssued,
    EventBus,
    LimitHit,
    Notification,
    OrderClosed,
    OrderOpened,
    StopHit,
    TargetHit,
    TrailingStarted,
)
from signal_relay.core.scheduler import Clock, MinuteScheduler, SystemClock
from signal_relay.delivery.agent_protocol import AgentProtocol
from signal_relay.delivery.queue import DeliveryQueue
from signal_relay.delivery.relay_client import RelayClient
from signal_relay.delivery.relay_sync import RelaySync
from signal_relay.execution.command_router import CommandRouter
from signal_relay.execution.order_groups import OrderGroupEngine
from signal_relay.filters.chain import FilterChain
from signal_relay.logging.logger_config import ServiceLogger, get_component_logger
from signal_relay.parsing.classifier import SignalClassifier
from signal_relay.parsing.fallback_parser import FallbackParser
from signal_relay.parsing.modification_extractor import ModificationExtractor
from signal_relay.persistence.database import Database
from signal_relay.persistence.repository import ModificationRepository, OrderLedger, SignalRepository
from signal_relay.persistence.state_repository import OrderGroupRepository, ProfileRepository, RiskStatsRepository
from signal_relay.risk.risk_governor import BalanceProvider, RiskGovernor
from signal_relay.services.pipeline import SignalPipeline
from signal_relay.utils.utils import log_exception

logger = get_component_logger('relay_service')


class RelayService:

    def __init__(
        self,
        config: Config,
        clock: Optional[Clock] = None,
        database: Optional[Database] = None,
        relay_client: Optional[RelayClient] = None,
        notifier=None,
        balance_provider: Optional[BalanceProvider] = None,
    ):
        self.config = config
        self.clock = clock or SystemClock()
        self.service_log = ServiceLogger('relay_service')

        # ---------------- Storage ----------------
        self.db = database or Database(config.db_path)
        self.signals = SignalRepository(self.db)
        self.ledger = OrderLedger(self.db)
        self.modifications = ModificationRepository(self.db)
        self.group_repository = OrderGroupRepository(self.db)
        self.risk_stats = RiskStatsRepository(self.db)
        self.profiles = ProfileRepository(self.db)

        # ---------------- Messaging / delivery ----------------
        self.bus = EventBus()
        self.queue = DeliveryQueue()
        if relay_client is None and config.is_relay_enabled():
            relay_cfg = config.get_relay_config()
            relay_client = RelayClient(relay_cfg["base_url"], relay_cfg["token"])
        self.relay = relay_client
        self.notifier = notifier

        # ---------------- Domain services ----------------
        self.balance_provider: BalanceProvider = balance_provider or self._configured_balance
        self.router = CommandRouter(self.ledger, self.modifications, self.bus)
        self.groups = OrderGroupEngine(
            self.group_repository,
            self.ledger,
            self.bus,
            self.clock,
            profile_lookup=self.profiles.get_account,
            retention_days=config.group_retention_days,
        )
        self.governor = RiskGovernor(
            self.risk_stats,
            self.ledger,
            self.bus,
            self.clock,
            accounts=self.profiles.list_accounts,
            balance_provider=self.balance_provider,
        )
        self.protocol = AgentProtocol(self.queue, self.ledger, self.bus, relay=self.relay)
        self.relay_sync = RelaySync(self.relay, self.ledger, self.profiles.list_accounts) if self.relay else None

        self.pipeline = SignalPipeline(
            classifier=SignalClassifier(FallbackParser()),
            filters=FilterChain(),
            extractor=ModificationExtractor(self.signals),
            router=self.router,
            groups=self.groups,
            governor=self.governor,
            queue=self.queue,
            signals=self.signals,
            modifications=self.modifications,
            channel_lookup=self.profiles.get_channel,
            accounts=self.profiles.list_accounts,
            bus=self.bus,
            clock=self.clock,
            relay=self.relay,
            dedup_cache_size=config.dedup_cache_size,
        )

        self.scheduler = MinuteScheduler(self.clock)
        self.scheduler.every_minute("risk_reset", self.governor.check_resets)
        self.jobs = schedule.Scheduler()
        self._shutdown_event = threading.Event()

        self._wire()

    # --------------------------------------------------
    # WIRING
    # --------------------------------------------------
    def _wire(self) -> None:
        bus = self.bus
        bus.subscribe(CommandIssued, self._deliver_command)
        bus.subscribe(OrderOpened, self.governor.on_trade_opened)
        bus.subscribe(OrderOpened, self.groups.on_order_opened)
        bus.subscribe(OrderClosed, self.governor.on_trade_closed)
        bus.subscribe(OrderClosed, self.groups.on_order_closed)
        bus.subscribe(TargetHit, self.groups.on_target_hit)
        bus.subscribe(StopHit, self.groups.on_stop_hit)

        if self.notifier is not None:
            bus.subscribe(LimitHit, self.notifier.on_limit_hit)
            bus.subscribe(TrailingStarted, self.notifier.on_trailing_started)
            bus.subscribe(Notification, self.notifier.on_notification)

    def _deliver_command(self, event: CommandIssued) -> None:
        command = event.command
        envelope = self.queue.enqueue_command(command)
        if envelope is None:
            return
        self._track_levels(command)
        if self.relay is None:
            return
        if not self.relay.push_modification(command.to_wire()):
            logger.warning("Relay modification push failed | %s account=%s", command.kind, command.account)

    def _track_levels(self, command) -> None:
        # ledger mirrors what the agent has been told
        if command.kind == "modify_sl" and isinstance(command.new_value, (int, float)):
            for ticket in command.tickets:
                self.ledger.update_stop_loss(ticket, command.account, command.new_value)
        elif command.kind == "delete":
            for ticket in command.tickets:
                self.ledger.remove_pending(ticket, command.account)

    def _configured_balance(self, account: str, platform: str) -> float:
        return self.config.account_balance

    # --------------------------------------------------
    # LIFECYCLE
    # --------------------------------------------------
    def start(self) -> None:
        self.service_log.startup("Relay service starting")
        restored = self.groups.load()
        logger.info(
            "Relay service ready | relay=%s telegram=%s groups_restored=%d",
            "ENABLED" if self.relay else "DISABLED",
            "ENABLED" if self.notifier else "DISABLED",
            restored,
        )

    def shutdown(self) -> None:
        self._shutdown_event.set()
        self.jobs.clear()
        self.pipeline.stop_monitoring()
        self.db.close()
        self.service_log.shutdown("Relay service stopped")

    # --------------------------------------------------
    # PERIODIC JOBS (schedule library, daemon thread)
    # --------------------------------------------------
    def start_scheduler(self, poll_seconds: float = 1.0) -> threading.Thread:
        self.jobs.every(self.config.risk_check_seconds).seconds.do(self._guarded, "risk_reset", self.tick)
        if self.relay_sync is not None:
            self.jobs.every(self.config.relay_sync_seconds).seconds.do(self._guarded, "relay_sync", self.sync_relay)
        self.jobs.every(1).hours.do(self._guarded, "group_cleanup", self.cleanup_groups)

        def run_scheduler():
            logger.info("Scheduler started | jobs=%d", len(self.jobs.get_jobs()))
            while not self._shutdown_event.is_set():
                self.jobs.run_pending()
                self._shutdown_event.wait(poll_seconds)
            logger.info("Scheduler stopped")

        thread = threading.Thread(target=run_scheduler, daemon=True, name="RelayScheduler")
        thread.start()
        return thread

    @staticmethod
    def _guarded(name: str, job) -> None:
        try:
            job()
        except Exception as e:
            log_exception(f"scheduler.{name}", e)

    def tick(self) -> None:
        self.scheduler.tick()

    def sync_relay(self) -> int:
        if self.relay_sync is None:
            return 0
        return self.relay_sync.sync()

    def cleanup_groups(self) -> int:
        return self.groups.purge()

