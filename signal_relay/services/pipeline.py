#!/usr/bin/env python3
"""
SIGNAL PIPELINE
===============

RawMessage -> classification -> filters -> risk gate -> group expansion -> queue

    monitored? duplicate? channel enabled? forwarded allowed?
        |
        +-- modification (reply / global)  -> confirm gate -> CommandRouter
        |
        +-- UpdateIntent                    -> CommandRouter.route_update
        |
        +-- NewOrderIntent -> FilterChain -> per account:
                RiskGovernor.can_open -> OrderGroupEngine.expand
                -> relay push (optional) -> DeliveryQueue

Messages of one channel are processed in arrival order (one lock for the
whole pipeline); nothing here raises for a business outcome.
"""

import threading
from collections import OrderedDict
from dataclasses import dataclass
from typing import Callable, Iterable, List, Optional, Set, Tuple

from signal_relay.core import channel_profile
from signal_relay.core.account_profile import AccountProfile
from signal_relay.core.channel_profile import ChannelProfile
from signal_relay.core.events import EventBus, ModificationDetected, Notification, SignalAccepted
from signal_relay.core.scheduler import Clock
from signal_relay.delivery.queue import DeliveryQueue
from signal_relay.delivery.relay_client import RelayClient
from signal_relay.domain.intents import Command, ModificationIntent, NewOrderIntent, RawMessage, UpdateIntent
from signal_relay.execution.command_router import CommandRouter
from signal_relay.execution.order_groups import OrderGroupEngine
from signal_relay.filters.chain import FilterChain
from signal_relay.logging.logger_config import get_component_logger
from signal_relay.parsing.classifier import SignalClassifier
from signal_relay.parsing.modification_extractor import ModificationExtractor
from signal_relay.persistence.models import SignalRecord
from signal_relay.persistence.repository import ModificationRepository, SignalRepository
from signal_relay.risk.risk_governor import RiskGovernor

logger = get_component_logger('pipeline')


@dataclass
class PipelineResult:
    outcome: str        # ignored | duplicate | modification | pending_confirmation | update | signal | rejected
    reason: str = ""
    signal_id: Optional[int] = None
    modification_id: Optional[int] = None
    queued: int = 0
    commands: int = 0


class SignalPipeline:

    def __init__(
        self,
        classifier: SignalClassifier,
        filters: FilterChain,
        extractor: ModificationExtractor,
        router: CommandRouter,
        groups: OrderGroupEngine,
        governor: RiskGovernor,
        queue: DeliveryQueue,
        signals: SignalRepository,
        modifications: ModificationRepository,
        channel_lookup: Callable[[str], Optional[ChannelProfile]],
        accounts: Callable[[], Iterable[AccountProfile]],
        bus: EventBus,
        clock: Clock,
        relay: Optional[RelayClient] = None,
        dedup_cache_size: int = 1000,
    ):
        self.classifier = classifier
        self.filters = filters
        self.extractor = extractor
        self.router = router
        self.groups = groups
        self.governor = governor
        self.queue = queue
        self.signals = signals
        self.modifications = modifications
        self.channel_lookup = channel_lookup
        self.accounts = accounts
        self.bus = bus
        self.clock = clock
        self.relay = relay
        self.dedup_cache_size = dedup_cache_size

        self._lock = threading.RLock()
        self._monitored: Set[str] = set()
        self._seen: "OrderedDict[Tuple[str, int], None]" = OrderedDict()

    # ======================================================
    # MONITORING
    # ======================================================
    def start_monitoring(self, channel_ids: Iterable[str]) -> List[str]:
        with self._lock:
            self._monitored = {str(c) for c in channel_ids if str(c).strip()}
            self._seen.clear()
            channels = sorted(self._monitored)
        logger.info("▶️ Monitoring started | channels=%s", channels)
        return channels

    def stop_monitoring(self) -> None:
        with self._lock:
            self._monitored = set()
            self._seen.clear()
        logger.info("⏹️ Monitoring stopped")

    @property
    def monitored_channels(self) -> List[str]:
        with self._lock:
            return sorted(self._monitored)

    def _is_duplicate(self, message: RawMessage) -> bool:
        key = (str(message.channel_id), message.message_id)
        if key in self._seen:
            return True
        self._seen[key] = None
        while len(self._seen) > self.dedup_cache_size:
            self._seen.popitem(last=False)
        return False

    # ======================================================
    # ENTRY POINT
    # ======================================================
    def handle_message(self, message: RawMessage) -> PipelineResult:
        with self._lock:
            channel_id = str(message.channel_id)

            if channel_id not in self._monitored:
                logger.debug("Message from unmonitored channel %s ignored", channel_id)
                return PipelineResult("ignored", "channel not monitored")

            if self._is_duplicate(message):
                logger.debug("Duplicate message ignored | channel=%s msg=%s", channel_id, message.message_id)
                return PipelineResult("duplicate")

            profile = self.channel_lookup(channel_id) or channel_profile.apply_defaults({}, channel_id=channel_id)
            if not profile.is_enabled:
                return PipelineResult("ignored", "channel disabled")

            if message.is_forwarded and not profile.advanced.read_forwarded:
                logger.debug("Forwarded message ignored | channel=%s", channel_id)
                return PipelineResult("ignored", "forwarded")

            intent = None
            mod = self.extractor.extract(message, profile)
            if mod is not None and message.reply_to_id is None and not mod.is_global:
                # a complete new signal posted in the channel is not an edit of the previous one
                intent = self._classify(message, profile)
                if isinstance(intent, NewOrderIntent):
                    logger.debug("Channel text parsed as new signal, modification discarded | msg=%s",
                                 message.message_id)
                    mod = None

            if mod is not None:
                return self._apply_modification(mod, profile)

            if intent is None:
                intent = self._classify(message, profile)
            if intent is None:
                return PipelineResult("ignored", "not a signal")

            if isinstance(intent, UpdateIntent):
                return self._handle_update(message, intent)

            return self._handle_signal(message, intent, profile)

    def _classify(self, message: RawMessage, profile: ChannelProfile):
        return self.classifier.classify(message.text, profile, now=self.clock.now())

    # ======================================================
    # MODIFICATIONS
    # ======================================================
    def _apply_modification(self, mod: ModificationIntent, profile: ChannelProfile) -> PipelineResult:
        self.modifications.record(mod)

        if self.extractor.requires_confirmation(mod, profile):
            logger.info("⏸️ Modification awaiting confirmation | id=%s type=%s", mod.id, mod.modification_type)
            self.bus.publish(ModificationDetected(modification=mod))
            return PipelineResult("pending_confirmation", modification_id=mod.id)

        commands = self.router.route_modification(mod)
        self.bus.publish(ModificationDetected(modification=mod))
        return PipelineResult(
            "modification", reason=mod.status, modification_id=mod.id, commands=len(commands),
        )

    def confirm_modification(self, modification_id: int) -> List[Command]:
        with self._lock:
            mod = self.modifications.get(modification_id)
            if mod is None or mod.status != "pending":
                logger.warning("Nothing to confirm | modification=%s", modification_id)
                return []
            logger.info("✅ Modification confirmed | id=%s type=%s", mod.id, mod.modification_type)
            return self.router.route_modification(mod)

    def reject_modification(self, modification_id: int) -> bool:
        with self._lock:
            mod = self.modifications.get(modification_id)
            if mod is None or mod.status != "pending":
                return False
            logger.info("🚫 Modification rejected | id=%s type=%s", mod.id, mod.modification_type)
            return self.modifications.update_status(modification_id, "ignored")

    # ======================================================
    # UPDATES
    # ======================================================
    def _handle_update(self, message: RawMessage, update: UpdateIntent) -> PipelineResult:
        signal_id = self.signals.record(SignalRecord(
            channel_id=str(message.channel_id),
            message_id=message.message_id,
            raw_text=message.text,
            parsed_data={"update_type": update.update_type, "values": list(update.values),
                         "percentage": update.percentage},
            status="update",
        ))
        commands = self.router.route_update(update, str(message.channel_id), self.accounts())
        logger.info("🔧 Update handled | type=%s channel=%s commands=%d",
                    update.update_type, message.channel_id, len(commands))
        return PipelineResult("update", reason=update.update_type, signal_id=signal_id, commands=len(commands))

    # ======================================================
    # NEW SIGNALS
    # ======================================================
    def _handle_signal(self, message: RawMessage, intent: NewOrderIntent, profile: ChannelProfile) -> PipelineResult:
        channel_id = str(message.channel_id)
        accepted = self.filters.apply(intent, profile)

        if accepted is None:
            self.signals.record(SignalRecord(
                channel_id=channel_id,
                message_id=message.message_id,
                raw_text=message.text,
                parsed_data=intent.to_wire(),
                status="rejected",
            ))
            return PipelineResult("rejected", "filtered")

        signal_id = self.signals.record(SignalRecord(
            channel_id=channel_id,
            message_id=message.message_id,
            raw_text=message.text,
            parsed_data=accepted.to_wire(),
            status="queued",
        ))

        queued = 0
        accounts_used: List[str] = []
        relay_id_for_signal: Optional[str] = None

        for account in self.accounts():
            if not account.is_enabled or not account.accepts_channel(channel_id):
                continue

            decision = self.governor.can_open(account.account_id, account.platform)
            if not decision.allowed:
                logger.info("Signal blocked by risk | account=%s | %s", account.account_id, decision.reason)
                self.bus.publish(Notification(
                    title="Signal blocked",
                    message=f"{accepted.side} {accepted.symbol} | account {account.account_id}: {decision.reason}",
                    level="warning",
                ))
                continue

            for member in self.groups.expand(accepted, account, signal_id):
                relay_id = self._push_to_relay(member, account, signal_id, channel_id)
                relay_id_for_signal = relay_id_for_signal or relay_id
                self.queue.enqueue_signal(
                    member,
                    account=account.account_id,
                    platform=account.platform,
                    signal_id=signal_id,
                    channel_id=channel_id,
                    relay_id=relay_id,
                )
                queued += 1
            accounts_used.append(account.account_id)

        if signal_id is not None and relay_id_for_signal:
            self.signals.set_relay_id(signal_id, relay_id_for_signal)

        if not queued and signal_id is not None:
            self.signals.update_status(signal_id, "blocked")
            logger.info("Signal accepted but nothing queued | channel=%s symbol=%s", channel_id, accepted.symbol)

        logger.info(
            "✅ Signal accepted | id=%s %s %s entry=%s sl=%s tps=%s queued=%d",
            signal_id, accepted.side, accepted.symbol, accepted.entry_price,
            accepted.stop_loss, accepted.take_profits, queued,
        )
        self.bus.publish(SignalAccepted(
            signal_id=signal_id, channel_id=channel_id, intent=accepted, accounts=accounts_used,
        ))
        return PipelineResult("signal", signal_id=signal_id, queued=queued)

    def _push_to_relay(
        self,
        intent: NewOrderIntent,
        account: AccountProfile,
        signal_id: Optional[int],
        channel_id: str,
    ) -> Optional[str]:
        if self.relay is None:
            return None
        payload = intent.to_wire()
        payload.update({
            "accountNumber": account.account_id,
            "platform": account.platform,
            "localSignalId": signal_id,
            "channelId": channel_id,
            "signalGroupId": intent.group_id,
        })
        relay_id = self.relay.push_signal(payload)
        if relay_id is None:
            logger.warning("Relay push failed, serving local id | signal=%s account=%s", signal_id, account.account_id)
        return relay_id
