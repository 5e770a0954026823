#!/usr/bin/env python3
"""
AGENT HTTP SERVICE
==================

Responsibilities:
- Execution agent pull / acknowledge protocol
- Close reports from agents (feeds risk + order groups)
- Channel message ingestion from the listener process
- Monitoring control, confirmation of gated modifications
- Profile storage, risk / queue diagnostics, health

STRICT RULES:
- Routes are thin: validation here, semantics in RelayService components
- NO pipeline state mutation outside the components
"""

import logging
from dataclasses import asdict
from datetime import datetime

from flask import Flask, jsonify, request
from pydantic import BaseModel, ValidationError

from signal_relay.api.http.schemas import (
    IncomingMessage,
    ModificationAck,
    MonitoringRequest,
    SignalAck,
    TradeClosed,
)
from signal_relay.core import account_profile, channel_profile
from signal_relay.domain.intents import RawMessage
from signal_relay.utils.utils import (
    create_response_dict,
    log_exception,
    parse_json_safely,
    truncate_string,
    validate_webhook_signature,
)

logger = logging.getLogger(__name__)

ACCOUNT_REQUIRED = {"error": "Account number required"}


def _validation_error(e: ValidationError):
    return jsonify({
        "error": "Invalid payload",
        "details": e.errors(include_url=False, include_context=False, include_input=False),
    }), 400


def _internal_error(name: str, e: Exception):
    log_exception(name, e)
    return jsonify(
        create_response_dict(
            status="error",
            message="Internal relay error",
        )
    ), 500


class AgentApp:
    """
    Agent-facing Flask application over a RelayService.
    """

    def __init__(self, service):
        self.service = service
        self.config = service.config
        self.app = Flask(__name__)
        self._register_routes()

    def _body(self, model: type) -> BaseModel:
        return model.model_validate(request.get_json(force=True, silent=True) or {})

    # ------------------------------------------------------------------
    # ROUTES
    # ------------------------------------------------------------------

    def _register_routes(self):
        svc = self.service

        # -------------------------------
        # Pending signals (agent pull)
        # -------------------------------
        @self.app.route("/api/signals/pending", methods=["GET"])
        def pending_signals():
            account = request.args.get("account", "").strip()
            if not account:
                return jsonify(ACCOUNT_REQUIRED), 400
            try:
                return jsonify(svc.protocol.list_signals(account)), 200
            except Exception as e:
                return _internal_error("pending_signals", e)

        # -------------------------------
        # Signal acknowledgment
        # -------------------------------
        @self.app.route("/api/signals/ack", methods=["POST"])
        @self.app.route("/api/signals/acknowledge", methods=["POST"])
        def acknowledge_signal():
            try:
                ack = self._body(SignalAck)
                result = svc.protocol.ack_signal(ack.signalId, ack.accountNumber, ack.status, ack.message)
                return jsonify(result), 200
            except ValidationError as e:
                return _validation_error(e)
            except Exception as e:
                return _internal_error("acknowledge_signal", e)

        # -------------------------------
        # Pending modifications (agent pull)
        # -------------------------------
        @self.app.route("/api/modifications/pending", methods=["GET"])
        def pending_modifications():
            account = request.args.get("account", "").strip()
            if not account:
                return jsonify(ACCOUNT_REQUIRED), 400
            try:
                return jsonify(svc.protocol.list_modifications(account)), 200
            except Exception as e:
                return _internal_error("pending_modifications", e)

        # -------------------------------
        # Modification acknowledgment
        # -------------------------------
        @self.app.route("/api/modifications/ack", methods=["POST"])
        @self.app.route("/api/modifications/acknowledge", methods=["POST"])
        def acknowledge_modifications():
            try:
                ack = self._body(ModificationAck)
                return jsonify(svc.protocol.ack_modifications(ack.accountNumber, ack.trades, ack.status)), 200
            except ValidationError as e:
                return _validation_error(e)
            except Exception as e:
                return _internal_error("acknowledge_modifications", e)

        # -------------------------------
        # Gated modification decisions
        # -------------------------------
        @self.app.route("/api/modifications/awaiting", methods=["GET"])
        def awaiting_modifications():
            try:
                awaiting = [
                    {
                        "id": m.id,
                        "type": m.modification_type,
                        "signalRef": m.signal_ref,
                        "channelId": m.channel_id,
                        "price": m.price,
                        "pips": m.pips,
                        "percentage": m.percentage,
                        "text": truncate_string(m.raw_text, 200),
                    }
                    for m in svc.modifications.pending()
                ]
                return jsonify({"modifications": awaiting}), 200
            except Exception as e:
                return _internal_error("awaiting_modifications", e)

        @self.app.route("/api/modifications/<int:modification_id>/confirm", methods=["POST"])
        def confirm_modification(modification_id):
            try:
                commands = svc.pipeline.confirm_modification(modification_id)
                return jsonify({"success": True, "commands": [c.to_wire() for c in commands]}), 200
            except Exception as e:
                return _internal_error("confirm_modification", e)

        @self.app.route("/api/modifications/<int:modification_id>/reject", methods=["POST"])
        def reject_modification(modification_id):
            try:
                rejected = svc.pipeline.reject_modification(modification_id)
                return jsonify({"success": rejected}), 200 if rejected else 404
            except Exception as e:
                return _internal_error("reject_modification", e)

        # -------------------------------
        # Close reports
        # -------------------------------
        @self.app.route("/api/trades/closed", methods=["POST"])
        def trade_closed():
            try:
                report = self._body(TradeClosed)
                result = svc.protocol.report_closed(
                    report.accountNumber, report.platform, report.ticket, report.profit, report.reason,
                )
                return jsonify(result), 200 if result.get("success") else 404
            except ValidationError as e:
                return _validation_error(e)
            except Exception as e:
                return _internal_error("trade_closed", e)

        # -------------------------------
        # Risk status
        # -------------------------------
        @self.app.route("/api/risk/status", methods=["GET"])
        def risk_status():
            account = request.args.get("account", "").strip()
            if not account:
                return jsonify(ACCOUNT_REQUIRED), 400
            platform = request.args.get("platform", "MT5").strip() or "MT5"
            try:
                return jsonify(svc.governor.get_status(account, platform)), 200
            except Exception as e:
                return _internal_error("risk_status", e)

        # -------------------------------
        # Queue status / clear
        # -------------------------------
        @self.app.route("/api/signals/status", methods=["GET"])
        def signals_status():
            try:
                return jsonify(svc.queue.status()), 200
            except Exception as e:
                return _internal_error("signals_status", e)

        @self.app.route("/api/signals/clear", methods=["POST"])
        def signals_clear():
            try:
                cleared = svc.queue.clear_signals()
                return jsonify({"success": True, "cleared": cleared}), 200
            except Exception as e:
                return _internal_error("signals_clear", e)

        # -------------------------------
        # Message ingestion (listener)
        # -------------------------------
        @self.app.route("/api/messages", methods=["POST"])
        def ingest_message():
            try:
                payload = request.get_data(as_text=True)
                signature = request.headers.get("X-Signature", "")

                if not validate_webhook_signature(payload, signature, self.config.webhook_secret):
                    return jsonify({"error": "Invalid signature"}), 401

                data, parse_error = parse_json_safely(payload)
                if parse_error:
                    return jsonify({"error": parse_error}), 400

                incoming = IncomingMessage.model_validate(data or {})
                logger.debug("Message received | channel=%s text=%s",
                             incoming.channel_id, truncate_string(incoming.text, 80))

                result = svc.pipeline.handle_message(RawMessage(
                    channel_id=incoming.channel_id,
                    message_id=incoming.message_id,
                    text=incoming.text,
                    reply_to_id=incoming.reply_to_id,
                    is_forwarded=incoming.is_forwarded,
                    channel_name=incoming.channel_name,
                ))
                return jsonify(asdict(result)), 200

            except ValidationError as e:
                return _validation_error(e)
            except Exception as e:
                return _internal_error("ingest_message", e)

        # -------------------------------
        # Monitoring control
        # -------------------------------
        @self.app.route("/api/monitoring", methods=["GET", "POST"])
        def monitoring():
            try:
                if request.method == "GET":
                    channels = svc.pipeline.monitored_channels
                else:
                    body = self._body(MonitoringRequest)
                    if body.channels:
                        channels = svc.pipeline.start_monitoring(body.channels)
                    else:
                        svc.pipeline.stop_monitoring()
                        channels = []
                return jsonify({"success": True, "monitoring": bool(channels), "channels": channels}), 200

            except ValidationError as e:
                return _validation_error(e)
            except Exception as e:
                return _internal_error("monitoring", e)

        # -------------------------------
        # Profiles
        # -------------------------------
        @self.app.route("/api/profiles/channels/<channel_id>", methods=["GET", "PUT"])
        def channel_profile_route(channel_id):
            try:
                if request.method == "PUT":
                    profile = channel_profile.apply_defaults(request.get_json(force=True, silent=True) or {},
                                                             channel_id=channel_id)
                    if not svc.profiles.save_channel(profile):
                        return jsonify(create_response_dict("error", "Profile not saved")), 500
                    return jsonify(profile.to_dict()), 200

                profile = svc.profiles.get_channel(channel_id)
                if profile is None:
                    return jsonify({"error": "Channel profile not found"}), 404
                return jsonify(profile.to_dict()), 200
            except Exception as e:
                return _internal_error("channel_profile", e)

        @self.app.route("/api/profiles/accounts/<platform>/<account_id>", methods=["GET", "PUT"])
        def account_profile_route(platform, account_id):
            try:
                if request.method == "PUT":
                    profile = account_profile.apply_defaults(request.get_json(force=True, silent=True) or {},
                                                             account_id=account_id, platform=platform)
                    if not svc.profiles.save_account(profile):
                        return jsonify(create_response_dict("error", "Profile not saved")), 500
                    return jsonify(profile.to_dict()), 200

                profile = svc.profiles.get_account(account_id, platform)
                if profile is None:
                    return jsonify({"error": "Account profile not found"}), 404
                return jsonify(profile.to_dict()), 200
            except Exception as e:
                return _internal_error("account_profile", e)

        # -------------------------------
        # Health Check
        # -------------------------------
        @self.app.route("/api/health", methods=["GET"])
        @self.app.route("/health", methods=["GET"])
        def health():
            try:
                queue = svc.queue.status()
                return jsonify(
                    {
                        "status": "healthy",
                        "monitoring": svc.pipeline.monitored_channels,
                        "relay": "enabled" if svc.relay else "disabled",
                        "queue_size": queue["queue_size"],
                        "modifications_queued": queue["modifications_queued"],
                        "active_groups": len(svc.groups.active_groups()),
                        "timestamp": datetime.now().isoformat(),
                    }
                ), 200
            except Exception as e:
                log_exception("health", e)
                return jsonify(
                    create_response_dict(
                        status="unhealthy",
                        message=str(e),
                    )
                ), 500

    def get_app(self):
        return self.app
