#!/usr/bin/env python3
"""
SIGNAL RELAY ENTRY POINT
========================

Purpose:
- Accept channel messages from the listener process and turn them into
  order intents / commands for execution agents
- Serve the agent pull / acknowledge protocol
- Enforce per-account daily risk limits
- Run periodic jobs (risk reset, relay sync, group cleanup)

STRICT RULES:
- SINGLE RelayService instance per process
- Waitress owns the main thread; periodic jobs run in a daemon thread
"""

import argparse
import logging
import os
import signal
import sys
import threading
import time
from pathlib import Path
from typing import Optional

from waitress import serve

from notifications.telegram import TelegramNotifier
from signal_relay.api.http.agent_app import AgentApp
from signal_relay.core.config import Config
from signal_relay.logging.logger_config import get_component_logger, setup_application_logging
from signal_relay.services.relay_service import RelayService
from signal_relay.utils.utils import log_exception

# ---------------------------------------------------------------------
# GLOBALS (FOR SIGNAL HANDLING)
# ---------------------------------------------------------------------
service_instance: Optional[RelayService] = None
logger: Optional[logging.Logger] = None
shutdown_event = threading.Event()


# ---------------------------------------------------------------------
# GRACEFUL SHUTDOWN HANDLER (SYSTEMD SAFE)
# ---------------------------------------------------------------------
def signal_handler(signum, frame):
    shutdown_start = time.time()

    if logger:
        logger.warning(f"🛑 Received shutdown signal: {signum}")

    shutdown_event.set()

    if service_instance:
        try:
            service_instance.shutdown()
        except Exception as e:
            if logger:
                logger.error(f"❌ Error shutting down relay service: {e}")

    if logger:
        logger.info(f"✅ Graceful shutdown complete in {time.time() - shutdown_start:.1f}s")

    sys.exit(0)


# ---------------------------------------------------------------------
# MAIN
# ---------------------------------------------------------------------
def main():
    global service_instance, logger

    parser = argparse.ArgumentParser(description="Signal Relay")
    parser.add_argument(
        "--env",
        type=str,
        default=None,
        help="Path to .env file (default: config_env/primary.env)"
    )
    parser.add_argument(
        "--channels",
        type=str,
        default="",
        help="Comma separated channel ids to monitor at startup"
    )
    args = parser.parse_args()

    env_path = None
    if args.env:
        env_path = Path(args.env)
        if not env_path.is_absolute():
            env_path = Path(__file__).resolve().parent / env_path

    notifier: Optional[TelegramNotifier] = None

    try:
        # -------------------------------------------------
        # CONFIG + LOGGING
        # -------------------------------------------------
        config = Config(env_path=env_path)

        setup_application_logging(
            log_dir=config.log_dir,
            level=config.log_level,
            max_bytes=50 * 1024 * 1024,  # 50 MB per file
            backup_count=10,
        )
        logger = get_component_logger('relay_service')

        logger.info("=" * 70)
        logger.info("🚀 STARTING SIGNAL RELAY")
        logger.info("=" * 70)
        logger.info(f"PID: {os.getpid()}")
        logger.info(f"Python: {sys.version}")
        logger.info("Config: %s", config.get_config_summary())

        server_cfg = config.get_server_config()

        # -------------------------------------------------
        # TELEGRAM (OPTIONAL)
        # -------------------------------------------------
        if config.is_telegram_enabled():
            telegram_cfg = config.get_telegram_config()
            notifier = TelegramNotifier(
                telegram_cfg["bot_token"], telegram_cfg["chat_id"], log_dir=config.log_dir,
            )
            if not notifier.test_connection():
                logger.warning("⚠️ Telegram connection failed, notifications will retry on send")

        # -------------------------------------------------
        # RELAY SERVICE (SINGLE INSTANCE)
        # -------------------------------------------------
        service_instance = RelayService(config, notifier=notifier)
        service_instance.start()

        signal.signal(signal.SIGINT, signal_handler)
        signal.signal(signal.SIGTERM, signal_handler)
        logger.info("Signal handlers installed")

        if notifier:
            notifier.send_startup_message(
                host=server_cfg["host"],
                port=server_cfg["port"],
                relay_enabled=config.is_relay_enabled(),
            )

        channels = [c.strip() for c in args.channels.split(",") if c.strip()]
        if channels:
            service_instance.pipeline.start_monitoring(channels)

        service_instance.start_scheduler()

        # -------------------------------------------------
        # AGENT HTTP SERVICE (FLASK + WAITRESS)
        # -------------------------------------------------
        flask_app = AgentApp(service_instance).get_app()

        logger.info("Agent service configuration:")
        logger.info(f"  Host       : {server_cfg['host']}")
        logger.info(f"  Port       : {server_cfg['port']}")
        logger.info(f"  Threads    : {server_cfg['threads']}")
        logger.info(f"  Relay      : {'ENABLED' if config.is_relay_enabled() else 'DISABLED'}")
        logger.info(f"  Telegram   : {'ENABLED' if notifier else 'DISABLED'}")

        if notifier:
            notifier.send_ready_message(
                host=server_cfg["host"],
                port=server_cfg["port"],
                accounts=len(service_instance.profiles.list_accounts()),
            )

        logger.info("=" * 70)
        logger.info("✅ SIGNAL RELAY READY | SERVING AGENTS")
        logger.info("=" * 70)

        serve(
            flask_app,
            host=server_cfg["host"],
            port=server_cfg["port"],
            threads=server_cfg["threads"],
            connection_limit=1000,
            cleanup_interval=30,
            channel_timeout=120,
            max_request_body_size=1048576,  # 1 MB
            expose_tracebacks=False,
            ident="Signal-Relay/1.0",
        )

    except KeyboardInterrupt:
        if logger:
            logger.info("Received keyboard interrupt")
        shutdown_event.set()

    except Exception as exc:
        if logger:
            log_exception("relay_service.main", exc)
            logger.critical(f"FATAL ERROR: {exc}", exc_info=True)
        else:
            print(f"CRITICAL ERROR: {exc}")

        if notifier:
            try:
                notifier.send_error_message("🚨 SIGNAL RELAY CRASHED", str(exc))
            except Exception as notify_error:
                if logger:
                    logger.error(f"Failed to send crash notification via telegram: {notify_error}")

        sys.exit(1)

    finally:
        if logger:
            logger.info("🏁 Signal relay stopped")


# ---------------------------------------------------------------------
# ENTRY POINT
# ---------------------------------------------------------------------
if __name__ == "__main__":
    main()
