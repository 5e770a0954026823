#!/usr/bin/env python3
"""
Telegram Notifier Module
Relay service notifications (startup, risk limits, trailing, errors)
using plain HTTP requests
"""

import json
import logging
import time
from datetime import datetime
from pathlib import Path
from typing import Literal, Optional

import requests

from signal_relay.core.events import LimitHit, Notification, TrailingStarted

logger = logging.getLogger(__name__)


class TelegramNotifier:
    """Handle all Telegram notifications using simple HTTP requests"""

    def __init__(self, bot_token: str, chat_id: str, log_dir: Optional[str] = None,
                 session: Optional[requests.Session] = None):
        """Initialize Telegram notifier with bot token and chat ID"""
        self.bot_token = bot_token
        self.chat_id = chat_id
        self.base_url = f"https://api.telegram.org/bot{bot_token}"
        self.session = session or requests.Session()
        self.is_connected = False
        self._log_path = self._resolve_log_path(log_dir)

    def test_connection(self) -> bool:
        """Test Telegram bot connection"""
        try:
            response = self.session.get(f"{self.base_url}/getMe", timeout=10)

            if response.status_code == 200:
                bot_info = response.json()
                if bot_info.get('ok'):
                    logger.info(f"Telegram bot connected successfully: {bot_info['result']['first_name']}")
                    self.is_connected = True
                    return True
                logger.error(f"Telegram bot test failed: {bot_info}")
            else:
                logger.error(f"Telegram bot test failed: HTTP {response.status_code}")
                logger.error(f"Response: {response.text}")

        except requests.exceptions.Timeout:
            logger.error("Telegram connection test timeout")
        except requests.exceptions.RequestException as e:
            logger.error(f"Failed to test Telegram connection: {e}")

        self.is_connected = False
        return False

    def send_message(
        self,
        message: str,
        parse_mode: Literal["HTML", "MarkdownV2"] = "HTML"
    ) -> bool:
        """Send message to Telegram using HTTP request"""
        if not self.is_connected:
            logger.warning("Telegram not connected, attempting to reconnect...")
            if not self.test_connection():
                logger.error("Failed to reconnect to Telegram")
                return False

        try:
            data = {
                'chat_id': self.chat_id,
                'text': message,
                'parse_mode': parse_mode
            }
            response = self.session.post(f"{self.base_url}/sendMessage", json=data, timeout=10)

            if response.status_code == 200:
                if response.json().get('ok'):
                    logger.debug("Telegram message sent successfully")
                    self._append_message_log(message)
                    return True
                logger.error(f"Telegram API error: {response.text}")
                return False

            logger.error(f"Failed to send Telegram message: HTTP {response.status_code}")
            logger.error(f"Response: {response.text}")
            return False

        except requests.exceptions.Timeout:
            logger.error("Telegram message timeout")
            return False
        except requests.exceptions.RequestException as e:
            logger.error(f"Telegram request error: {e}")
            return False

    def _resolve_log_path(self, log_dir: Optional[str]) -> Path:
        base = Path(log_dir) if log_dir else Path(__file__).resolve().parents[1] / "logs"
        base.mkdir(parents=True, exist_ok=True)
        return base / "telegram_messages.jsonl"

    def _append_message_log(self, message: str) -> None:
        try:
            payload = {
                "ts": time.time(),
                "message": message,
            }
            with open(self._log_path, "a", encoding="utf-8") as f:
                f.write(json.dumps(payload, ensure_ascii=False) + "\n")
        except OSError as e:
            logger.warning(f"Failed to log telegram message: {e}")

    # ------------------------------------------------------------------
    # LIFECYCLE MESSAGES
    # ------------------------------------------------------------------

    def send_startup_message(self, host: str, port: int, relay_enabled: bool) -> bool:
        """Send relay startup notification"""
        message = (
            f"🚀 <b>SIGNAL RELAY STARTING</b>\n"
            f"📅 {datetime.now().strftime('%A, %d %B %Y')}\n"
            f"⏰ {datetime.now().strftime('%H:%M:%S')}\n"
            f"━━━━━━━━━━━━━━━━━━━━\n\n"
            f"🌐 Agent API: http://{host}:{port}\n"
            f"☁️ Relay: {'✅ Enabled' if relay_enabled else '➖ Disabled'}\n"
            f"🔔 Telegram: ✅ Connected\n\n"
            f"⏳ Please wait for READY confirmation..."
        )
        return self.send_message(message)

    def send_ready_message(self, host: str, port: int, accounts: int) -> bool:
        """Send relay ready notification"""
        message = (
            f"✅ <b>SIGNAL RELAY READY</b>\n"
            f"⏰ {datetime.now().strftime('%H:%M:%S')}\n"
            f"━━━━━━━━━━━━━━━━━━━━\n\n"
            f"🌐 Agent API: http://{host}:{port}\n"
            f"👥 Accounts: {accounts}\n\n"
            f"🎯 <b>Status: Waiting for channel messages...</b>"
        )
        return self.send_message(message)

    def send_error_message(self, title: str, error: str) -> bool:
        """Send generic error notification"""
        message = (
            f"💥 <b>{title}</b>\n"
            f"❌ Error: {error}\n"
            f"⏰ Time: {datetime.now().strftime('%H:%M:%S')}"
        )
        return self.send_message(message)

    # ------------------------------------------------------------------
    # EVENT HANDLERS (subscribed on the relay event bus)
    # ------------------------------------------------------------------

    def on_limit_hit(self, event: LimitHit) -> bool:
        if not event.notify:
            return False
        message = (
            f"🛑 <b>DAILY {event.kind.upper()} LIMIT HIT</b>\n\n"
            f"👤 Account: {event.account} ({event.platform})\n"
            f"⚙️ Action: {event.action.replace('_', ' ')}\n"
            f"📝 {event.message}\n"
            f"⏰ Time: {event.at.strftime('%H:%M:%S')} UTC"
        )
        return self.send_message(message)

    def on_trailing_started(self, event: TrailingStarted) -> bool:
        message = (
            f"📈 <b>TRAILING STARTED</b>\n"
            f"🧩 Group: {event.group_id}\n"
            f"🎯 After TP{event.tp_level}\n"
            f"📏 Distance: {event.distance_pips:g} pips"
        )
        return self.send_message(message)

    def on_notification(self, event: Notification) -> bool:
        icon = {"warning": "⚠️", "error": "❌"}.get(event.level, "ℹ️")
        return self.send_message(f"{icon} <b>{event.title}</b>\n{event.message}")
