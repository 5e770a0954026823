#!/usr/bin/env python3
"""
Configuration Management Module

Responsibilities:
- Load environment variables exactly ONCE
- Validate values with range checks
- Provide structured config access
- Secure credential handling (relay token, Telegram token, webhook secret)

🔒 CONFIG RULES
Create ONCE in main.py and inject everywhere.
No component reads os.environ directly.
Per-channel and per-account behaviour lives in profiles, not here.
"""
import os
import logging
from pathlib import Path
from dotenv import load_dotenv
from typing import Optional, Dict, Any

logger = logging.getLogger(__name__)


class ConfigValidationError(Exception):
    """Raised when configuration validation fails."""
    pass


class Config:
    """
    Central configuration object.

    Create ONCE in main.py and inject/pass everywhere.
    """

    def __init__(self, env_path: Optional[Path] = None):
        self.env_path: Path = env_path or (
            Path(__file__).resolve().parents[2] / "config_env" / "primary.env"
        )
        self._load_env()
        self._load_values()
        self._validate()

    # ------------------------------------------------------------------
    # ENV LOADING
    # ------------------------------------------------------------------

    def _load_env(self) -> None:
        """Load environment file with security checks."""
        if not self.env_path.exists():
            raise FileNotFoundError(f".env file not found: {self.env_path}")

        if os.name != 'nt':
            mode = self.env_path.stat().st_mode
            if mode & 0o004:  # World-readable
                logger.warning(
                    "⚠️ SECURITY: Environment file is world-readable. "
                    "Run: chmod 600 %s", self.env_path
                )

        load_dotenv(self.env_path)
        logger.info("Environment configuration loaded successfully")

    # ------------------------------------------------------------------
    # VALUE LOADING
    # ------------------------------------------------------------------

    def _load_values(self) -> None:
        """Load configuration values from environment."""

        # === Server ===
        self.host: str = self._strip_comment(os.getenv("HOST", "0.0.0.0"))
        self.port: int = self._parse_port(os.getenv("PORT", "3737"))
        self.threads: int = self._parse_int(os.getenv("THREADS", "4"), "THREADS", 1, 32)

        # === Storage / Logs ===
        self.db_path: str = self._strip_comment(os.getenv("DB_PATH", "data/signal_relay.db"))
        self.log_dir: str = self._strip_comment(os.getenv("LOG_DIR", "logs"))
        self.log_level: str = self._strip_comment(os.getenv("LOG_LEVEL", "INFO")).upper()

        # === External relay (optional) ===
        self.relay_url: Optional[str] = self._strip_comment(os.getenv("RELAY_URL", "")).rstrip("/") or None
        self.relay_token: Optional[str] = self._strip_comment(os.getenv("RELAY_TOKEN", "")) or None
        self.relay_sync_seconds: int = self._parse_int(
            os.getenv("RELAY_SYNC_SECONDS", "60"), "RELAY_SYNC_SECONDS", 5, 3600
        )

        # === Security ===
        self.webhook_secret: Optional[str] = self._strip_comment(os.getenv("WEBHOOK_SECRET_KEY", "")) or None

        # === Telegram (optional) ===
        self.telegram_bot_token: Optional[str] = self._strip_comment(os.getenv("TELEGRAM_TOKEN", "")) or None
        self.telegram_chat_id: Optional[str] = self._strip_comment(os.getenv("TELEGRAM_CHAT_ID", "")) or None

        # === Risk / Pipeline ===
        self.account_balance: float = self._parse_float(
            os.getenv("ACCOUNT_BALANCE", "10000"), "ACCOUNT_BALANCE", 0.0
        )
        self.dedup_cache_size: int = self._parse_int(
            os.getenv("DEDUP_CACHE_SIZE", "1000"), "DEDUP_CACHE_SIZE", 10, 100000
        )
        self.group_retention_days: int = self._parse_int(
            os.getenv("GROUP_RETENTION_DAYS", "7"), "GROUP_RETENTION_DAYS", 1, 365
        )
        self.risk_check_seconds: int = self._parse_int(
            os.getenv("RISK_CHECK_SECONDS", "15"), "RISK_CHECK_SECONDS", 1, 60
        )

    # ------------------------------------------------------------------
    # PARSING HELPERS
    # ------------------------------------------------------------------

    def _parse_port(self, value: str) -> int:
        """Parse and validate port number, stripping comments."""
        try:
            port = int(self._strip_comment(value))
            if not (1024 <= port <= 65535):
                raise ValueError(f"Port must be between 1024-65535, got: {port}")
            return port
        except ValueError as e:
            raise ConfigValidationError(f"Invalid PORT value '{value}': {e}")

    def _strip_comment(self, value: str) -> str:
        """Strip comments from config values (everything after #)."""
        if '#' in value:
            return value.split('#')[0].strip()
        return value.strip()

    def _parse_float(
        self,
        value: str,
        name: str,
        min_val: Optional[float] = None,
        max_val: Optional[float] = None
    ) -> float:
        """Parse and validate float with optional bounds, stripping comments."""
        try:
            num = float(self._strip_comment(value))
            if min_val is not None and num < min_val:
                raise ValueError(f"{name} must be >= {min_val}, got: {num}")
            if max_val is not None and num > max_val:
                raise ValueError(f"{name} must be <= {max_val}, got: {num}")
            return num
        except ValueError as e:
            raise ConfigValidationError(f"Invalid {name} value '{value}': {e}")

    def _parse_int(
        self,
        value: str,
        name: str,
        min_val: Optional[int] = None,
        max_val: Optional[int] = None
    ) -> int:
        """Parse and validate integer with optional bounds, stripping comments."""
        try:
            num = int(self._strip_comment(value))
            if min_val is not None and num < min_val:
                raise ValueError(f"{name} must be >= {min_val}, got: {num}")
            if max_val is not None and num > max_val:
                raise ValueError(f"{name} must be <= {max_val}, got: {num}")
            return num
        except ValueError as e:
            raise ConfigValidationError(f"Invalid {name} value '{value}': {e}")

    # ------------------------------------------------------------------
    # VALIDATION
    # ------------------------------------------------------------------

    def _validate(self) -> None:
        # -------------------------------------------------
        # 1️⃣ Logging
        # -------------------------------------------------
        if self.log_level not in ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"):
            raise ConfigValidationError(f"LOG_LEVEL invalid: {self.log_level}")

        # -------------------------------------------------
        # 2️⃣ Relay consistency
        # -------------------------------------------------
        if self.relay_url and not self.relay_url.startswith(("http://", "https://")):
            raise ConfigValidationError(f"RELAY_URL must be http(s), got: {self.relay_url}")

        if self.relay_url and not self.relay_token:
            logger.warning("⚠️ RELAY_URL set without RELAY_TOKEN. Relay push disabled.")

        # -------------------------------------------------
        # 3️⃣ Storage directory
        # -------------------------------------------------
        if not self.db_path:
            raise ConfigValidationError("DB_PATH cannot be empty")

        if self.db_path != ":memory:":
            db_dir = os.path.dirname(self.db_path) or "."
            try:
                os.makedirs(db_dir, exist_ok=True)
            except OSError as e:
                raise ConfigValidationError(f"Cannot create DB_PATH directory: {db_dir} - {e}")
            if not os.access(db_dir, os.W_OK):
                raise ConfigValidationError(f"DB_PATH directory not writable: {db_dir}")

        # -------------------------------------------------
        # 4️⃣ Telegram
        # -------------------------------------------------
        has_token = bool(self.telegram_bot_token)
        has_chat = bool(self.telegram_chat_id)

        if has_token != has_chat:
            logger.warning(
                "⚠️ Partial Telegram configuration detected. "
                "Both TELEGRAM_TOKEN and TELEGRAM_CHAT_ID required for Telegram features."
            )
        elif not has_token:
            logger.info("Telegram notifications disabled (optional)")
        else:
            try:
                int(self.telegram_chat_id)
            except ValueError:
                raise ConfigValidationError(
                    f"TELEGRAM_CHAT_ID must be numeric, got: {self.telegram_chat_id}"
                )

        # -------------------------------------------------
        # 5️⃣ Webhook secret
        # -------------------------------------------------
        if self.webhook_secret and len(self.webhook_secret) < 16:
            logger.warning(
                "⚠️ WEBHOOK_SECRET_KEY is short (< 16 chars). "
                "Consider using a longer secret for security."
            )

        logger.info("✅ Configuration validated successfully")

    # ------------------------------------------------------------------
    # ACCESSORS
    # ------------------------------------------------------------------

    def get_server_config(self) -> Dict[str, Any]:
        """Get server configuration (safe to log)."""
        return {
            "host": self.host,
            "port": self.port,
            "threads": self.threads,
        }

    def get_relay_config(self) -> Dict[str, Optional[str]]:
        """
        Get relay configuration.

        ⚠️ WARNING: Contains the relay bearer token. Handle securely.
        """
        return {
            "base_url": self.relay_url,
            "token": self.relay_token,
        }

    def is_relay_enabled(self) -> bool:
        return bool(self.relay_url and self.relay_token)

    def get_telegram_config(self) -> Dict[str, Optional[str]]:
        return {
            "bot_token": self.telegram_bot_token,
            "chat_id": self.telegram_chat_id,
        }

    def is_telegram_enabled(self) -> bool:
        """Check if Telegram is properly configured."""
        return bool(self.telegram_bot_token and self.telegram_chat_id)

    # ------------------------------------------------------------------
    # DIAGNOSTICS
    # ------------------------------------------------------------------

    def get_config_summary(self, include_sensitive: bool = False) -> Dict[str, Any]:
        """
        Configuration summary for diagnostics.

        Args:
            include_sensitive: If True, includes masked credentials (default: False)
        """
        summary = {
            "server": self.get_server_config(),
            "storage": {
                "db_path": self.db_path,
                "log_dir": self.log_dir,
            },
            "features": {
                "relay_enabled": self.is_relay_enabled(),
                "telegram_enabled": self.is_telegram_enabled(),
                "signature_check": bool(self.webhook_secret),
            },
            "pipeline": {
                "account_balance": self.account_balance,
                "dedup_cache_size": self.dedup_cache_size,
                "group_retention_days": self.group_retention_days,
                "relay_sync_seconds": self.relay_sync_seconds,
            },
        }

        if include_sensitive:
            summary["credentials_status"] = {
                "relay_token": self._mask_string(self.relay_token),
                "telegram_token": self._mask_string(self.telegram_bot_token),
                "webhook_secret": self._mask_string(self.webhook_secret),
            }

        return summary

    def _mask_string(self, value: Optional[str]) -> str:
        """Mask sensitive string for safe logging."""
        if not value:
            return "***MISSING***"
        if len(value) <= 4:
            return "***"
        return f"{value[:2]}***{value[-2:]}"
