#!/usr/bin/env python3
"""
CENTRALIZED LOGGING CONFIGURATION
==================================

Purpose:
- Per-component loggers with rotating file handlers
- Pipeline stages (parser, filters, router, risk governor, delivery) log to their own files
- Everything also goes to console with the same format

USAGE:
    from signal_relay.logging.logger_config import setup_application_logging, get_component_logger

    # Setup once in main
    setup_application_logging(log_dir="logs", level="INFO")

    # Get logger in each module
    logger = get_component_logger("router")
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict

# [TIMESTAMP] [LEVEL] [COMPONENT] [MESSAGE]
LOG_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'
LOG_DATETIME_FORMAT = '%Y-%m-%d %H:%M:%S'

# Key -> logger name. Modules using logging.getLogger(__name__) propagate
# into the 'signal_relay.*' parents registered below.
COMPONENT_NAMES = {
    # ---- Service ----
    'relay_service':  'RELAY_SERVICE',
    'pipeline':       'PIPELINE',

    # ---- Parsing & filters ----
    'parser':         'PARSER',
    'filters':        'FILTERS',
    'modifications':  'MODIFICATIONS',

    # ---- Order tracking & routing ----
    'ledger':         'ORDER_LEDGER',
    'router':         'COMMAND_ROUTER',
    'order_groups':   'ORDER_GROUPS',

    # ---- Risk ----
    'risk_governor':  'RISK_GOVERNOR',

    # ---- Delivery ----
    'delivery':       'DELIVERY',
    'relay_client':   'RELAY_CLIENT',
    'agent_api':      'AGENT_API',

    # ---- Notifications / Telegram ----
    'notifications':  'notifications',

    # ---- Persistence / Core ----
    'persistence':    'signal_relay.persistence',
    'core':           'signal_relay.core',
}

_log_dir: Optional[Path] = None
_log_level: str = 'INFO'
_console_handler: Optional[logging.StreamHandler] = None
_component_handlers: Dict[str, logging.handlers.RotatingFileHandler] = {}


def setup_application_logging(
    log_dir: str = 'logs',
    level: str = 'INFO',
    max_bytes: int = 50 * 1024 * 1024,  # 50 MB per file
    backup_count: int = 10,
) -> None:
    """
    Initialize application-wide logging with per-component rotating handlers.

    Call once at application startup (in main()).

    Args:
        log_dir: Directory to store log files
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        max_bytes: Max size of a log file before rotation
        backup_count: Number of backup files to keep
    """
    global _log_dir, _log_level, _console_handler

    _log_dir = Path(log_dir)
    _log_level = level
    _log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper()))

    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_DATETIME_FORMAT)

    _console_handler = logging.StreamHandler(sys.stdout)
    _console_handler.setLevel(getattr(logging, level.upper()))
    _console_handler.setFormatter(formatter)
    root_logger.addHandler(_console_handler)

    # waitress is chatty at INFO
    logging.getLogger('waitress').setLevel(logging.WARNING)

    _setup_component_handlers(max_bytes, backup_count, formatter)

    # 🔒 CATCH-ALL: nothing that misses a component handler is lost
    root_fh = logging.handlers.RotatingFileHandler(
        _log_dir / "application.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8',
    )
    root_fh.setLevel(getattr(logging, level.upper()))
    root_fh.setFormatter(formatter)
    root_logger.addHandler(root_fh)


def _setup_component_handlers(max_bytes: int, backup_count: int, formatter: logging.Formatter) -> None:
    """Create one rotating file per component and attach it to the named logger immediately."""
    for key, component_name in COMPONENT_NAMES.items():
        handler = logging.handlers.RotatingFileHandler(
            _log_dir / f"{key}.log",
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        handler.setLevel(getattr(logging, _log_level.upper()))
        handler.setFormatter(formatter)

        _component_handlers[component_name] = handler

        logger = logging.getLogger(component_name)
        if not any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers):
            logger.addHandler(handler)


def get_component_logger(component_key: str) -> logging.Logger:
    """
    Get or create a logger for a specific component.

    Example:
        logger = get_component_logger('risk_governor')
        logger.info("Limit check")
    """
    if component_key not in COMPONENT_NAMES:
        raise ValueError(f"Unknown component: {component_key}. Must be one of {list(COMPONENT_NAMES.keys())}")

    component_name = COMPONENT_NAMES[component_key]
    logger = logging.getLogger(component_name)

    if not any(isinstance(h, logging.handlers.RotatingFileHandler) for h in logger.handlers):
        if component_name in _component_handlers:
            logger.addHandler(_component_handlers[component_name])

    return logger


class ServiceLogger:
    """
    Lifecycle banner lines for a component logger.
    """

    def __init__(self, component_key: str):
        self.logger = get_component_logger(component_key)
        self.component = COMPONENT_NAMES[component_key]

    def startup(self, message: str):
        self.logger.info(f"🚀 STARTUP: {message}")

    def shutdown(self, message: str):
        self.logger.info(f"🛑 SHUTDOWN: {message}")
