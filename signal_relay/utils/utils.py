#!/usr/bin/env python3
"""
Relay helpers: request signing, lenient number coercion for agent/relay
payloads, wire ids and API response envelopes.
"""

import hmac
import hashlib
import json
import logging
import traceback
import uuid
from datetime import datetime
from typing import Dict, Any, Optional, Tuple, Union

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------
# SECURITY
# ------------------------------------------------------------------

def validate_webhook_signature(payload: str, signature: str, secret_key: Optional[str]) -> bool:
    """HMAC-SHA256 hex digest of the raw body. No secret configured means no check."""
    if not secret_key:
        return True
    if not signature:
        logger.warning("🔒 Message rejected: X-Signature header missing")
        return False

    try:
        digest = hmac.new(secret_key.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()
    except (TypeError, ValueError) as e:
        logger.error("Signature check failed | %s", e)
        return False
    return hmac.compare_digest(signature.strip().lower(), digest)


# ------------------------------------------------------------------
# COERCION (agents and the relay send numbers as text, or not at all)
# ------------------------------------------------------------------

def safe_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value) if value not in (None, "") else default
    except (ValueError, TypeError):
        return default


def safe_int(value: Any, default: int = 0) -> int:
    try:
        return int(value) if value not in (None, "") else default
    except (ValueError, TypeError):
        return default


def wire_ticket(ticket: Any) -> Union[int, str]:
    """Agents expect numeric tickets as numbers; anything else passes through as text."""
    text = str(ticket).strip()
    return int(text) if text.isdigit() else text


def new_correlation_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:16]}"


# ------------------------------------------------------------------
# LOGGING / RESPONSES
# ------------------------------------------------------------------

def log_exception(func_name: str, exception: Exception) -> None:
    """Log exception with traceback"""
    logger.error("💥 Exception in %s: %s", func_name, exception)
    logger.error("Traceback: %s", traceback.format_exc())


def create_response_dict(status: str, message: str = '', data: Any = None) -> Dict[str, Any]:
    response = {
        'status': status,
        'timestamp': datetime.now().isoformat()
    }
    if message:
        response['message'] = message
    if data is not None:
        response['data'] = data
    return response


def parse_json_safely(payload: str) -> Tuple[Optional[Dict[str, Any]], Optional[str]]:
    """Returns (data, None) or (None, error) for a request body."""
    try:
        return json.loads(payload), None
    except json.JSONDecodeError as e:
        error_msg = f"Invalid JSON: {e}"
        logger.error("%s | body=%s", error_msg, truncate_string(payload, 200))
        return None, error_msg


def truncate_string(text: str, max_length: int = 200) -> str:
    if len(text) <= max_length:
        return text
    return text[:max_length] + "..."
