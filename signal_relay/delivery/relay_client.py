#!/usr/bin/env python3
"""
Relay Client
Pushes signals / modifications / fill acknowledgments to the external relay
and pulls back executed trades. Bearer-token authenticated JSON over HTTPS.

Relay failures are logged and reported as None / False / []; they never
block the local queue.
"""

from typing import Any, Dict, List, Optional

import requests

from signal_relay.logging.logger_config import get_component_logger

logger = get_component_logger('relay_client')

REQUEST_TIMEOUT = 10


class RelayClient:
    """Thin requests.Session wrapper around the relay endpoints"""

    def __init__(self, base_url: str, token: str, timeout: int = REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        })

    # --------------------------------------------------
    # OUTBOUND
    # --------------------------------------------------
    def push_signal(self, payload: Dict[str, Any]) -> Optional[str]:
        """Returns the relay-assigned id, or None if the push failed."""
        data = self._request("POST", "/signals", json=payload)
        if not data:
            return None
        relay_id = data.get("id") or data.get("signalId")
        if relay_id is None and isinstance(data.get("signal"), dict):
            relay_id = data["signal"].get("id")
        return str(relay_id) if relay_id is not None else None

    def push_modification(self, payload: Dict[str, Any]) -> bool:
        return self._request("POST", "/modifications", json=payload) is not None

    def acknowledge(self, payload: Dict[str, Any]) -> bool:
        return self._request("POST", "/signals/acknowledge", json=payload) is not None

    # --------------------------------------------------
    # INBOUND
    # --------------------------------------------------
    def fetch_executed(self, account: str) -> List[Dict[str, Any]]:
        data = self._request("GET", "/signals/executed", params={"account": account})
        if not data:
            return []
        trades = data.get("trades", data.get("signals", data.get("items", [])))
        return trades if isinstance(trades, list) else []

    # --------------------------------------------------
    # TRANSPORT
    # --------------------------------------------------
    def _request(self, method: str, path: str, **kwargs) -> Optional[Dict[str, Any]]:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)

            if response.status_code not in (200, 201):
                logger.warning("Relay %s %s failed: HTTP %s | %s", method, path, response.status_code, response.text[:200])
                return None

            try:
                data = response.json()
            except ValueError:
                logger.warning("Relay %s %s returned non-JSON body", method, path)
                return {}
            return data if isinstance(data, dict) else {"items": data}

        except requests.exceptions.Timeout:
            logger.warning("Relay timeout | %s %s", method, path)
            return None
        except requests.exceptions.RequestException as e:
            logger.warning("Relay request error | %s %s | %s", method, path, e)
            return None
