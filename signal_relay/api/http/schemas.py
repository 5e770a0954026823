#!/usr/bin/env python3
"""
Request payloads accepted by the agent HTTP service.

Field names follow the agent wire format (camelCase) where the agent
produces them; relay-internal routes use snake_case.
"""

from typing import Any, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================
# AGENT PROTOCOL
# ============================================================

class SignalAck(BaseModel):
    signalId: str = Field(..., min_length=1)
    accountNumber: str = Field(..., min_length=1)
    status: str = "success"
    message: Optional[str] = None

    @field_validator("signalId", "accountNumber", mode="before")
    @classmethod
    def _as_text(cls, value):
        # agents send numeric ids for both
        return str(value) if isinstance(value, (int, float)) else value


class ModificationAck(BaseModel):
    accountNumber: str = Field(..., min_length=1)
    trades: Any = None
    status: str = "success"

    @field_validator("accountNumber", mode="before")
    @classmethod
    def _as_text(cls, value):
        return str(value) if isinstance(value, (int, float)) else value


class TradeClosed(BaseModel):
    accountNumber: str = Field(..., min_length=1)
    platform: str = "MT5"
    ticket: str = Field(..., min_length=1)
    profit: float = 0.0
    reason: str = ""

    @field_validator("accountNumber", "ticket", mode="before")
    @classmethod
    def _as_text(cls, value):
        return str(value) if isinstance(value, (int, float)) else value


# ============================================================
# RELAY CONTROL
# ============================================================

class IncomingMessage(BaseModel):
    """A channel message handed over by the listener process."""

    channel_id: str = Field(..., min_length=1)
    message_id: int
    text: str = ""
    reply_to_id: Optional[int] = None
    is_forwarded: bool = False
    channel_name: str = ""

    @field_validator("channel_id", mode="before")
    @classmethod
    def _as_text(cls, value):
        return str(value) if isinstance(value, int) else value


class MonitoringRequest(BaseModel):
    channels: List[str] = Field(default_factory=list)

    @field_validator("channels", mode="before")
    @classmethod
    def _as_text(cls, value):
        if isinstance(value, list):
            return [str(v) for v in value]
        return value
