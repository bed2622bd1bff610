"""Shared state definitions for the scanner service."""
from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Any, Dict, Optional


class SessionPhase(str, enum.Enum):
    """
    Scan session phases:

    1. IDLE              - No camera session yet
    2. SCANNING          - Camera open, frames flowing to the analyzer
    3. STOPPED           - Session stopped by the lifecycle owner
    4. PERMISSION_DENIED - Camera unavailable; scanning ended for this session
    """
    IDLE = "idle"
    SCANNING = "scanning"
    STOPPED = "stopped"
    PERMISSION_DENIED = "permission_denied"


class JoinState(str, enum.Enum):
    """Join attempt states: IDLE -> REQUESTING -> JOINED | FAILED."""
    IDLE = "idle"
    REQUESTING = "requesting"
    JOINED = "joined"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (JoinState.JOINED, JoinState.FAILED)


@dataclass
class ControllerEvent:
    """Event payload distributed to UI clients over the local WebSocket."""

    type: str
    data: Dict[str, Any]
    phase: SessionPhase
    error: Optional[str] = None


__all__ = ["SessionPhase", "JoinState", "ControllerEvent"]
