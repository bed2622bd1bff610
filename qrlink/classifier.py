"""Turn decoded payloads into actions."""
from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from .payloads import Action, DecodedPayload, JoinNetwork, ShowText, ValueType

logger = logging.getLogger(__name__)


def classify(payload: DecodedPayload) -> Optional[Action]:
    """Return the action for *payload*, or None when it carries nothing actionable."""
    if payload.raw_value_type is ValueType.TEXT:
        if payload.raw_text is not None:
            return ShowText(payload.raw_text)
        return None

    if payload.raw_value_type is ValueType.WIFI:
        wifi = payload.wifi
        if wifi is None or not wifi.ssid or wifi.passphrase is None:
            logger.debug("Ignoring Wi-Fi payload with missing ssid or passphrase")
            return None
        return JoinNetwork(wifi)

    return None


def classify_all(payloads: Iterable[DecodedPayload]) -> List[Action]:
    """Classify every payload of one frame, keeping decode order."""
    actions: List[Action] = []
    for payload in payloads:
        action = classify(payload)
        if action is not None:
            actions.append(action)
    return actions


__all__ = ["classify", "classify_all"]
