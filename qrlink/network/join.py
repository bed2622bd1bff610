"""Network join state machine: IDLE -> REQUESTING -> JOINED | FAILED."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, FrozenSet, Optional

from ..payloads import JoinOutcome, JoinRequest, JoinResult, WifiCredentials
from ..state import JoinState
from .strategies import JoinStrategy

logger = logging.getLogger(__name__)

TransitionListener = Callable[["NetworkJoinStateMachine", JoinState], None]

_ALLOWED: Dict[JoinState, FrozenSet[JoinState]] = {
    JoinState.IDLE: frozenset({JoinState.REQUESTING}),
    JoinState.REQUESTING: frozenset({JoinState.JOINED, JoinState.FAILED}),
    JoinState.JOINED: frozenset(),
    JoinState.FAILED: frozenset(),
}


def describe_error(exc: BaseException) -> str:
    return str(exc) or type(exc).__name__


class NetworkJoinStateMachine:
    """One join attempt for one set of credentials; never retried."""

    def __init__(
        self,
        credentials: WifiCredentials,
        strategy: JoinStrategy,
        *,
        timeout_seconds: Optional[float] = 20.0,
        on_transition: Optional[TransitionListener] = None,
    ) -> None:
        self.request = JoinRequest(credentials=credentials, strategy=strategy.kind)
        self.timeout_seconds = timeout_seconds
        self._strategy = strategy
        self._on_transition = on_transition
        self.state = JoinState.IDLE
        self.outcome: Optional[JoinOutcome] = None
        self._started_at: Optional[float] = None

    @property
    def ssid(self) -> str:
        return self.request.ssid

    async def run(self) -> JoinOutcome:
        if self.state is not JoinState.IDLE:
            raise RuntimeError(f"join attempt for {self.ssid} already {self.state.value}")

        self._started_at = time.monotonic()
        self._transition(JoinState.REQUESTING)
        logger.info("Joining %s (%s)", self.ssid, self.request.strategy.value)
        try:
            await asyncio.wait_for(self._strategy.join(self.request), timeout=self.timeout_seconds)
        except asyncio.TimeoutError:
            return self._resolve(JoinResult.FAILED, "timeout")
        except asyncio.CancelledError:
            self._resolve(JoinResult.FAILED, "cancelled")
            raise
        except Exception as exc:
            return self._resolve(JoinResult.FAILED, describe_error(exc))
        return self._resolve(JoinResult.JOINED)

    def _resolve(self, result: JoinResult, reason: Optional[str] = None) -> JoinOutcome:
        self.outcome = JoinOutcome(result=result, ssid=self.ssid, reason=reason)
        elapsed = time.monotonic() - (self._started_at or time.monotonic())
        if result is JoinResult.JOINED:
            self._transition(JoinState.JOINED)
            logger.info("Joined %s in %.1fs", self.ssid, elapsed)
        else:
            self._transition(JoinState.FAILED)
            logger.warning("Join %s failed after %.1fs: %s", self.ssid, elapsed, reason)
        return self.outcome

    def _transition(self, new_state: JoinState) -> None:
        if new_state not in _ALLOWED[self.state]:
            raise RuntimeError(f"invalid join transition {self.state.value} -> {new_state.value}")
        self.state = new_state
        if self._on_transition is None:
            return
        try:
            self._on_transition(self, new_state)
        except Exception:
            logger.debug("Join transition listener failed", exc_info=True)


__all__ = ["NetworkJoinStateMachine", "describe_error"]
