"""Scan session orchestration: camera, analysis gate, dispatcher and join strategy."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, AsyncIterator, Dict, Optional

from .analyzer import FrameAnalyzer
from .classifier import classify_all
from .config import Settings, get_settings
from .dispatcher import ActionDispatcher
from .network.capabilities import build_strategy, probe_capabilities
from .network.join import NetworkJoinStateMachine
from .network.strategies import JoinStrategy
from .notifications import NotificationSink
from .payloads import JoinOutcome, WifiCredentials, payload_from_text
from .sensors.camera import CameraPermissionError, CameraService
from .sensors.decoder import Decoder, PyzbarDecoder
from .state import ControllerEvent, JoinState, SessionPhase

logger = logging.getLogger(__name__)

PERMISSION_DENIED_MESSAGE = "Permissions not granted by the user."


class ScanSession:
    """Owns one scanning lifecycle; ``on_session_start``/``on_session_stop`` are the lifecycle hooks."""

    def __init__(
        self,
        *,
        settings: Optional[Settings] = None,
        camera: Optional[CameraService] = None,
        decoder: Optional[Decoder] = None,
        strategy: Optional[JoinStrategy] = None,
        notifier: Optional[NotificationSink] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._phase: SessionPhase = SessionPhase.IDLE
        self._phase_started_at: float = time.time()
        self._lock = asyncio.Lock()
        self.notifier = notifier or NotificationSink(
            self.settings.notifications, phase_provider=lambda: self._phase
        )
        self._camera = camera or CameraService(self.settings.camera)
        self._strategy = strategy
        self._dispatcher = ActionDispatcher(
            self.notifier,
            self._new_join,
            text_repeat_seconds=self.settings.dispatch.text_repeat_seconds,
            on_outcome=self._record_outcome,
        )
        self._analyzer = FrameAnalyzer(decoder or PyzbarDecoder(), self._dispatcher)
        self._analyzer.close()
        self._last_outcome: Optional[JoinOutcome] = None

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def strategy(self) -> Optional[JoinStrategy]:
        return self._strategy

    @property
    def dispatcher(self) -> ActionDispatcher:
        return self._dispatcher

    @property
    def analyzer(self) -> FrameAnalyzer:
        return self._analyzer

    async def start(self) -> None:
        """Select the join strategy once and, if configured, begin scanning."""
        logger.info("Starting scan session manager")
        self.notifier.bind_loop()
        if self._strategy is None:
            caps = await probe_capabilities(self.settings.join)
            self._strategy = build_strategy(self.settings.join, caps)
        if self.settings.autostart_session:
            await self.on_session_start()

    async def stop(self) -> None:
        logger.info("Stopping scan session manager")
        await self.on_session_stop()
        if self._strategy is not None:
            try:
                await self._strategy.aclose()
            except Exception as e:
                logger.warning("Error releasing join strategy: %s", e)
        await self.notifier.aclose()
        logger.info("Scan session manager stopped")

    async def on_session_start(self) -> bool:
        """Scanning may begin. Returns False when the camera is not available."""
        async with self._lock:
            if self._phase is SessionPhase.SCANNING:
                return True
            if self._strategy is None:
                raise RuntimeError("ScanSession.start() must run before on_session_start()")

            self._analyzer.reset()
            try:
                await self._camera.start(self._analyzer.analyze)
            except CameraPermissionError as exc:
                logger.error("Camera unavailable: %s", exc)
                self._analyzer.close()
                await self._advance_phase(SessionPhase.PERMISSION_DENIED, error=str(exc))
                self.notifier.notify(PERMISSION_DENIED_MESSAGE)
                return False

            await self._advance_phase(SessionPhase.SCANNING)
            return True

    async def on_session_stop(self) -> None:
        """Scanning must stop: close the gate, stop the camera, cancel pending joins."""
        async with self._lock:
            if self._phase is not SessionPhase.SCANNING:
                await self._dispatcher.shutdown()
                return
            self._analyzer.close()
            try:
                await self._camera.stop()
            except Exception as e:
                logger.warning("Error stopping camera: %s", e)
            await self._dispatcher.shutdown()
            await self._advance_phase(SessionPhase.STOPPED)

    async def inject_payload(self, text: str) -> int:
        """Dispatch *text* as if the decoder had reported it; returns the number of actions."""
        actions = classify_all([payload_from_text(text)])
        self._dispatcher.dispatch_all(actions)
        return len(actions)

    def register_ui(self) -> asyncio.Queue[ControllerEvent]:
        return self.notifier.register()

    def unregister_ui(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        self.notifier.unregister(queue)

    async def preview_frames(self) -> AsyncIterator[bytes]:
        """Stream preview frames with error handling."""
        try:
            async for frame in self._camera.preview_stream():
                yield frame
        except Exception as e:
            logger.error("Preview stream error: %s", e)

    def health(self) -> Dict[str, Any]:
        strategy = self._strategy.kind.value if self._strategy is not None else None
        last = None
        if self._last_outcome is not None:
            last = {
                "ssid": self._last_outcome.ssid,
                "result": self._last_outcome.result.value,
                "reason": self._last_outcome.reason,
            }
        return {
            "status": "ok",
            "phase": self._phase.value,
            "phase_age_s": round(time.time() - self._phase_started_at, 1),
            "strategy": strategy,
            "analyzer": self._analyzer.stats(),
            "pending_joins": self._dispatcher.pending_joins,
            "last_join": last,
        }

    def _new_join(self, credentials: WifiCredentials) -> NetworkJoinStateMachine:
        if self._strategy is None:
            raise RuntimeError("no join strategy selected; call ScanSession.start() first")
        return NetworkJoinStateMachine(
            credentials,
            self._strategy,
            timeout_seconds=self.settings.join.timeout_seconds,
            on_transition=self._publish_join_state,
        )

    def _publish_join_state(self, machine: NetworkJoinStateMachine, state: JoinState) -> None:
        data: Dict[str, Any] = {
            "ssid": machine.ssid,
            "state": state.value,
            "strategy": machine.request.strategy.value,
        }
        error = None
        if state.terminal and machine.outcome is not None:
            error = machine.outcome.reason
        self.notifier.publish_event("join", data, error=error)

    def _record_outcome(self, outcome: JoinOutcome) -> None:
        self._last_outcome = outcome

    async def _advance_phase(self, phase: SessionPhase, *, error: Optional[str] = None) -> None:
        logger.info("Session phase %s -> %s", self._phase.value, phase.value)
        self._phase = phase
        self._phase_started_at = time.time()
        self.notifier.publish(ControllerEvent(type="state", data={}, phase=phase, error=error))


__all__ = ["PERMISSION_DENIED_MESSAGE", "ScanSession"]
