"""Per-frame analysis with at most one decode cycle in flight."""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, List, Protocol

import numpy as np

from .classifier import classify_all
from .dispatcher import ActionDispatcher
from .payloads import DecodedPayload
from .sensors.decoder import Decoder

logger = logging.getLogger(__name__)


class AnalyzableFrame(Protocol):
    image: np.ndarray
    rotation_degrees: int

    def release(self) -> None:
        ...


class FrameAnalyzer:
    """
    Runs decode -> classify -> dispatch for one frame at a time.

    A frame arriving while a cycle is in flight is dropped, not queued. Every
    frame handed to ``analyze`` is released exactly once, whichever way its
    cycle ends. Decoder failures count as an empty result.
    """

    def __init__(self, decoder: Decoder, dispatcher: ActionDispatcher) -> None:
        self._decoder = decoder
        self._dispatcher = dispatcher
        self._busy = False
        self._closed = False
        self.accepted = 0
        self.dropped = 0
        self.decode_errors = 0

    @property
    def busy(self) -> bool:
        return self._busy

    def reset(self) -> None:
        """Open the gate for a new camera session."""
        self._busy = False
        self._closed = False
        self.accepted = 0
        self.dropped = 0
        self.decode_errors = 0

    def close(self) -> None:
        """Reject every further frame until the next ``reset``."""
        self._closed = True

    def stats(self) -> Dict[str, Any]:
        return {
            "accepted": self.accepted,
            "dropped": self.dropped,
            "decode_errors": self.decode_errors,
            "busy": self._busy,
        }

    async def analyze(self, frame: AnalyzableFrame) -> bool:
        """Return True when the frame ran through a full cycle, False when it was dropped."""
        if self._closed or self._busy:
            self.dropped += 1
            frame.release()
            return False

        self._busy = True
        self.accepted += 1
        try:
            payloads = await self._decode(frame)
            actions = classify_all(payloads)
            if actions:
                logger.debug("Frame produced %d action(s)", len(actions))
            self._dispatcher.dispatch_all(actions)
        except Exception:
            logger.exception("Frame analysis failed")
        finally:
            self._busy = False
            frame.release()
        return True

    async def _decode(self, frame: AnalyzableFrame) -> List[DecodedPayload]:
        loop = asyncio.get_running_loop()
        try:
            return await loop.run_in_executor(None, self._decoder.decode, frame.image, frame.rotation_degrees)
        except Exception as exc:
            self.decode_errors += 1
            logger.warning("Barcode analysis failure: %s", exc)
            return []


__all__ = ["FrameAnalyzer"]
