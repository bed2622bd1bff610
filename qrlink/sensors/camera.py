"""
Camera frame source for the scanner.

Opens a local camera with OpenCV, hands every captured frame to the
registered analyzer callback and publishes JPEG previews to subscribers.
"""

from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Awaitable, Callable, Optional, Set, Tuple

import cv2
import numpy as np

from ..config import CameraSettings

logger = logging.getLogger(__name__)


class CameraPermissionError(RuntimeError):
    """Raised when the camera cannot be opened (missing device or access denied)."""


@dataclass
class Frame:
    """One captured image; must be released exactly once by its consumer."""

    image: np.ndarray
    rotation_degrees: int = 0
    timestamp: float = field(default_factory=time.time)
    on_release: Optional[Callable[["Frame"], None]] = field(default=None, repr=False)
    released: bool = field(default=False, init=False)

    def release(self) -> None:
        if self.released:
            logger.warning("Frame released twice (ts=%.3f)", self.timestamp)
            return
        self.released = True
        if self.on_release is not None:
            self.on_release(self)


FrameHandler = Callable[[Frame], Awaitable[Any]]
CaptureFactory = Callable[[int], Any]


class CameraService:
    """Capture loop feeding the analyzer; keeps at most ``max_outstanding`` frames alive."""

    def __init__(
        self,
        settings: CameraSettings,
        *,
        capture_factory: Optional[CaptureFactory] = None,
        max_outstanding: int = 2,
    ) -> None:
        self.settings = settings
        self._capture_factory = capture_factory or cv2.VideoCapture
        self.max_outstanding = max(1, max_outstanding)
        self._cap: Optional[Any] = None
        self._frame_handler: Optional[FrameHandler] = None
        self._loop_task: Optional[asyncio.Task[None]] = None
        self._stop_event = asyncio.Event()
        self._handler_tasks: Set[asyncio.Task[Any]] = set()
        self._preview_subscribers: list[asyncio.Queue[bytes]] = []
        self._placeholder: Optional[bytes] = None
        self.outstanding = 0
        self.frames_captured = 0
        self.frames_skipped = 0

    @property
    def active(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self, frame_handler: FrameHandler) -> None:
        """Open the camera and start delivering frames to *frame_handler*."""
        if self.active:
            return
        loop = asyncio.get_running_loop()
        cap = await loop.run_in_executor(None, self._open_capture)
        self._cap = cap
        self._frame_handler = frame_handler
        self._stop_event.clear()
        self._loop_task = asyncio.create_task(self._capture_loop(), name="camera-capture-loop")
        logger.info("Camera %s started", self.settings.device_index)

    async def stop(self) -> None:
        """Stop capturing; waits for in-flight frame handlers to finish."""
        if self._loop_task is None:
            return
        self._stop_event.set()
        await self._loop_task
        self._loop_task = None

        if self._handler_tasks:
            await asyncio.gather(*list(self._handler_tasks), return_exceptions=True)

        if self._cap is not None:
            self._cap.release()
            self._cap = None
        self._frame_handler = None
        logger.info(
            "Camera stopped (captured=%d, skipped=%d)",
            self.frames_captured,
            self.frames_skipped,
        )

    def _open_capture(self) -> Any:
        index = self.settings.device_index
        logger.info("Opening camera (device_index=%s)", index)
        cap = self._capture_factory(index)
        if cap is None or not cap.isOpened():
            if cap is not None:
                cap.release()
            raise CameraPermissionError(f"Unable to open camera {index}")
        cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.settings.resolution_width)
        cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.settings.resolution_height)
        cap.set(cv2.CAP_PROP_FPS, self.settings.fps)
        return cap

    def _read_frame(self) -> Tuple[Optional[np.ndarray], Optional[bytes]]:
        """Grab one image and, when someone is watching, its JPEG preview."""
        if self._cap is None:
            return None, None
        ret, image = self._cap.read()
        if not ret or image is None:
            return None, None
        preview = None
        if self._preview_subscribers:
            preview = self._encode_jpeg(image)
        return image, preview

    async def _capture_loop(self) -> None:
        interval = 1.0 / max(self.settings.fps, 1)
        loop = asyncio.get_running_loop()
        try:
            while not self._stop_event.is_set():
                started = time.monotonic()
                image, preview = await loop.run_in_executor(None, self._read_frame)
                if image is None:
                    logger.warning("Camera returned no frame; retrying")
                    await asyncio.sleep(0.2)
                    continue

                self.frames_captured += 1
                if preview is not None:
                    self._broadcast_frame(preview)

                # Keep-only-latest at the source: drop when the consumer still holds frames.
                if self.outstanding >= self.max_outstanding:
                    self.frames_skipped += 1
                else:
                    self._deliver(image)

                elapsed = time.monotonic() - started
                await asyncio.sleep(max(0.0, interval - elapsed))
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("Camera capture loop crashed")
        finally:
            logger.info("Camera capture loop stopped")

    def _deliver(self, image: np.ndarray) -> None:
        handler = self._frame_handler
        if handler is None:
            return
        self.outstanding += 1
        frame = Frame(
            image=image,
            rotation_degrees=self.settings.rotation_degrees,
            on_release=self._on_frame_released,
        )
        task = asyncio.create_task(handler(frame), name="camera-frame-handler")
        self._handler_tasks.add(task)
        task.add_done_callback(self._handler_done)

    def _on_frame_released(self, frame: Frame) -> None:
        self.outstanding = max(0, self.outstanding - 1)

    def _handler_done(self, task: asyncio.Task[Any]) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Frame handler failed: %s", exc)

    def _encode_jpeg(self, image: np.ndarray) -> Optional[bytes]:
        try:
            ret, enc = cv2.imencode(".jpg", image, [cv2.IMWRITE_JPEG_QUALITY, self.settings.jpeg_quality])
            return enc.tobytes() if ret else None
        except Exception as e:
            logger.warning("Frame serialization error: %s", e)
            return None

    def _placeholder_frame(self) -> bytes:
        if self._placeholder is None:
            blank = np.zeros(
                (self.settings.resolution_height, self.settings.resolution_width, 3), dtype=np.uint8
            )
            self._placeholder = self._encode_jpeg(blank) or b""
        return self._placeholder

    def _broadcast_frame(self, frame: bytes) -> None:
        """Broadcast frame to all subscribers."""
        for q in list(self._preview_subscribers):
            if q.full():
                try:
                    q.get_nowait()
                except QueueEmpty:
                    pass
            q.put_nowait(frame)

    async def preview_stream(self) -> AsyncIterator[bytes]:
        """Stream preview JPEGs; yields a placeholder while the camera is idle."""
        q: asyncio.Queue[bytes] = asyncio.Queue(maxsize=2)
        self._preview_subscribers.append(q)
        try:
            while True:
                if not self.active:
                    yield self._placeholder_frame()
                    await asyncio.sleep(0.5)
                    continue
                try:
                    frame = await asyncio.wait_for(q.get(), timeout=1.0)
                except asyncio.TimeoutError:
                    continue
                yield frame
        finally:
            self._preview_subscribers.remove(q)


__all__ = ["CameraPermissionError", "CameraService", "Frame", "FrameHandler"]
