"""
User notification sink.

Every user-visible message becomes a ``notification`` ControllerEvent fanned out
to the connected UI sockets and, when configured, posted to a webhook. Posting
is fire-and-forget and safe from any thread: calls made off the event loop are
handed over with ``call_soon_threadsafe``.
"""
from __future__ import annotations

import asyncio
from asyncio import QueueEmpty
import logging
from collections import deque
from typing import Any, Callable, Deque, Dict, List, Optional, Set

import httpx

from .config import NotificationSettings
from .state import ControllerEvent, SessionPhase

logger = logging.getLogger(__name__)


class WebhookNotifier:
    """Posts user messages as JSON to an HTTP endpoint."""

    def __init__(self, url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def send(self, message: str, audience: str = "user") -> bool:
        try:
            response = await self._client.post(self.url, json={"message": message, "audience": audience})
            response.raise_for_status()
            return True
        except httpx.TimeoutException:
            logger.error("webhook.send: request timeout")
        except httpx.NetworkError as e:
            logger.error("webhook.send: network error - %s", e)
        except httpx.HTTPStatusError as e:
            logger.error("webhook.send: HTTP %d - %s", e.response.status_code, e.response.text)
        except Exception as e:
            logger.exception("webhook.send: unexpected error - %s", e)
        return False

    async def aclose(self) -> None:
        try:
            await self._client.aclose()
        except Exception as e:
            logger.warning("Error closing webhook client: %s", e)


class NotificationSink:
    """Fan-out of user messages and state events to UI subscribers."""

    def __init__(
        self,
        settings: Optional[NotificationSettings] = None,
        *,
        phase_provider: Optional[Callable[[], SessionPhase]] = None,
        webhook: Optional[WebhookNotifier] = None,
        history_size: int = 50,
    ) -> None:
        self.settings = settings or NotificationSettings()
        self._phase_provider = phase_provider or (lambda: SessionPhase.IDLE)
        if webhook is None and self.settings.webhook_url:
            webhook = WebhookNotifier(self.settings.webhook_url, self.settings.webhook_timeout)
        self._webhook = webhook
        self._subscribers: List[asyncio.Queue[ControllerEvent]] = []
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._tasks: Set[asyncio.Task[Any]] = set()
        self.history: Deque[str] = deque(maxlen=history_size)

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Remember the loop that owns user-visible output."""
        self._loop = loop or asyncio.get_running_loop()

    def register(self) -> asyncio.Queue[ControllerEvent]:
        queue: asyncio.Queue[ControllerEvent] = asyncio.Queue(maxsize=self.settings.ui_queue_size)
        self._subscribers.append(queue)
        return queue

    def unregister(self, queue: asyncio.Queue[ControllerEvent]) -> None:
        if queue in self._subscribers:
            self._subscribers.remove(queue)

    def notify(self, message: str, audience: str = "user") -> None:
        loop = self._loop
        if loop is not None and not loop.is_closed() and not self._on_loop(loop):
            loop.call_soon_threadsafe(self._post, message, audience)
            return
        self._post(message, audience)

    def publish(self, event: ControllerEvent) -> None:
        """Broadcast event to all UI subscribers, dropping the oldest event of full queues."""
        for queue in list(self._subscribers):
            try:
                if queue.full():
                    try:
                        queue.get_nowait()
                    except QueueEmpty:
                        pass
                queue.put_nowait(event)
            except Exception as e:
                logger.warning("Failed to broadcast event to subscriber: %s", e)

    def publish_event(self, event_type: str, data: Dict[str, Any], error: Optional[str] = None) -> None:
        """Publish a UI event stamped with the current session phase."""
        self.publish(ControllerEvent(type=event_type, data=data, phase=self._phase_provider(), error=error))

    async def aclose(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        if self._webhook is not None:
            await self._webhook.aclose()

    def _post(self, message: str, audience: str) -> None:
        logger.info("notify[%s]: %s", audience, message)
        self.history.append(message)
        self.publish(
            ControllerEvent(
                type="notification",
                data={"message": message, "audience": audience},
                phase=self._phase_provider(),
            )
        )
        if self._webhook is not None:
            self._spawn_webhook(message, audience)

    def _spawn_webhook(self, message: str, audience: str) -> None:
        try:
            task = asyncio.get_running_loop().create_task(self._webhook.send(message, audience))
        except RuntimeError:
            logger.debug("No running loop; webhook skipped for %r", message)
            return
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    @staticmethod
    def _on_loop(loop: asyncio.AbstractEventLoop) -> bool:
        try:
            return asyncio.get_running_loop() is loop
        except RuntimeError:
            return False


__all__ = ["NotificationSink", "WebhookNotifier"]
