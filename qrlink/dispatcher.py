"""Route classified actions to the text display or the network join handler."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable, Dict, Iterable, Optional

from .network.join import NetworkJoinStateMachine
from .notifications import NotificationSink
from .payloads import Action, JoinNetwork, JoinOutcome, JoinResult, ShowText, WifiCredentials

logger = logging.getLogger(__name__)

JoinFactory = Callable[[WifiCredentials], NetworkJoinStateMachine]
OutcomeListener = Callable[[JoinOutcome], None]


class ActionDispatcher:
    """
    Dispatch actions without blocking the frame loop.

    ``ShowText`` is shown right away. ``JoinNetwork`` starts exactly one join
    attempt in a background task whose outcome is reported to the user when
    it resolves. A join for an SSID whose attempt is still pending, and a text
    repeated within ``text_repeat_seconds``, are skipped.
    """

    def __init__(
        self,
        notifier: NotificationSink,
        join_factory: JoinFactory,
        *,
        text_repeat_seconds: float = 3.0,
        on_outcome: Optional[OutcomeListener] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._notifier = notifier
        self._join_factory = join_factory
        self.text_repeat_seconds = text_repeat_seconds
        self._on_outcome = on_outcome
        self._clock = clock
        self._joins: Dict[str, asyncio.Task[JoinOutcome]] = {}
        self._machines: Dict[asyncio.Task[JoinOutcome], NetworkJoinStateMachine] = {}
        self._last_text: Optional[str] = None
        self._last_text_at = 0.0

    @property
    def pending_joins(self) -> int:
        return sum(1 for task in self._joins.values() if not task.done())

    def dispatch(self, action: Action) -> Optional[asyncio.Task[JoinOutcome]]:
        if isinstance(action, ShowText):
            self._show_text(action.text)
            return None
        if isinstance(action, JoinNetwork):
            return self._start_join(action.credentials)
        logger.warning("Unsupported action %r", action)
        return None

    def dispatch_all(self, actions: Iterable[Action]) -> None:
        """Dispatch in order; a failing action never stops the rest."""
        for action in actions:
            try:
                self.dispatch(action)
            except Exception:
                logger.exception("Dispatch of %r failed", action)

    async def drain(self) -> None:
        """Wait for every pending join attempt to resolve."""
        pending = [task for task in self._joins.values() if not task.done()]
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self) -> None:
        """Cancel pending join attempts; each still reports its failure."""
        pending = [task for task in self._joins.values() if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self._joins.clear()

    def _show_text(self, text: str) -> None:
        now = self._clock()
        if (
            self.text_repeat_seconds > 0
            and text == self._last_text
            and now - self._last_text_at < self.text_repeat_seconds
        ):
            logger.debug("Skipping repeated text")
            return
        self._last_text = text
        self._last_text_at = now
        self._notifier.notify(text)

    def _start_join(self, credentials: WifiCredentials) -> Optional[asyncio.Task[JoinOutcome]]:
        ssid = credentials.ssid or ""
        existing = self._joins.get(ssid)
        if existing is not None and not existing.done():
            logger.info("Join for %s already pending; ignoring duplicate", ssid)
            self._notifier.publish_event("join_skipped", {"ssid": ssid, "reason": "pending"})
            return None

        machine = self._join_factory(credentials)
        task = asyncio.create_task(self._run_join(machine), name=f"join-{ssid}")
        self._joins[ssid] = task
        self._machines[task] = machine
        task.add_done_callback(self._join_done)
        return task

    async def _run_join(self, machine: NetworkJoinStateMachine) -> JoinOutcome:
        try:
            outcome = await machine.run()
        except asyncio.CancelledError:
            if machine.outcome is not None:
                self._report(machine.outcome)
            raise
        self._report(outcome)
        return outcome

    def _report(self, outcome: JoinOutcome) -> None:
        self._notifier.notify(outcome.message)
        if self._on_outcome is not None:
            try:
                self._on_outcome(outcome)
            except Exception:
                logger.debug("Outcome listener failed", exc_info=True)

    def _join_done(self, task: asyncio.Task[JoinOutcome]) -> None:
        for ssid, known in list(self._joins.items()):
            if known is task:
                del self._joins[ssid]
        machine = self._machines.pop(task, None)
        if task.cancelled():
            # Cancelled before its first step: the attempt never ran, report it anyway.
            if machine is not None and machine.outcome is None:
                self._report(JoinOutcome(result=JoinResult.FAILED, ssid=machine.ssid, reason="cancelled"))
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Join task crashed: %s", exc)


__all__ = ["ActionDispatcher"]
