"""Join strategies: scoped ephemeral requests and persisted legacy profiles."""
from __future__ import annotations

import abc
import asyncio
import logging
from typing import Any, Awaitable, Dict, Optional, Set

from ..payloads import JoinRequest, JoinStrategyKind
from .broker import ConnectivityBroker, KeyManagement, NetworkRequest, NetworkSpecifier
from .platform import PlatformError
from .profiles import ProfileStore

logger = logging.getLogger(__name__)


def _quoted(value: str) -> str:
    return f'"{value}"'


def _spawn_cleanup(pending: Set[asyncio.Task[None]], work: Awaitable[None], name: str) -> None:
    task = asyncio.ensure_future(work)
    task.set_name(name)
    pending.add(task)
    task.add_done_callback(pending.discard)
    task.add_done_callback(_log_cleanup_failure)


def _log_cleanup_failure(task: asyncio.Task[None]) -> None:
    if not task.cancelled() and task.exception() is not None:
        logger.warning("%s failed: %s", task.get_name(), task.exception())


async def _wait_cleanups(pending: Set[asyncio.Task[None]]) -> None:
    if pending:
        await asyncio.gather(*list(pending), return_exceptions=True)


class JoinStrategy(abc.ABC):
    """One way of associating with a network. ``join`` returns once joined and raises otherwise."""

    kind: JoinStrategyKind

    @abc.abstractmethod
    async def join(self, request: JoinRequest) -> None:
        ...

    async def aclose(self) -> None:
        """Release anything the strategy still holds."""


class EphemeralRequestStrategy(JoinStrategy):
    kind = JoinStrategyKind.EPHEMERAL_REQUEST

    def __init__(self, broker: ConnectivityBroker) -> None:
        self._broker = broker
        self._granted: Dict[str, Any] = {}
        self._cleanups: Set[asyncio.Task[None]] = set()

    async def join(self, request: JoinRequest) -> None:
        loop = asyncio.get_running_loop()
        available: asyncio.Future[str] = loop.create_future()

        def settle(result: Optional[str] = None, error: Optional[BaseException] = None) -> None:
            if available.done():
                return
            if error is not None:
                available.set_exception(error)
            else:
                available.set_result(result or request.ssid)

        # Brokers may call back from their own threads.
        def on_available(network: str) -> None:
            loop.call_soon_threadsafe(settle, network, None)

        def on_unavailable(reason: str) -> None:
            loop.call_soon_threadsafe(settle, None, PlatformError(reason or "network unavailable"))

        passphrase = request.credentials.passphrase or ""
        specifier = NetworkSpecifier(
            ssid=request.ssid,
            passphrase=passphrase,
            key_management=KeyManagement.WPA_PSK if passphrase else KeyManagement.NONE,
        )
        handle = await self._broker.request_network(NetworkRequest(specifier=specifier), on_available, on_unavailable)
        try:
            network = await available
        except BaseException:
            # Release runs detached; the attempt deadline never waits on it.
            _spawn_cleanup(self._cleanups, self._broker.release(handle), f"release-{request.ssid}")
            raise

        previous = self._granted.pop(request.ssid, None)
        if previous is not None:
            _spawn_cleanup(self._cleanups, self._broker.release(previous), f"release-{request.ssid}")
        self._granted[request.ssid] = handle
        logger.info("Network %s available via ephemeral request", network)

    async def aclose(self) -> None:
        await _wait_cleanups(self._cleanups)
        while self._granted:
            _, handle = self._granted.popitem()
            try:
                await self._broker.release(handle)
            except Exception as exc:
                logger.warning("Failed to release network request: %s", exc)


class LegacyProfileStrategy(JoinStrategy):
    kind = JoinStrategyKind.LEGACY_PROFILE

    def __init__(self, store: ProfileStore, *, confirm_link: bool = False, poll_interval: float = 0.5) -> None:
        self._store = store
        self.confirm_link = confirm_link
        self.poll_interval = poll_interval
        self._cleanups: Set[asyncio.Task[None]] = set()

    async def join(self, request: JoinRequest) -> None:
        passphrase = request.credentials.passphrase or ""
        network_id = await self._store.add_network()
        disconnected = selected = False
        try:
            await self._store.set_network(network_id, "ssid", _quoted(request.ssid))
            if passphrase:
                await self._store.set_network(network_id, "psk", _quoted(passphrase))
            else:
                await self._store.set_network(network_id, "key_mgmt", "NONE")
            await self._store.disconnect()
            disconnected = True
            await self._store.enable_network(network_id)
            selected = True
            await self._store.reconnect()
            logger.info("Profile %d enabled for %s", network_id, request.ssid)

            if self.confirm_link:
                await self._wait_for_link(request.ssid)
        except BaseException:
            _spawn_cleanup(self._cleanups, self._discard(network_id, selected, disconnected), f"discard-{network_id}")
            raise

    async def aclose(self) -> None:
        await _wait_cleanups(self._cleanups)

    async def _discard(self, network_id: int, selected: bool, disconnected: bool) -> None:
        """Drop a failed profile and hand the interface back to the remaining profiles."""
        await self._store.remove_network(network_id)
        if selected:
            await self._store.enable_all()
        if disconnected:
            await self._store.reconnect()
        logger.info("Profile %d removed after failed join", network_id)

    async def _wait_for_link(self, ssid: str) -> None:
        # Bounded by the attempt timeout of the state machine.
        while True:
            status = await self._store.status()
            if status.get("wpa_state") == "COMPLETED" and status.get("ssid") == ssid:
                logger.info("Link to %s confirmed", ssid)
                return
            await asyncio.sleep(self.poll_interval)


__all__ = ["EphemeralRequestStrategy", "JoinStrategy", "LegacyProfileStrategy"]
