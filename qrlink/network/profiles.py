"""Persistent network profile store driven through ``wpa_cli``."""
from __future__ import annotations

import logging
from typing import Dict, Protocol

from .platform import PlatformError, run_command

logger = logging.getLogger(__name__)


class ProfileStore(Protocol):
    async def add_network(self) -> int:
        ...

    async def set_network(self, network_id: int, key: str, value: str) -> None:
        ...

    async def enable_network(self, network_id: int, disable_others: bool = True) -> None:
        ...

    async def enable_all(self) -> None:
        ...

    async def remove_network(self, network_id: int) -> None:
        ...

    async def disconnect(self) -> None:
        ...

    async def reconnect(self) -> None:
        ...

    async def status(self) -> Dict[str, str]:
        ...


class WpaCliProfileStore:
    """wpa_supplicant control through its CLI; any ``FAIL`` reply raises PlatformError."""

    _SECRET_KEYS = {"psk", "password", "wep_key0"}

    def __init__(self, interface: str, *, wpa_cli_path: str = "wpa_cli", command_timeout: float = 10.0) -> None:
        self.interface = interface
        self.wpa_cli_path = wpa_cli_path
        self.command_timeout = command_timeout

    async def add_network(self) -> int:
        reply = await self._call("add_network")
        last = reply.splitlines()[-1].strip() if reply else ""
        try:
            network_id = int(last)
        except ValueError as exc:
            raise PlatformError(f"wpa_cli add_network returned {reply!r}") from exc
        logger.info("wpa_cli: added network %d on %s", network_id, self.interface)
        return network_id

    async def set_network(self, network_id: int, key: str, value: str) -> None:
        secrets = (value,) if key in self._SECRET_KEYS else ()
        await self._call("set_network", str(network_id), key, value, secrets=secrets)

    async def enable_network(self, network_id: int, disable_others: bool = True) -> None:
        command = "select_network" if disable_others else "enable_network"
        await self._call(command, str(network_id))

    async def enable_all(self) -> None:
        await self._call("enable_network", "all")

    async def remove_network(self, network_id: int) -> None:
        await self._call("remove_network", str(network_id))
        logger.info("wpa_cli: removed network %d on %s", network_id, self.interface)

    async def disconnect(self) -> None:
        await self._call("disconnect")

    async def reconnect(self) -> None:
        await self._call("reconnect")

    async def status(self) -> Dict[str, str]:
        reply = await self._call("status")
        status: Dict[str, str] = {}
        for line in reply.splitlines():
            key, sep, value = line.partition("=")
            if sep:
                status[key.strip()] = value.strip()
        return status

    async def _call(self, *args: str, secrets: tuple = ()) -> str:
        command = [self.wpa_cli_path, "-i", self.interface, *args]
        reply = (await run_command(command, timeout=self.command_timeout, secrets=secrets)).strip()
        if reply.startswith("FAIL") or reply == "UNKNOWN COMMAND":
            raise PlatformError(f"wpa_cli {args[0]} failed: {reply}")
        return reply


__all__ = ["ProfileStore", "WpaCliProfileStore"]
