"""
Connectivity broker used by the ephemeral join strategy.

A request names a transport and a network specifier; the broker reports back
through callbacks when the requested network became available or could not be
provided. ``NmcliConnectivityBroker`` implements this on top of NetworkManager
with an unsaved, non-autoconnecting connection that is deleted on release.
"""
from __future__ import annotations

import asyncio
import enum
import logging
import os
import tempfile
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Protocol

from .platform import PlatformError, run_command

logger = logging.getLogger(__name__)

AvailableCallback = Callable[[str], None]
UnavailableCallback = Callable[[str], None]


class Transport(str, enum.Enum):
    WIFI = "wifi"


class KeyManagement(str, enum.Enum):
    NONE = "none"
    WPA_PSK = "wpa-psk"


@dataclass(frozen=True)
class NetworkSpecifier:
    ssid: str
    passphrase: str = field(default="", repr=False)
    key_management: KeyManagement = KeyManagement.WPA_PSK


@dataclass(frozen=True)
class NetworkRequest:
    specifier: NetworkSpecifier
    transport: Transport = Transport.WIFI


class ConnectivityBroker(Protocol):
    async def request_network(
        self,
        request: NetworkRequest,
        on_available: AvailableCallback,
        on_unavailable: UnavailableCallback,
    ) -> Any:
        ...

    async def release(self, handle: Any) -> None:
        ...


@dataclass
class NmcliRequestHandle:
    connection_name: str
    ssid: str
    passphrase: str = field(default="", repr=False)
    task: Optional[asyncio.Task[None]] = None


def parse_terse_fields(output: str) -> Dict[str, str]:
    """Parse ``nmcli -t`` ``FIELD:value`` lines."""
    fields: Dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition(":")
        if sep:
            fields[key.strip()] = value.strip()
    return fields


def _write_secrets_file(passphrase: str) -> str:
    """Write an nmcli passwd-file readable only by this user; the caller deletes it."""
    fd, path = tempfile.mkstemp(prefix="qrlink-", suffix=".secrets")
    with os.fdopen(fd, "w", encoding="utf-8") as fh:
        fh.write(f"802-11-wireless-security.psk:{passphrase}\n")
    return path


class NmcliConnectivityBroker:
    """Scoped Wi-Fi requests through NetworkManager."""

    def __init__(
        self,
        interface: str,
        *,
        nmcli_path: str = "nmcli",
        poll_interval: float = 0.5,
        command_timeout: float = 30.0,
    ) -> None:
        self.interface = interface
        self.nmcli_path = nmcli_path
        self.poll_interval = poll_interval
        self.command_timeout = command_timeout

    async def request_network(
        self,
        request: NetworkRequest,
        on_available: AvailableCallback,
        on_unavailable: UnavailableCallback,
    ) -> NmcliRequestHandle:
        if request.transport is not Transport.WIFI:
            raise PlatformError(f"Unsupported transport: {request.transport.value}")

        spec = request.specifier
        name = f"qrlink-{uuid.uuid4().hex[:8]}"
        args = [
            self.nmcli_path, "connection", "add",
            "type", "wifi",
            "ifname", self.interface,
            "con-name", name,
            "ssid", spec.ssid,
            "connection.autoconnect", "no",
        ]
        if spec.key_management is KeyManagement.WPA_PSK:
            # The PSK is handed over at activation through a passwd-file, never on a command line.
            args += ["wifi-sec.key-mgmt", "wpa-psk", "wifi-sec.psk-flags", "2"]
        args += ["save", "no"]

        await run_command(args, timeout=self.command_timeout)
        logger.info("nmcli: requested network %s as %s", spec.ssid, name)

        passphrase = spec.passphrase if spec.key_management is KeyManagement.WPA_PSK else ""
        handle = NmcliRequestHandle(connection_name=name, ssid=spec.ssid, passphrase=passphrase)
        handle.task = asyncio.create_task(
            self._activate(handle, on_available, on_unavailable),
            name=f"nmcli-activate-{name}",
        )
        return handle

    async def release(self, handle: NmcliRequestHandle) -> None:
        if handle.task is not None and not handle.task.done():
            handle.task.cancel()
            try:
                await handle.task
            except asyncio.CancelledError:
                pass
        try:
            await run_command(
                [self.nmcli_path, "connection", "delete", "id", handle.connection_name],
                timeout=self.command_timeout,
            )
            logger.info("nmcli: released %s", handle.connection_name)
        except PlatformError as exc:
            logger.warning("nmcli: failed to delete %s: %s", handle.connection_name, exc)

    async def _activate(
        self,
        handle: NmcliRequestHandle,
        on_available: AvailableCallback,
        on_unavailable: UnavailableCallback,
    ) -> None:
        try:
            await self._connection_up(handle)
            while True:
                if await self._device_connected(handle.connection_name):
                    on_available(handle.ssid)
                    return
                await asyncio.sleep(self.poll_interval)
        except asyncio.CancelledError:
            raise
        except PlatformError as exc:
            on_unavailable(str(exc))
        except Exception as exc:
            logger.exception("nmcli: activation of %s crashed", handle.connection_name)
            on_unavailable(str(exc) or type(exc).__name__)

    async def _connection_up(self, handle: NmcliRequestHandle) -> None:
        args = [self.nmcli_path, "connection", "up", "id", handle.connection_name]
        secrets_path = None
        if handle.passphrase:
            secrets_path = _write_secrets_file(handle.passphrase)
            args += ["passwd-file", secrets_path]
        try:
            await run_command(args, timeout=self.command_timeout)
        finally:
            if secrets_path is not None:
                os.unlink(secrets_path)

    async def _device_connected(self, connection_name: str) -> bool:
        output = await run_command(
            [
                self.nmcli_path, "-t",
                "-f", "GENERAL.STATE,GENERAL.CONNECTION",
                "device", "show", self.interface,
            ],
            timeout=self.command_timeout,
        )
        fields = parse_terse_fields(output)
        state = fields.get("GENERAL.STATE", "")
        return state.startswith("100") and fields.get("GENERAL.CONNECTION") == connection_name


__all__ = [
    "ConnectivityBroker",
    "KeyManagement",
    "NetworkRequest",
    "NetworkSpecifier",
    "NmcliConnectivityBroker",
    "NmcliRequestHandle",
    "Transport",
    "parse_terse_fields",
]
