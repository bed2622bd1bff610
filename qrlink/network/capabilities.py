"""Platform capability probe and one-time strategy selection."""
from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from typing import Callable, Optional

from ..config import JoinSettings
from ..payloads import JoinStrategyKind
from .broker import NmcliConnectivityBroker, parse_terse_fields
from .platform import PlatformError, run_command
from .profiles import WpaCliProfileStore
from .strategies import EphemeralRequestStrategy, JoinStrategy, LegacyProfileStrategy

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PlatformCapabilities:
    ephemeral_requests: bool
    legacy_profiles: bool


async def probe_capabilities(
    settings: JoinSettings,
    *,
    which: Callable[[str], Optional[str]] = shutil.which,
) -> PlatformCapabilities:
    """Ephemeral requests need a running NetworkManager; legacy profiles need wpa_cli."""
    ephemeral = False
    if which(settings.nmcli_path):
        try:
            output = await run_command([settings.nmcli_path, "-t", "-f", "RUNNING", "general"], timeout=5.0)
            fields = parse_terse_fields(output)
            running = fields.get("RUNNING", output.strip())
            ephemeral = running.lower() == "running"
        except PlatformError as exc:
            logger.warning("NetworkManager probe failed: %s", exc)
    legacy = which(settings.wpa_cli_path) is not None
    caps = PlatformCapabilities(ephemeral_requests=ephemeral, legacy_profiles=legacy)
    logger.info("Platform capabilities: ephemeral=%s legacy=%s", caps.ephemeral_requests, caps.legacy_profiles)
    return caps


def select_strategy_kind(caps: PlatformCapabilities, preference: str = "auto") -> JoinStrategyKind:
    if preference == "ephemeral":
        return JoinStrategyKind.EPHEMERAL_REQUEST
    if preference == "legacy":
        return JoinStrategyKind.LEGACY_PROFILE
    if caps.ephemeral_requests:
        return JoinStrategyKind.EPHEMERAL_REQUEST
    return JoinStrategyKind.LEGACY_PROFILE


def build_strategy(settings: JoinSettings, caps: PlatformCapabilities) -> JoinStrategy:
    kind = select_strategy_kind(caps, settings.strategy)
    if kind is JoinStrategyKind.EPHEMERAL_REQUEST:
        broker = NmcliConnectivityBroker(
            settings.interface,
            nmcli_path=settings.nmcli_path,
            poll_interval=settings.poll_interval_seconds,
        )
        strategy: JoinStrategy = EphemeralRequestStrategy(broker)
    else:
        if not caps.legacy_profiles:
            logger.warning("wpa_cli not found; join attempts will fail")
        store = WpaCliProfileStore(settings.interface, wpa_cli_path=settings.wpa_cli_path)
        strategy = LegacyProfileStrategy(
            store,
            confirm_link=settings.confirm_link,
            poll_interval=settings.poll_interval_seconds,
        )
    logger.info("Join strategy: %s (interface=%s)", kind.value, settings.interface)
    return strategy


__all__ = ["PlatformCapabilities", "build_strategy", "probe_capabilities", "select_strategy_kind"]
