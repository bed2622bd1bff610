import asyncio
import threading
from typing import Dict, List, Optional

import numpy as np
import pytest

from qrlink.config import Settings
from qrlink.network.strategies import JoinStrategy
from qrlink.notifications import NotificationSink
from qrlink.payloads import DecodedPayload, JoinStrategyKind, ValueType, WifiCredentials
from qrlink.sensors.camera import CameraPermissionError


def text_payload(text):
    return DecodedPayload(raw_value_type=ValueType.TEXT, raw_text=text)


def wifi_payload(ssid="Net1", passphrase="pw123"):
    return DecodedPayload(
        raw_value_type=ValueType.WIFI,
        wifi=WifiCredentials(ssid=ssid, passphrase=passphrase),
    )


class FakeFrame:
    def __init__(self, image=None, rotation_degrees=0):
        self.image = image if image is not None else np.zeros((8, 8, 3), dtype=np.uint8)
        self.rotation_degrees = rotation_degrees
        self.release_calls = 0

    def release(self):
        self.release_calls += 1


class ScriptedDecoder:
    """Returns the scripted results in order; exceptions in the script are raised."""

    def __init__(self, *results, gate: Optional[threading.Event] = None):
        self._results = list(results)
        self.gate = gate
        self.calls = 0

    def decode(self, image, rotation_degrees=0):
        self.calls += 1
        if self.gate is not None:
            self.gate.wait(timeout=5)
        result = self._results.pop(0) if self._results else []
        if isinstance(result, Exception):
            raise result
        return result


class RecordingDispatcher:
    def __init__(self):
        self.batches = []

    def dispatch_all(self, actions):
        self.batches.append(list(actions))


class FakeStrategy(JoinStrategy):
    def __init__(self, kind=JoinStrategyKind.EPHEMERAL_REQUEST, error=None, block=False, delay=0.0):
        self.kind = kind
        self.error = error
        self.block = block
        self.delay = delay
        self.requests = []
        self.closed = False

    async def join(self, request):
        self.requests.append(request)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.block:
            await asyncio.Event().wait()
        if self.error is not None:
            raise self.error

    async def aclose(self):
        self.closed = True


class FakeBroker:
    """mode: 'available', 'unavailable' or 'silent' (never calls back)."""

    def __init__(self, mode="available", error=None, delay=0.0, release_delay=0.0):
        self.mode = mode
        self.error = error
        self.delay = delay
        self.release_delay = release_delay
        self.requests = []
        self.released = []
        self._next = 0

    async def request_network(self, request, on_available, on_unavailable):
        if self.error is not None:
            raise self.error
        self.requests.append(request)
        self._next += 1
        handle = f"handle-{self._next}"
        loop = asyncio.get_running_loop()
        if self.mode == "available":
            loop.call_later(self.delay, on_available, request.specifier.ssid)
        elif self.mode == "unavailable":
            loop.call_later(self.delay, on_unavailable, "no such network")
        return handle

    async def release(self, handle):
        if self.release_delay:
            await asyncio.sleep(self.release_delay)
        self.released.append(handle)


class FakeProfileStore:
    def __init__(self, fail_on=None, statuses=None):
        self.fail_on = fail_on
        self.statuses = list(statuses or [])
        self.calls: List[tuple] = []

    def _record(self, *call):
        self.calls.append(call)
        if self.fail_on == call[0]:
            raise RuntimeError(f"{call[0]} rejected")

    async def add_network(self):
        self._record("add_network")
        return 0

    async def set_network(self, network_id, key, value):
        self._record("set_network", network_id, key, value)

    async def enable_network(self, network_id, disable_others=True):
        self._record("enable_network", network_id)

    async def enable_all(self):
        self._record("enable_all")

    async def remove_network(self, network_id):
        self._record("remove_network", network_id)

    async def disconnect(self):
        self._record("disconnect")

    async def reconnect(self):
        self._record("reconnect")

    async def status(self) -> Dict[str, str]:
        self._record("status")
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0] if self.statuses else {}


class FakeCamera:
    def __init__(self, deny=False):
        self.deny = deny
        self.handler = None
        self.start_calls = 0
        self.stop_calls = 0

    @property
    def active(self):
        return self.handler is not None

    async def start(self, frame_handler):
        self.start_calls += 1
        if self.deny:
            raise CameraPermissionError("Unable to open camera 0")
        self.handler = frame_handler

    async def stop(self):
        self.stop_calls += 1
        self.handler = None

    async def preview_stream(self):
        yield b"jpeg"


@pytest.fixture
def notifier():
    return NotificationSink()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        _env_file=None,
        autostart_session=True,
        log_directory=tmp_path / "logs",
    )
