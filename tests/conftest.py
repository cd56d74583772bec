import asyncio

import pytest
from pytest_socket import disable_socket

from device.base import Connected, Disconnected
from device.supervisor import ConnectionSupervisor
from state import MonitorState
from storage.persistence import Persistence

VALID_CONFIG = {
    "id": "bf3c9a7e1d2f4a5b6c",
    "key": "0123456789abcdef",
    "ip": "192.168.1.20",
    "version": "3.3",
}


def pytest_runtest_setup():
    """
    Runs before every test.
    We disable network access. Every attempt to connect
    (HTTP, DNS, etc) will immediately raise a SocketBlockedError.
    """
    disable_socket(allow_unix_socket=True)


async def drain(rounds: int = 10):
    """Let pending tasks (event pumps, refreshes) run"""
    for _ in range(rounds):
        await asyncio.sleep(0)


class FakeTransport:
    """In-memory DeviceTransport recording every call"""

    def __init__(self, config):
        self.config = config
        self.calls = []
        self.is_connected = False
        self.find_error = None
        self.connect_error = None
        self.disconnect_error = None
        self.set_error = None
        self._queue = asyncio.Queue()

    def emit(self, event):
        self._queue.put_nowait(event)

    async def events(self):
        while True:
            yield await self._queue.get()

    async def find(self, timeout):
        self.calls.append(("find", timeout))
        if self.find_error:
            raise self.find_error

    async def connect(self):
        self.calls.append(("connect",))
        if self.connect_error:
            raise self.connect_error
        self.is_connected = True
        self.emit(Connected())

    async def disconnect(self):
        self.calls.append(("disconnect",))
        if self.disconnect_error:
            raise self.disconnect_error
        if self.is_connected:
            self.is_connected = False
            self.emit(Disconnected())

    async def set(self, dp, value):
        self.calls.append(("set", dp, value))
        if self.set_error:
            raise self.set_error

    async def refresh(self):
        self.calls.append(("refresh",))

    def called(self, name):
        return [c for c in self.calls if c[0] == name]


@pytest.fixture
def transports():
    """Every FakeTransport created by the supervisor, in creation order"""
    return []


@pytest.fixture
def transport_factory(transports):
    def factory(config):
        transport = FakeTransport(config)
        transports.append(transport)
        return transport
    return factory


@pytest.fixture
def persistence(tmp_path):
    return Persistence(tmp_path)


@pytest.fixture
def state():
    return MonitorState()


@pytest.fixture
def supervisor(state, persistence, transport_factory):
    return ConnectionSupervisor(
        state,
        persistence,
        transport_factory=transport_factory,
        refresh_delay=0
    )
