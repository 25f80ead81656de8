"""
Shared fixtures for the relay tests.
"""

import pytest

from fakes import FakeTransport
from registry import ConnectionRegistry
from relay import RoomRelay


@pytest.fixture
def registry():
    return ConnectionRegistry()


@pytest.fixture
def notifications():
    return []


@pytest.fixture
def relay(registry, notifications):
    return RoomRelay(registry, sink=lambda kind, fields: notifications.append((kind, fields)))


@pytest.fixture
def connect(relay):
    """Connect a fake transport under the given id and return it."""

    def _connect(connection_id: str, fail: bool = False) -> FakeTransport:
        transport = FakeTransport(fail=fail)
        relay.connect(connection_id, transport)
        return transport

    return _connect
