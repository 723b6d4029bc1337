"""
Unit tests for RealtimeHub group membership and publishing.
"""

import pytest

from relay.hub import RealtimeHub
from tests.fakes import FakeSocket

PAYLOAD = {"id": 1, "recipient_code": "XYZ789", "message": "hi", "created_at": "2025-01-15T10:00:00"}


@pytest.fixture
def hub() -> RealtimeHub:
    return RealtimeHub()


def test_connect_assigns_unique_ids_without_groups(hub):
    first = hub.connect(FakeSocket())
    second = hub.connect(FakeSocket())

    assert first != second
    assert hub.connection_count() == 2
    assert hub.members("XYZ789") == set()


@pytest.mark.asyncio
async def test_publish_reaches_only_group_members(hub):
    joined, other, idle = FakeSocket(), FakeSocket(), FakeSocket()
    joined_id = hub.connect(joined)
    other_id = hub.connect(other)
    hub.connect(idle)
    hub.join(joined_id, "XYZ789")
    hub.join(other_id, "AAA111")

    await hub.publish("XYZ789", PAYLOAD)

    assert joined.sent == [{"event": "new_compliment", "data": PAYLOAD}]
    assert other.sent == []
    assert idle.sent == []


@pytest.mark.asyncio
async def test_publish_to_empty_group_is_dropped(hub):
    socket = FakeSocket()
    hub.connect(socket)

    await hub.publish("NOBODY", PAYLOAD)

    assert socket.sent == []


def test_join_is_idempotent(hub):
    connection_id = hub.connect(FakeSocket())

    hub.join(connection_id, "XYZ789")
    hub.join(connection_id, "XYZ789")

    assert hub.members("XYZ789") == {connection_id}


def test_join_unknown_connection_is_ignored(hub):
    hub.join("missing", "XYZ789")

    assert hub.members("XYZ789") == set()


@pytest.mark.asyncio
async def test_disconnect_removes_from_every_group(hub):
    socket = FakeSocket()
    connection_id = hub.connect(socket)
    hub.join(connection_id, "AAA111")
    hub.join(connection_id, "BBB222")

    hub.disconnect(connection_id)
    await hub.publish("AAA111", PAYLOAD)

    assert hub.members("AAA111") == set()
    assert hub.members("BBB222") == set()
    assert hub.connection_count() == 0
    assert socket.sent == []


def test_disconnect_twice_is_harmless(hub):
    connection_id = hub.connect(FakeSocket())

    hub.disconnect(connection_id)
    hub.disconnect(connection_id)

    assert hub.connection_count() == 0


@pytest.mark.asyncio
async def test_failed_send_drops_connection_and_keeps_others(hub):
    broken, healthy = FakeSocket(fail=True), FakeSocket()
    broken_id = hub.connect(broken)
    healthy_id = hub.connect(healthy)
    hub.join(broken_id, "XYZ789")
    hub.join(healthy_id, "XYZ789")

    await hub.publish("XYZ789", PAYLOAD)

    assert healthy.sent == [{"event": "new_compliment", "data": PAYLOAD}]
    assert hub.members("XYZ789") == {healthy_id}
    assert hub.connection_count() == 1
