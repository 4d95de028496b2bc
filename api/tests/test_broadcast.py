import pytest

from conftest import FakeConnection
from services.broadcast import BroadcastChannel, build_message


def test_build_message_flattens_payload():
    assert build_message("status-update", {"sessionId": "s1", "status": "PAUSED"}) == {
        "event": "status-update",
        "sessionId": "s1",
        "status": "PAUSED",
    }


@pytest.mark.asyncio
async def test_publish_reaches_group_members_only():
    channel = BroadcastChannel()
    first, second, outsider = FakeConnection(), FakeConnection(), FakeConnection()
    channel.subscribe("s1", first)
    channel.subscribe("s1", second)
    channel.subscribe("s2", outsider)

    delivered = await channel.publish("s1", "status-update", {"sessionId": "s1", "status": "PAUSED"})

    assert delivered == 2
    assert first.messages == second.messages
    assert outsider.messages == []


@pytest.mark.asyncio
async def test_failed_connection_is_dropped_from_group():
    channel = BroadcastChannel()
    healthy, broken = FakeConnection(), FakeConnection(fail=True)
    channel.subscribe("s1", broken)
    channel.subscribe("s1", healthy)

    delivered = await channel.publish("s1", "transcription-update", {"sessionId": "s1"})

    assert delivered == 1
    assert channel.subscribers("s1") == [healthy]
    assert await channel.send(broken, "error", {"message": "x"}) is False


def test_unsubscribe_all_reports_sessions():
    channel = BroadcastChannel()
    connection = FakeConnection()
    channel.subscribe("s1", connection)
    channel.subscribe("s2", connection)

    assert sorted(channel.unsubscribe_all(connection)) == ["s1", "s2"]
    assert channel.get_stats() == {"groups": 0, "subscriptions": 0}
