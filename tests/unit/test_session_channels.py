"""
Unit tests for per-session event channels.
"""

import pytest

from morpheus.services.session_channels import SessionChannelHub
from morpheus.services.session_manager import MemorySessionManager


@pytest.fixture
def sessions(audit_logger):
    return MemorySessionManager(audit_logger=audit_logger)


class TestSessionChannelHub:
    """Test join, publish and leave."""

    @pytest.mark.asyncio
    async def test_publish_reaches_only_that_session(self):
        hub = SessionChannelHub()
        first = hub.join("s1")
        second = hub.join("s1")
        other = hub.join("s2")

        delivered = hub.publish("s1", "new_message", {"content": "hi"})

        assert delivered == 2
        event = first.get_nowait()
        assert event["event"] == "new_message"
        assert event["session_id"] == "s1"
        assert event["payload"] == {"content": "hi"}
        assert "timestamp" in event
        assert second.qsize() == 1
        assert other.empty()

    @pytest.mark.asyncio
    async def test_leave(self):
        hub = SessionChannelHub()
        queue = hub.join("s1")

        hub.leave("s1", queue)

        assert hub.listener_count("s1") == 0
        assert hub.publish("s1", "new_message", {}) == 0

    @pytest.mark.asyncio
    async def test_full_queue_drops_event(self):
        hub = SessionChannelHub(max_queue_size=1)
        queue = hub.join("s1")

        assert hub.publish("s1", "a", {}) == 1
        assert hub.publish("s1", "b", {}) == 0
        assert queue.get_nowait()["event"] == "a"


class TestToggleUserControl:
    """Test user control mode changes."""

    @pytest.mark.asyncio
    async def test_toggle_flips_and_publishes(self, sessions):
        hub = SessionChannelHub(sessions)
        session = await sessions.create_session()
        queue = hub.join(session.id)

        assert await hub.toggle_user_control(session.id) is True
        assert await hub.toggle_user_control(session.id) is False

        assert queue.get_nowait()["payload"] == {"user_control_mode": True}
        assert queue.get_nowait()["payload"] == {"user_control_mode": False}

    @pytest.mark.asyncio
    async def test_explicit_mode(self, sessions):
        hub = SessionChannelHub(sessions)
        session = await sessions.create_session()

        assert await hub.toggle_user_control(session.id, enabled=True) is True
        assert await hub.toggle_user_control(session.id, enabled=True) is True
        assert (await sessions.get_session(session.id)).metadata.user_control_mode is True

    @pytest.mark.asyncio
    async def test_unknown_session(self, sessions):
        assert await SessionChannelHub(sessions).toggle_user_control("missing") is None

    @pytest.mark.asyncio
    async def test_requires_session_manager(self):
        with pytest.raises(RuntimeError):
            await SessionChannelHub().toggle_user_control("s1")
