"""Per-session publish/subscribe channels for real-time push."""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Set

from .session_manager import MemorySessionManager


logger = logging.getLogger(__name__)


class SessionChannelHub:
    """Fans session events out to every listener joined to that session.

    Each listener owns an `asyncio.Queue`; events are dicts with `event`,
    `session_id`, `payload` and `timestamp` keys.
    """

    def __init__(self, session_manager: Optional[MemorySessionManager] = None, max_queue_size: int = 100):
        self.logger = logging.getLogger(__name__)
        self.session_manager = session_manager
        self.max_queue_size = max_queue_size
        self._channels: Dict[str, Set[asyncio.Queue]] = {}

    def join(self, session_id: str) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.max_queue_size)
        self._channels.setdefault(session_id, set()).add(queue)
        self.logger.debug(f"Listener joined session {session_id}")
        return queue

    def leave(self, session_id: str, queue: asyncio.Queue) -> None:
        listeners = self._channels.get(session_id)
        if not listeners:
            return
        listeners.discard(queue)
        if not listeners:
            del self._channels[session_id]
        self.logger.debug(f"Listener left session {session_id}")

    def listener_count(self, session_id: str) -> int:
        return len(self._channels.get(session_id, ()))

    def publish(self, session_id: str, event: str, payload: Dict[str, Any]) -> int:
        """Push an event to every listener of `session_id`.

        Returns:
            Number of listeners the event was delivered to
        """
        message = {
            "event": event,
            "session_id": session_id,
            "payload": payload,
            "timestamp": datetime.now(timezone.utc).isoformat()
        }
        delivered = 0
        listeners: List[asyncio.Queue] = list(self._channels.get(session_id, ()))
        for queue in listeners:
            try:
                queue.put_nowait(message)
                delivered += 1
            except asyncio.QueueFull:
                self.logger.warning(f"Dropping {event} for a slow listener on session {session_id}")
        return delivered

    async def toggle_user_control(self, session_id: str, enabled: Optional[bool] = None) -> Optional[bool]:
        """Set the session's user control mode and notify listeners.

        Args:
            session_id: Session identifier
            enabled: New mode; flips the current mode when omitted

        Returns:
            The new mode, or None if the session does not exist
        """
        if self.session_manager is None:
            raise RuntimeError("SessionChannelHub has no session manager")

        session = await self.session_manager.get_session(session_id)
        if session is None:
            return None

        mode = (not session.metadata.user_control_mode) if enabled is None else bool(enabled)
        if not await self.session_manager.update_session(session_id, {"metadata": {"user_control_mode": mode}}):
            return None

        self.publish(session_id, "user_control_changed", {"user_control_mode": mode})
        self.logger.info(f"User control {'enabled' if mode else 'disabled'} for session {session_id}")
        return mode
