"""In-process session store."""

import asyncio
import logging
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..lib.logging_config import AuditLogger, get_audit_logger
from ..lib.metrics import MetricsCollector, get_metrics_collector
from ..models.message import Message
from ..models.session import RoutedMessage, Session, SessionMetadata


logger = logging.getLogger(__name__)


class MemorySessionManager:
    """Authoritative registry of sessions and their message logs.

    Sessions live for the lifetime of the process. Every read returns a deep
    copy, so callers can never mutate stored state directly.
    """

    UPDATABLE_FIELDS = {"user_id", "metadata", "messages", "routed_messages"}

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.audit_logger = audit_logger or get_audit_logger()
        self.metrics = metrics or get_metrics_collector()

        self._sessions: Dict[str, Session] = {}
        self._session_locks: Dict[str, asyncio.Lock] = {}
        self._store_lock = asyncio.Lock()

    async def _lookup(self, session_id: str) -> Optional[asyncio.Lock]:
        async with self._store_lock:
            if session_id not in self._sessions:
                return None
            return self._session_locks.setdefault(session_id, asyncio.Lock())

    async def create_session(self, user_id: Optional[str] = None) -> Session:
        """Create a new, empty session.

        Args:
            user_id: Owning user, if known

        Returns:
            Snapshot of the created Session
        """
        session = Session(user_id=user_id)
        async with self._store_lock:
            self._sessions[session.id] = session
            self._session_locks[session.id] = asyncio.Lock()

        self.metrics.record_session_change(1)
        self.audit_logger.log_session_event(
            "session_created", session.id, action="create", result="success",
            metadata={"user_id": user_id}
        )
        self.logger.info(f"Created session {session.id}")
        return session.model_copy(deep=True)

    async def get_session(self, session_id: str) -> Optional[Session]:
        """Get a snapshot of a session, or None if it does not exist."""
        lock = await self._lookup(session_id)
        if lock is None:
            return None
        async with lock:
            session = self._sessions.get(session_id)
            return session.model_copy(deep=True) if session else None

    async def update_session(self, session_id: str, updates: Dict[str, Any]) -> bool:
        """Apply a partial update.

        Args:
            session_id: Session identifier
            updates: Any of user_id, metadata (merged into existing), messages, routed_messages

        Returns:
            True if the session exists and every key was applied
        """
        unknown = set(updates) - self.UPDATABLE_FIELDS
        if unknown:
            self.logger.warning(f"Rejected update of {session_id}: unsupported fields {sorted(unknown)}")
            return False

        lock = await self._lookup(session_id)
        if lock is None:
            return False

        async with lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False

            data = session.model_dump()
            for key, value in updates.items():
                if key == "metadata":
                    if isinstance(value, SessionMetadata):
                        value = value.model_dump(exclude_unset=True)
                    data["metadata"] = {**data["metadata"], **(value or {})}
                else:
                    data[key] = value

            try:
                updated = Session.model_validate(data)
            except ValidationError as e:
                self.logger.warning(f"Rejected update of {session_id}: {e.error_count()} validation error(s)")
                return False

            updated.touch()
            self._sessions[session_id] = updated
            return True

    async def delete_session(self, session_id: str) -> bool:
        async with self._store_lock:
            removed = self._sessions.pop(session_id, None)
            self._session_locks.pop(session_id, None)

        if removed is None:
            return False

        self.metrics.record_session_change(-1)
        self.audit_logger.log_session_event("session_deleted", session_id, action="delete", result="success")
        self.logger.info(f"Deleted session {session_id}")
        return True

    async def list_sessions(self, user_id: Optional[str] = None) -> List[Session]:
        """List session snapshots, oldest first, optionally filtered by owner."""
        async with self._store_lock:
            sessions = [
                session.model_copy(deep=True)
                for session in self._sessions.values()
                if user_id is None or session.user_id == user_id
            ]
        sessions.sort(key=lambda s: s.created_at)
        return sessions

    async def add_message(self, session_id: str, message: Message) -> bool:
        lock = await self._lookup(session_id)
        if lock is None:
            return False
        async with lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.messages.append(message)
            session.touch()
            return True

    async def get_messages(self, session_id: str, limit: Optional[int] = None) -> List[Message]:
        """Copy of the session's message log.

        Args:
            session_id: Session identifier
            limit: If given, only the most recent `limit` messages, in original order

        Returns:
            List of messages; empty if the session does not exist
        """
        lock = await self._lookup(session_id)
        if lock is None:
            return []
        async with lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            messages = list(session.messages)

        if limit is not None:
            messages = messages[-limit:] if limit > 0 else []
        return messages

    async def add_routed_message(self, session_id: str, routed: RoutedMessage) -> bool:
        lock = await self._lookup(session_id)
        if lock is None:
            return False
        async with lock:
            session = self._sessions.get(session_id)
            if session is None:
                return False
            session.routed_messages.append(routed.model_copy(deep=True))
            session.touch()
            return True

    async def get_routed_messages(self, session_id: str, limit: Optional[int] = None) -> List[RoutedMessage]:
        lock = await self._lookup(session_id)
        if lock is None:
            return []
        async with lock:
            session = self._sessions.get(session_id)
            if session is None:
                return []
            routed = [r.model_copy(deep=True) for r in session.routed_messages]

        if limit is not None:
            routed = routed[-limit:] if limit > 0 else []
        return routed

    async def session_count(self) -> int:
        async with self._store_lock:
            return len(self._sessions)
