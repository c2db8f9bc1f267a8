"""Session model with routing audit trail and metadata."""

from datetime import datetime, timezone
from typing import List, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .agent_result import AgentResult
from .message import Message


class SessionMetadata(BaseModel):
    """Per-session UI and control state."""

    model_config = ConfigDict(extra="allow")

    user_control_mode: bool = Field(default=False, description="Whether the user has taken manual control")
    active_tab: Optional[str] = Field(None, description="Workspace window currently focused")
    active_agent: Optional[str] = Field(None, description="Agent that handled the last routed message")
    custom_instructions: Optional[str] = Field(None, description="User-supplied instructions")


class RoutedMessage(BaseModel):
    """Audit record of one routing decision."""

    id: str = Field(default_factory=lambda: str(uuid4()), description="Routing record identifier")
    original_message: str = Field(..., description="Message as received from the user")
    routed_agent_name: str = Field(..., description="Capability that handled the message")
    response: Optional[AgentResult] = Field(None, description="Result returned by the agent")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the routing decision was made"
    )


class Session(BaseModel):
    """A conversation's process-lifetime state.

    Owned by the session store; callers only ever see snapshots.
    """

    id: str = Field(default_factory=lambda: str(uuid4()), description="Opaque unique session token")
    user_id: Optional[str] = Field(None, description="Owning user, if known")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Session creation timestamp"
    )
    last_active: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Refreshed on every mutation"
    )
    messages: List[Message] = Field(default_factory=list, description="Ordered message log")
    routed_messages: List[RoutedMessage] = Field(default_factory=list, description="Ordered routing audit log")
    metadata: SessionMetadata = Field(default_factory=SessionMetadata, description="Session metadata")

    @model_validator(mode='after')
    def validate_timestamps(self):
        """Ensure last_active is not before created_at."""
        if self.last_active < self.created_at:
            raise ValueError("last_active cannot be before created_at")
        return self

    def touch(self) -> None:
        self.last_active = datetime.now(timezone.utc)

    def get_summary(self) -> dict:
        """Get a compact description of the session for listings."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": self.created_at.isoformat(),
            "last_active": self.last_active.isoformat(),
            "message_count": len(self.messages),
            "routed_count": len(self.routed_messages),
            "user_control_mode": self.metadata.user_control_mode,
        }
