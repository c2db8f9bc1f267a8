"""Message model for session and router history."""

from datetime import datetime, timezone
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class MessageRole(str, Enum):
    """Message role enumeration."""

    USER = "user"
    SYSTEM = "system"
    AGENT = "agent"


class Message(BaseModel):
    """Single entry of a conversation log.

    Messages are immutable once created; ordering is the insertion order of the
    log they are appended to.
    """

    model_config = ConfigDict(frozen=True)

    role: MessageRole = Field(..., description="Who produced the message")
    content: str = Field(..., description="Message text")
    timestamp: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="When the message was created"
    )

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(role=MessageRole.USER, content=content)

    @classmethod
    def agent(cls, content: str) -> "Message":
        return cls(role=MessageRole.AGENT, content=content)

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(role=MessageRole.SYSTEM, content=content)

    def to_prompt_line(self) -> str:
        """Render the message as a `role: content` transcript line."""
        return f"{self.role.value}: {self.content}"
