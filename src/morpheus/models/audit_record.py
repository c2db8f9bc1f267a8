"""AuditRecord model for sandbox guard decisions."""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field, field_validator


class EventType(str, Enum):
    """Audit event type enumeration."""

    SECURITY = "security"
    ROUTING = "routing"
    SESSION = "session"
    AGENT = "agent"


class ResultStatus(str, Enum):
    """Decision outcome enumeration."""

    ALLOWED = "allowed"
    BLOCKED = "blocked"
    FAILURE = "failure"


class AuditRecord(BaseModel):
    """
    Log entry for an allow/deny decision taken at a sandbox boundary.

    Requests are sanitized before they are stored so credentials never land in the
    audit trail.
    """

    model_config = ConfigDict(use_enum_values=True)

    record_id: str = Field(default_factory=lambda: str(uuid4()), description="Unique identifier for the audit record")
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), description="When the event occurred")
    event_type: EventType = Field(..., description="Type of event")
    session_id: Optional[str] = Field(None, description="Related session if known")
    agent_name: Optional[str] = Field(None, description="Capability that requested the action")

    action: str = Field(..., description="Operation that was checked")
    result: ResultStatus = Field(..., description="Outcome of the check")
    reason: Optional[str] = Field(None, description="Why the action was blocked or allowed")

    trace_id: Optional[str] = Field(None, description="OpenTelemetry trace identifier for correlation")
    metadata: Dict[str, Any] = Field(default_factory=dict, description="Additional event metadata")

    @field_validator('action')
    @classmethod
    def validate_action(cls, v):
        """Validate action is not empty."""
        if not v.strip():
            raise ValueError("action cannot be empty")
        return v.strip()

    @field_validator('metadata')
    @classmethod
    def sanitize_sensitive_data(cls, v):
        """Sanitize sensitive data from metadata."""
        sensitive_keys = ['password', 'token', 'secret', 'credential', 'authorization', 'api_key', 'apikey']

        sanitized = {}
        for key, value in v.items():
            key_lower = key.lower()
            if any(sensitive in key_lower for sensitive in sensitive_keys):
                sanitized[key] = "[REDACTED]"
            elif isinstance(value, dict):
                sanitized[key] = cls.sanitize_sensitive_data(value)
            else:
                sanitized[key] = value
        return sanitized

    def is_security_event(self) -> bool:
        return self.event_type == EventType.SECURITY.value or self.result == ResultStatus.BLOCKED.value

    def to_log_entry(self) -> Dict[str, Any]:
        """Convert to structured log entry format."""
        return {
            "record_id": self.record_id,
            "timestamp": self.timestamp.isoformat(),
            "level": "WARN" if self.result == ResultStatus.BLOCKED.value else "INFO",
            "event_type": self.event_type,
            "session_id": self.session_id,
            "agent_name": self.agent_name,
            "action": self.action,
            "result": self.result,
            "reason": self.reason,
            "trace_id": self.trace_id,
        }
