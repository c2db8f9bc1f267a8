"""Result and routing decision models shared by every capability agent."""

from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator


class ErrorCode(str, Enum):
    """Stable machine-readable failure reasons carried in `AgentResult.error`."""

    COMMAND_BLOCKED = "command_blocked"
    DOMAIN_BLOCKED = "domain_blocked"
    PATH_VIOLATION = "path_violation"
    FILE_TYPE_NOT_ALLOWED = "file_type_not_allowed"
    INVALID_LINE_RANGE = "invalid_line_range"
    FILE_NOT_FOUND = "file_not_found"
    FILE_EXISTS = "file_exists"
    NOT_A_DIRECTORY = "not_a_directory"
    NO_ACTIVE_PAGE = "no_active_page"
    BROWSER_UNAVAILABLE = "browser_unavailable"
    EXECUTION_TIMEOUT = "execution_timeout"
    EXECUTION_FAILED = "execution_failed"
    TOOL_NOT_FOUND = "tool_not_found"
    MISSING_PARAMETER = "missing_parameter"
    MISSING_CREDENTIAL = "missing_credential"
    INVALID_DEFINITION = "invalid_definition"
    UPSTREAM_ERROR = "upstream_error"
    PLAN_NOT_FOUND = "plan_not_found"
    INVALID_DIRECTIVE = "invalid_directive"
    SESSION_NOT_FOUND = "session_not_found"
    INTERNAL_ERROR = "internal_error"


class AgentResult(BaseModel):
    """Outcome of any public agent or router operation."""

    content: str = Field(..., description="Human-readable response text")
    success: bool = Field(default=True, description="Whether the operation succeeded")
    error: Optional[str] = Field(None, description="Failure reason, an ErrorCode value where one applies")
    data: Optional[Dict[str, Any]] = Field(None, description="Structured payload")

    @classmethod
    def ok(cls, content: str, data: Optional[Dict[str, Any]] = None) -> "AgentResult":
        return cls(content=content, success=True, data=data)

    @classmethod
    def fail(
        cls,
        content: str,
        error: "ErrorCode | str",
        data: Optional[Dict[str, Any]] = None
    ) -> "AgentResult":
        reason = error.value if isinstance(error, ErrorCode) else error
        return cls(content=content, success=False, error=reason, data=data)


class DecisionSource(str, Enum):
    """Where a routing decision came from."""

    LLM = "llm"
    FALLBACK = "fallback"
    NONE = "none"


class RoutingDecision(BaseModel):
    """Transient classification output consumed by the dispatch step."""

    agent_name: Optional[str] = Field(None, description="Registered capability name")
    modified_message: Optional[str] = Field(None, description="Message rewritten for the target agent")
    confidence: float = Field(default=0.0, ge=0.0, le=1.0, description="Routing confidence")
    source: DecisionSource = Field(default=DecisionSource.NONE, description="Decision origin")

    @field_validator('confidence', mode='before')
    @classmethod
    def clamp_confidence(cls, v: Any) -> float:
        """Coerce classifier output into [0, 1]."""
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.0
        if value != value:  # NaN
            return 0.0
        return max(0.0, min(1.0, value))

    @property
    def has_agent(self) -> bool:
        return bool(self.agent_name)
