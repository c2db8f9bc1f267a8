"""Capability registration model for the router registry."""

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator


class AgentKind(str, Enum):
    """Kinds of capability workers the router can dispatch to."""

    TERMINAL = "terminal"
    EDITOR = "editor"
    WEB = "web"
    PLANNER = "planner"
    TOOL = "tool"


class CapabilityRegistration(BaseModel):
    """Registry entry binding a unique capability name to a worker instance."""

    model_config = ConfigDict(arbitrary_types_allowed=True, frozen=True)

    name: str = Field(..., min_length=1, description="Unique capability name, also its display name")
    description: str = Field(..., description="One-line description shown to the classifier")
    kind: AgentKind = Field(..., description="Worker kind")
    agent: Any = Field(..., description="Worker instance implementing handle()")

    @field_validator('name')
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name cannot be empty")
        return v.strip()

    @classmethod
    def for_agent(cls, agent: Any) -> "CapabilityRegistration":
        """Build a registration from an agent's own name, description and kind."""
        return cls(name=agent.name, description=agent.description, kind=agent.kind, agent=agent)
