"""Plan and task step models for the planner agent."""

from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator


class StepStatus(str, Enum):
    """Task step status."""

    PENDING = "pending"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    BLOCKED = "blocked"


class PlanStatus(str, Enum):
    """Plan lifecycle status."""

    DRAFT = "draft"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TaskStep(BaseModel):
    """Single actionable step of a plan."""

    id: str = Field(..., description="Step identifier, unique within the plan")
    title: str = Field(..., description="Short step title")
    description: str = Field(default="", description="What needs to be done")
    status: StepStatus = Field(default=StepStatus.PENDING, description="Step progress")
    dependencies: List[str] = Field(default_factory=list, description="Step ids that must finish first")
    estimated_duration: Optional[str] = Field(None, description="Free-form duration estimate")
    assigned_to: Optional[str] = Field(None, description="Owner of the step")

    @field_validator('status', mode='before')
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            return v.strip().lower().replace("_", "-").replace(" ", "-")
        return v


class Plan(BaseModel):
    """Structured execution plan."""

    id: str = Field(..., description="Plan identifier")
    title: str = Field(..., description="Concise plan title")
    description: str = Field(default="", description="Purpose and goals")
    steps: List[TaskStep] = Field(default_factory=list, description="Ordered steps")
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    status: PlanStatus = Field(default=PlanStatus.DRAFT, description="Plan status")

    @property
    def progress(self) -> int:
        """Percentage of completed steps."""
        if not self.steps:
            return 0
        completed = sum(1 for step in self.steps if step.status == StepStatus.COMPLETED)
        return round(completed * 100 / len(self.steps))
