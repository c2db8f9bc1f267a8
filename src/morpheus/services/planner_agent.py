"""Planner agent producing structured, in-memory execution plans."""

import json
import re
import time
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from ..lib.completion import CompletionClient, CompletionError
from ..lib.json_extract import Decoded, extract_json_object
from ..models.agent_result import AgentResult, ErrorCode
from ..models.capability import AgentKind
from ..models.message import Message
from ..models.plan import Plan, PlanStatus, StepStatus
from .base_agent import BaseAgent


PLANNER_PROMPT = """You are a Planning Agent for Morpheus AI.
Your role is to help users create structured plans and execution strategies.
- You should break down complex tasks into clear, actionable steps
- You should identify dependencies between steps
- You should provide time estimates when possible
- You should help users track progress and adapt plans as needed
- You should suggest optimizations and improvements to existing plans
- You should consider resource constraints and potential risks"""

CREATE_PLAN_PROMPT = """Create a detailed plan for the following goal: "{goal}"

Format the plan as a structured JSON object with the following properties:
- title: A concise title for the plan
- description: A detailed description of the plan's purpose and goals
- steps: An array of steps, each with:
  - id: A unique identifier for the step (e.g., "step1")
  - title: A brief title for the step
  - description: A detailed description of what needs to be done
  - dependencies: An array of step IDs that must be completed before this step can begin
  - estimated_duration: Estimated time to complete this step (e.g., "2 hours", "3 days")

Provide a comprehensive and realistic plan. Respond with the JSON object only."""

UPDATE_PLAN_PROMPT = """Here is an existing plan in JSON format:
```json
{plan_json}
```

Update this plan based on the following request: "{changes}"

Return the complete updated plan as a valid JSON object with the same structure.
Make sure all steps have a status field (pending, in-progress, completed or blocked)."""

PLAN_PREFIX = "!plan"
PLAN_FENCE = re.compile(r"```plan\s+([\s\S]+?)```")

_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


def _base36(value: int) -> str:
    digits = []
    while True:
        value, remainder = divmod(value, 36)
        digits.append(_BASE36[remainder])
        if value == 0:
            break
    return "".join(reversed(digits))


def _normalize_step_keys(step: Dict[str, Any]) -> Dict[str, Any]:
    step = dict(step)
    for camel, snake in (("estimatedDuration", "estimated_duration"), ("assignedTo", "assigned_to")):
        if camel in step and snake not in step:
            step[snake] = step.pop(camel)
    return step


class PlannerAgent(BaseAgent):
    """Creates and tracks structured plans."""

    kind = AgentKind.PLANNER

    def __init__(self, completion: CompletionClient):
        super().__init__(
            "Planner Agent",
            "Creates structured plans and execution strategies",
            PLANNER_PROMPT,
            completion
        )
        self._plans: Dict[str, Plan] = {}
        self._last_id_ms = 0

    def _new_plan_id(self) -> str:
        millis = max(int(time.time() * 1000), self._last_id_ms + 1)
        self._last_id_ms = millis
        return f"plan-{_base36(millis)}"

    async def handle(self, message: str, history: List[Message]) -> AgentResult:
        text = message.strip()
        lowered = text.lower()

        if lowered.startswith(f"{PLAN_PREFIX} create"):
            return await self.create_plan(text[len(PLAN_PREFIX) + 7:].strip())
        if lowered.startswith(f"{PLAN_PREFIX} update"):
            parts = text[len(PLAN_PREFIX) + 7:].strip().split(None, 1)
            if not parts:
                return AgentResult.fail("Usage: !plan update <plan-id> <changes>", ErrorCode.INVALID_DIRECTIVE)
            return await self.update_plan(parts[0], parts[1] if len(parts) > 1 else "")
        if lowered.startswith(f"{PLAN_PREFIX} list"):
            return self.list_plans()
        if lowered.startswith(f"{PLAN_PREFIX} details"):
            return self.get_plan(text[len(PLAN_PREFIX) + 8:].strip())

        prompt = message
        if self._plans:
            prompt += "\n\nExisting plans:\n" + "\n".join(
                f"- {plan.id}: {plan.title} ({plan.status.value})" for plan in self._plans.values()
            )
        result = await self._answer(prompt, history)
        if not result.success:
            return result

        fenced = PLAN_FENCE.search(result.content)
        if fenced:
            decoded = extract_json_object(fenced.group(1))
            if isinstance(decoded, Decoded):
                plan = self._build_plan(decoded.value)
                if plan is not None:
                    self._plans[plan.id] = plan
                    return AgentResult.ok(
                        f"{result.content}\n\nSaved as plan {plan.id}.",
                        {"plan": plan.model_dump(mode="json")}
                    )
        return result

    def _build_plan(self, data: Dict[str, Any], plan_id: Optional[str] = None,
                    created_at: Optional[datetime] = None) -> Optional[Plan]:
        now = datetime.now(timezone.utc)
        steps = [_normalize_step_keys(step) for step in data.get("steps", []) if isinstance(step, dict)]
        if plan_id is None:
            for step in steps:
                step["status"] = StepStatus.PENDING.value
        try:
            return Plan(
                id=plan_id or self._new_plan_id(),
                title=data.get("title") or "Untitled plan",
                description=data.get("description") or "",
                steps=steps,
                created_at=created_at or now,
                updated_at=now,
                status=data.get("status") or PlanStatus.DRAFT.value
            )
        except ValidationError as e:
            self.logger.warning(f"Discarding malformed plan: {e}")
            return None

    async def create_plan(self, goal: str) -> AgentResult:
        """Ask the completion service for a structured plan and store it."""
        if not goal:
            return AgentResult.fail("Usage: !plan create <goal>", ErrorCode.INVALID_DIRECTIVE)

        try:
            reply = await self.completion.complete(self.system_prompt, [Message.user(CREATE_PLAN_PROMPT.format(goal=goal))])
        except CompletionError as e:
            return AgentResult.fail(f"Error creating plan: {e}", ErrorCode.UPSTREAM_ERROR, {"message": str(e)})

        decoded = extract_json_object(reply)
        plan = self._build_plan(decoded.value) if isinstance(decoded, Decoded) else None
        if plan is None:
            return AgentResult.fail(
                f"I couldn't create a structured plan. Here's what I came up with instead:\n\n{reply}",
                ErrorCode.UPSTREAM_ERROR,
                {"raw": reply}
            )

        self._plans[plan.id] = plan
        self.logger.info(f"Created plan {plan.id} with {len(plan.steps)} steps")
        return AgentResult.ok(
            self._format_plan(plan, heading="Plan Created")
            + f"\n\nUse `!plan details {plan.id}` to view this plan again, "
              f"or `!plan update {plan.id}` to modify it.",
            {"plan": plan.model_dump(mode="json")}
        )

    async def update_plan(self, plan_id: str, changes: str) -> AgentResult:
        """Rewrite an existing plan according to `changes`, keeping its id and creation time."""
        plan = self._plans.get(plan_id)
        if plan is None:
            return AgentResult.fail(
                f"Plan with ID {plan_id} not found. Use `!plan list` to see available plans.",
                ErrorCode.PLAN_NOT_FOUND
            )
        if not changes:
            return AgentResult.fail("Describe the changes to apply to the plan.", ErrorCode.INVALID_DIRECTIVE)

        plan_json = json.dumps(plan.model_dump(mode="json"), indent=2)
        try:
            reply = await self.completion.complete(
                self.system_prompt,
                [Message.user(UPDATE_PLAN_PROMPT.format(plan_json=plan_json, changes=changes))]
            )
        except CompletionError as e:
            return AgentResult.fail(f"Error updating plan: {e}", ErrorCode.UPSTREAM_ERROR, {"message": str(e)})

        decoded = extract_json_object(reply)
        updated = (
            self._build_plan(decoded.value, plan_id=plan.id, created_at=plan.created_at)
            if isinstance(decoded, Decoded) else None
        )
        if updated is None:
            return AgentResult.fail(
                f"I couldn't parse the updated plan:\n\n{reply}",
                ErrorCode.UPSTREAM_ERROR,
                {"raw": reply}
            )

        self._plans[plan.id] = updated
        return AgentResult.ok(self._format_plan(updated, heading="Plan Updated"), {"plan": updated.model_dump(mode="json")})

    def list_plans(self) -> AgentResult:
        if not self._plans:
            return AgentResult.ok("No plans have been created yet. Use `!plan create <goal>` to start.", {"plans": []})
        lines = ["Plans:"]
        summaries = []
        for plan in self._plans.values():
            lines.append(f"- {plan.id}: {plan.title} ({plan.status.value}, {plan.progress}% complete)")
            summaries.append({"id": plan.id, "title": plan.title, "status": plan.status.value, "progress": plan.progress})
        return AgentResult.ok("\n".join(lines), {"plans": summaries})

    def get_plan(self, plan_id: str) -> AgentResult:
        plan = self._plans.get(plan_id)
        if plan is None:
            return AgentResult.fail(
                f"Plan with ID {plan_id} not found. Use `!plan list` to see available plans.",
                ErrorCode.PLAN_NOT_FOUND
            )
        return AgentResult.ok(self._format_plan(plan, heading="Plan"), {"plan": plan.model_dump(mode="json")})

    def _format_plan(self, plan: Plan, heading: str) -> str:
        lines = [
            f"**{heading}: {plan.title}**",
            "",
            f"**ID:** {plan.id}",
            f"**Status:** {plan.status.value} ({plan.progress}% complete)",
            f"**Description:** {plan.description}",
            "",
            "**Steps:**",
        ]
        for step in plan.steps:
            lines.append(f"- **{step.title}** [{step.status.value}] ({step.estimated_duration or 'Unknown duration'})")
            if step.description:
                lines.append(f"  {step.description}")
            if step.dependencies:
                lines.append(f"  Dependencies: {', '.join(step.dependencies)}")
        return "\n".join(lines)
