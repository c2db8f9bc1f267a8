"""Classification prompt and deterministic fallback routing rules."""

import re
from typing import Dict, List, Optional, Pattern, Tuple

from ..lib.json_extract import Decoded, extract_json_object
from ..models.agent_result import DecisionSource, RoutingDecision
from ..models.message import Message


TERMINAL_AGENT = "Terminal Agent"
EDITOR_AGENT = "Editor Agent"
WEB_AGENT = "Web Agent"
PLANNER_AGENT = "Planner Agent"
TOOL_AGENT = "Tool Agent"

LISTING_COMMAND = "!exec ls -la"

# ordered, first match wins
DIRECTIVE_RULES: List[Tuple[str, Pattern]] = [
    (EDITOR_AGENT, re.compile(r"^!file\b", re.IGNORECASE)),
    (PLANNER_AGENT, re.compile(r"^!plan\b", re.IGNORECASE)),
    (TOOL_AGENT, re.compile(r"^!(tool|register|apikey)\b|^!list tools\b", re.IGNORECASE)),
]

LISTING_PATTERN = re.compile(
    r"list files|directory|folder|\bls\b|\bdir\b|find file|file system", re.IGNORECASE
)

KEYWORD_RULES: List[Tuple[str, float, Pattern]] = [
    (TERMINAL_AGENT, 0.8, re.compile(r"terminal|command|bash|shell|^!exec", re.IGNORECASE)),
    (WEB_AGENT, 0.8, re.compile(r"search|browse|website|look up|https?://\S+", re.IGNORECASE)),
    (EDITOR_AGENT, 0.8, re.compile(
        r"edit file|create file|modify file|write file|read file|delete file|"
        r"show file content|code analysis|editor",
        re.IGNORECASE
    )),
    (TOOL_AGENT, 0.8, re.compile(
        r"api call|external api|tool|weather|news|dictionary|lookup|"
        r"external service|3rd party|third party",
        re.IGNORECASE
    )),
]

ROUTER_PROMPT = """You are the Supervisor Agent for Morpheus AI.
Your primary responsibility is to manage all operations, delegate tasks to specialized agents, and maintain system integrity.
- You should route user queries to the appropriate specialized agent(s).
- You must prevent direct agent-to-agent communication.
- You can manually intervene when necessary.
- You should maintain a clear session history for context.
- You must ensure that each agent operates only within its designated capabilities."""

CLASSIFIER_PROMPT = """You are a routing expert for an AI assistant with multiple specialized agents.
Available agents: {names}.

Each agent has specific capabilities:
{capabilities}

Analyze the user's message and determine which agent is best suited to handle it.
Return a JSON object with:
- "agentName": The name of the most appropriate agent, exactly as listed above
- "modifiedMessage": The original message, potentially rephrased for the specific agent
- "confidence": A number between 0 and 1 indicating your confidence in this routing"""

CLASSIFIER_REQUEST = """User message: "{message}"

Recent conversation history:
{history}

Based on the message and context, which agent should handle this request?
Respond with a JSON object only."""


def build_classifier_prompt(descriptions: Dict[str, str]) -> str:
    """System prompt listing every registered capability with its description."""
    return CLASSIFIER_PROMPT.format(
        names=", ".join(descriptions),
        capabilities="\n".join(f"- {name}: {description}" for name, description in descriptions.items())
    )


def build_classifier_request(message: str, history: List[Message]) -> str:
    return CLASSIFIER_REQUEST.format(
        message=message,
        history="\n".join(entry.to_prompt_line() for entry in history)
    )


def parse_classification(text: Optional[str], known_agents: List[str]) -> Optional[RoutingDecision]:
    """Decode a classifier reply; None when it names no registered agent or is not JSON."""
    decoded = extract_json_object(text)
    if not isinstance(decoded, Decoded):
        return None

    value = decoded.value
    agent_name = value.get("agentName") or value.get("agent_name")
    if not isinstance(agent_name, str) or agent_name not in known_agents:
        return None

    modified = value.get("modifiedMessage") or value.get("modified_message")
    return RoutingDecision(
        agent_name=agent_name,
        modified_message=modified if isinstance(modified, str) and modified.strip() else None,
        confidence=value.get("confidence", 0.0),
        source=DecisionSource.LLM
    )


def fallback_decision(message: str) -> RoutingDecision:
    """Keyword routing used when classification yields no usable decision.

    Rules are applied in order and the first match wins.
    """
    stripped = message.strip()

    for agent_name, pattern in DIRECTIVE_RULES:
        if pattern.search(stripped):
            return RoutingDecision(agent_name=agent_name, confidence=1.0, source=DecisionSource.FALLBACK)

    if LISTING_PATTERN.search(message):
        return RoutingDecision(
            agent_name=TERMINAL_AGENT,
            modified_message=message if stripped.startswith("!exec") else LISTING_COMMAND,
            confidence=0.9,
            source=DecisionSource.FALLBACK
        )

    for agent_name, confidence, pattern in KEYWORD_RULES:
        if pattern.search(stripped):
            return RoutingDecision(agent_name=agent_name, confidence=confidence, source=DecisionSource.FALLBACK)

    return RoutingDecision(confidence=0.0, source=DecisionSource.NONE)
