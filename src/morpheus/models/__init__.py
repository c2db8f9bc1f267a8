"""Morpheus data models.

This package contains the data model shared by the router, the session store and
the capability agents: messages, sessions, routing records, agent results, tool
definitions, plans and audit records.
"""

from .message import Message, MessageRole
from .agent_result import AgentResult, DecisionSource, ErrorCode, RoutingDecision
from .session import RoutedMessage, Session, SessionMetadata
from .tool_definition import AuthType, HttpMethod, ParameterType, ToolDefinition, ToolParameter
from .capability import AgentKind, CapabilityRegistration
from .file_operation import FileOperation, FileOperationType
from .plan import Plan, PlanStatus, StepStatus, TaskStep
from .audit_record import AuditRecord, EventType, ResultStatus

__all__ = [
    # Messages
    "Message",
    "MessageRole",
    # Results and routing
    "AgentResult",
    "DecisionSource",
    "ErrorCode",
    "RoutingDecision",
    # Sessions
    "RoutedMessage",
    "Session",
    "SessionMetadata",
    # Capabilities
    "AgentKind",
    "CapabilityRegistration",
    # Tools
    "AuthType",
    "HttpMethod",
    "ParameterType",
    "ToolDefinition",
    "ToolParameter",
    # File operations
    "FileOperation",
    "FileOperationType",
    # Plans
    "Plan",
    "PlanStatus",
    "StepStatus",
    "TaskStep",
    # Audit
    "AuditRecord",
    "EventType",
    "ResultStatus",
]
