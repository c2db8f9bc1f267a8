"""
Unit tests for data models validation and serialization.
"""

import pytest
from datetime import datetime, timedelta, timezone

from pydantic import ValidationError

from morpheus.models import (
    AgentKind,
    AgentResult,
    AuditRecord,
    AuthType,
    CapabilityRegistration,
    DecisionSource,
    ErrorCode,
    EventType,
    HttpMethod,
    Message,
    MessageRole,
    Plan,
    ResultStatus,
    RoutedMessage,
    RoutingDecision,
    Session,
    StepStatus,
    TaskStep,
    ToolDefinition,
)


class TestMessage:
    """Test Message model behavior."""

    def test_role_constructors(self):
        assert Message.user("hi").role == MessageRole.USER
        assert Message.agent("hi").role == MessageRole.AGENT
        assert Message.system("hi").role == MessageRole.SYSTEM

    def test_message_is_immutable(self):
        message = Message.user("hello")
        with pytest.raises(ValidationError):
            message.content = "changed"

    def test_prompt_line(self):
        assert Message.agent("done").to_prompt_line() == "agent: done"


class TestAgentResult:
    """Test AgentResult helpers."""

    def test_ok_defaults(self):
        result = AgentResult.ok("fine")
        assert result.success is True
        assert result.error is None
        assert result.data is None

    def test_fail_carries_error_code_value(self):
        result = AgentResult.fail("nope", ErrorCode.COMMAND_BLOCKED, {"command": "sudo ls"})
        assert result.success is False
        assert result.error == "command_blocked"
        assert result.data == {"command": "sudo ls"}

    def test_fail_accepts_plain_reason(self):
        assert AgentResult.fail("nope", "custom").error == "custom"


class TestRoutingDecision:
    """Test RoutingDecision confidence handling."""

    @pytest.mark.parametrize("raw, expected", [
        (1.7, 1.0),
        (-0.3, 0.0),
        ("0.5", 0.5),
        ("high", 0.0),
        (None, 0.0),
        (float("nan"), 0.0),
    ])
    def test_confidence_is_clamped(self, raw, expected):
        assert RoutingDecision(agent_name="Web Agent", confidence=raw).confidence == expected

    def test_has_agent(self):
        assert RoutingDecision(agent_name="Web Agent").has_agent
        assert not RoutingDecision().has_agent
        assert RoutingDecision().source == DecisionSource.NONE


class TestSession:
    """Test Session model validation."""

    def test_defaults(self):
        session = Session()
        assert session.id
        assert session.messages == []
        assert session.routed_messages == []
        assert session.metadata.user_control_mode is False

    def test_ids_are_unique(self):
        assert Session().id != Session().id

    def test_last_active_cannot_precede_creation(self):
        now = datetime.now(timezone.utc)
        with pytest.raises(ValidationError):
            Session(created_at=now, last_active=now - timedelta(seconds=1))

    def test_metadata_allows_extra_keys(self):
        session = Session(metadata={"active_tab": "terminal", "theme": "dark"})
        assert session.metadata.active_tab == "terminal"
        assert session.metadata.model_dump()["theme"] == "dark"

    def test_summary(self):
        session = Session(user_id="u1", messages=[Message.user("a"), Message.agent("b")])
        summary = session.get_summary()
        assert summary["user_id"] == "u1"
        assert summary["message_count"] == 2

    def test_routed_message_keeps_response(self):
        routed = RoutedMessage(
            original_message="ls",
            routed_agent_name="Terminal Agent",
            response=AgentResult.ok("file.txt")
        )
        assert routed.id
        assert routed.response.content == "file.txt"


class TestToolDefinition:
    """Test ToolDefinition validation and normalization."""

    def test_camel_case_auth_is_normalized(self):
        tool = ToolDefinition.model_validate({
            "name": "stocks",
            "description": "Stock quotes",
            "endpoint": "https://api.example.com/quote",
            "method": "get",
            "authType": "apiKey",
            "parameters": [{"name": "symbol", "required": True}]
        })
        assert tool.method == HttpMethod.GET
        assert tool.auth_type == AuthType.API_KEY
        assert tool.requires_auth
        assert [p.name for p in tool.required_parameters] == ["symbol"]

    def test_requires_auth_flag_defaults_to_api_key(self):
        tool = ToolDefinition.model_validate({
            "name": "quotes",
            "description": "Quotes",
            "endpoint": "https://api.example.com",
            "requiresAuth": True
        })
        assert tool.auth_type == AuthType.API_KEY

    def test_invalid_name_rejected(self):
        with pytest.raises(ValidationError):
            ToolDefinition(name="bad name!", description="x", endpoint="https://example.com")

    def test_non_http_endpoint_rejected(self):
        with pytest.raises(ValidationError):
            ToolDefinition(name="files", description="x", endpoint="file:///etc/passwd")


class TestPlan:
    """Test Plan and TaskStep models."""

    def test_step_status_accepts_variants(self):
        assert TaskStep(id="s1", title="t", status="in_progress").status == StepStatus.IN_PROGRESS

    def test_progress(self):
        plan = Plan(
            id="plan-1",
            title="Ship",
            steps=[
                TaskStep(id="s1", title="a", status="completed"),
                TaskStep(id="s2", title="b"),
            ]
        )
        assert plan.progress == 50

    def test_empty_plan_progress(self):
        assert Plan(id="plan-2", title="Empty").progress == 0


class TestAuditRecord:
    """Test AuditRecord sanitization."""

    def test_sensitive_metadata_is_redacted(self):
        record = AuditRecord(
            event_type=EventType.SECURITY,
            action="domain_blocked",
            result=ResultStatus.BLOCKED,
            metadata={"api_key": "secret-value", "url": "http://localhost"}
        )
        assert record.metadata["api_key"] != "secret-value"
        assert record.metadata["url"] == "http://localhost"
        assert record.is_security_event()


class TestCapabilityRegistration:
    """Test registrations built from agents."""

    def test_for_agent(self):
        class Worker:
            name = "Planner Agent"
            description = "Plans things"
            kind = AgentKind.PLANNER

        registration = CapabilityRegistration.for_agent(Worker())
        assert registration.name == "Planner Agent"
        assert registration.kind == AgentKind.PLANNER

    def test_blank_name_rejected(self):
        with pytest.raises(ValidationError):
            CapabilityRegistration(name="   ", description="x", kind=AgentKind.TOOL, agent=object())
