"""Supervisor agent: classifies inbound messages and dispatches them to capability workers."""

import asyncio
import logging
from collections import deque
from typing import Deque, Dict, List, Optional, Tuple

from ..lib.completion import CompletionClient, CompletionError
from ..lib.logging_config import AuditLogger, get_audit_logger
from ..lib.metrics import MetricsCollector, get_metrics_collector, time_agent_operation
from ..lib.observability import get_tracer
from ..models.agent_result import AgentResult, DecisionSource, ErrorCode, RoutingDecision
from ..models.capability import CapabilityRegistration
from ..models.message import Message
from ..models.session import RoutedMessage
from .agent_registry import CapabilityRegistry
from .routing import (
    ROUTER_PROMPT,
    build_classifier_prompt,
    build_classifier_request,
    fallback_decision,
    parse_classification,
)
from .session_channels import SessionChannelHub
from .session_manager import MemorySessionManager


ROUTING_HISTORY_LIMIT = 1000


class SupervisorAgent:
    """
    Routes every user message to at most one capability worker.

    Classification goes through the completion service first; when that yields
    no usable decision the deterministic keyword rules decide. Messages no
    worker claims are answered directly with the supervisor persona.
    """

    name = "Supervisor Agent"
    description = "Controls all operations, delegates tasks, and maintains system integrity"

    def __init__(
        self,
        registry: CapabilityRegistry,
        completion: CompletionClient,
        session_manager: Optional[MemorySessionManager] = None,
        channels: Optional[SessionChannelHub] = None,
        history_window: int = 10,
        min_confidence: float = 0.0,
        routing_history_limit: int = ROUTING_HISTORY_LIMIT,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None
    ):
        self.logger = logging.getLogger(__name__)
        self.registry = registry
        self.completion = completion
        self.session_manager = session_manager
        self.channels = channels
        self.history_window = history_window
        self.min_confidence = min_confidence
        self.audit_logger = audit_logger or get_audit_logger()
        self.metrics = metrics or get_metrics_collector()
        self.tracer = get_tracer(__name__)

        # only the last history_window entries are ever read back
        self._message_history: Deque[Message] = deque(maxlen=history_window)
        self._routing_history: Deque[RoutedMessage] = deque(maxlen=routing_history_limit)
        self._history_lock = asyncio.Lock()
        self._session_locks: Dict[str, asyncio.Lock] = {}

    def register(self, registration: CapabilityRegistration) -> None:
        self.registry.register(registration)

    def registered_names(self) -> List[str]:
        return self.registry.names()

    async def initialize(self) -> bool:
        """Initialize every registered worker.

        Returns:
            True only if all workers initialized successfully
        """
        registrations = self.registry.registrations()
        results = await asyncio.gather(
            *(registration.agent.initialize() for registration in registrations),
            return_exceptions=True
        )

        all_initialized = True
        for registration, result in zip(registrations, results):
            if isinstance(result, BaseException):
                self.logger.error(f"Failed to initialize {registration.name}: {result}")
                all_initialized = False
            elif result is not True:
                self.logger.error(f"{registration.name} did not initialize")
                all_initialized = False

        if not all_initialized:
            self.logger.error("Not all agents initialized successfully")
        return all_initialized

    async def shutdown(self) -> None:
        for registration in self.registry.registrations():
            try:
                await registration.agent.shutdown()
            except Exception as e:
                self.logger.error(f"Error shutting down {registration.name}: {e}")

    async def delete_session(self, session_id: str) -> bool:
        """Delete a session and drop its dispatch lock."""
        self._session_locks.pop(session_id, None)
        if self.session_manager is None:
            return False
        return await self.session_manager.delete_session(session_id)

    async def get_message_history(self) -> List[Message]:
        async with self._history_lock:
            return list(self._message_history)

    async def get_routing_history(self) -> List[RoutedMessage]:
        async with self._history_lock:
            return [routed.model_copy(deep=True) for routed in self._routing_history]

    async def dispatch(
        self,
        message: str,
        history: Optional[List[Message]] = None,
        session_id: Optional[str] = None
    ) -> AgentResult:
        """Route one message and return the worker's (or the supervisor's) result.

        Args:
            message: Raw user message
            history: Caller-supplied conversation context; defaults to the session log
            session_id: Session to record the exchange in, if any

        Returns:
            AgentResult; this method never raises
        """
        if session_id is None:
            result, _ = await self._dispatch_safely(message, list(history or []), None)
            return result
        result, _ = await self.dispatch_to_session(session_id, message, history)
        return result

    async def dispatch_to_session(
        self,
        session_id: str,
        message: str,
        history: Optional[List[Message]] = None
    ) -> Tuple[AgentResult, Optional[Message]]:
        """Dispatch within a session, serialized per session.

        Returns:
            The result and the agent message recorded in the session (None when the
            session does not exist)
        """
        if self.session_manager is None or await self.session_manager.get_session(session_id) is None:
            return AgentResult.fail(
                f"Session not found: {session_id}",
                ErrorCode.SESSION_NOT_FOUND,
                {"session_id": session_id}
            ), None

        lock = self._session_locks.setdefault(session_id, asyncio.Lock())
        async with lock:
            if history is None:
                history = await self.session_manager.get_messages(session_id)
            await self.session_manager.add_message(session_id, Message.user(message))
            result, agent_message = await self._dispatch_safely(message, list(history), session_id)
            await self.session_manager.add_message(session_id, agent_message)

        if self.channels is not None:
            self.channels.publish(session_id, "new_message", agent_message.model_dump(mode="json"))
        return result, agent_message

    async def _dispatch_safely(
        self,
        message: str,
        history: List[Message],
        session_id: Optional[str]
    ) -> Tuple[AgentResult, Message]:
        try:
            result = await self._dispatch(message, history, session_id)
        except Exception as e:
            self.logger.error(f"Unexpected error dispatching message: {e}", exc_info=True)
            result = AgentResult.fail(
                f"I encountered an error processing your request: {e}",
                ErrorCode.INTERNAL_ERROR,
                {"message": str(e)}
            )
        return result, Message.agent(result.content)

    async def _dispatch(self, message: str, history: List[Message], session_id: Optional[str]) -> AgentResult:
        async with self._history_lock:
            self._message_history.append(Message.user(message))
            # router history is shared by all sessions and joins every window
            window = (history + list(self._message_history))[-self.history_window:]

        with self.tracer.start_as_current_span("morpheus.dispatch") as span:
            decision = await self._determine_routing(message, window)
            span.set_attribute("morpheus.routing.source", decision.source.value)
            span.set_attribute("morpheus.routing.confidence", decision.confidence)
            if decision.agent_name:
                span.set_attribute("morpheus.routing.agent", decision.agent_name)

            self.metrics.record_routing_decision(decision.agent_name, decision.source.value, decision.confidence)
            self.audit_logger.log_routing_event(
                "routing_decision",
                decision.agent_name,
                decision.confidence,
                decision.source.value,
                session_id=session_id
            )

            registration = self.registry.get(decision.agent_name)
            if registration is None:
                return await self._handle_directly(message, window, session_id)
            return await self._delegate(registration, decision, message, window, session_id)

    async def _determine_routing(self, message: str, window: List[Message]) -> RoutingDecision:
        """Ask the classifier, falling back to keyword rules on any failure."""
        decision = None
        try:
            reply = await self.completion.complete(
                build_classifier_prompt(self.registry.descriptions()),
                [Message.user(build_classifier_request(message, window))]
            )
            decision = parse_classification(reply, self.registry.names())
            if decision is None:
                self.logger.debug("Classifier reply named no registered agent, using fallback rules")
        except Exception as e:
            self.logger.warning(f"Routing classification failed, using fallback rules: {e}")

        if decision is not None and decision.confidence < self.min_confidence:
            self.logger.debug(f"Discarding low-confidence decision for {decision.agent_name}")
            decision = None

        if decision is None:
            decision = fallback_decision(message)
        return decision

    async def _delegate(
        self,
        registration: CapabilityRegistration,
        decision: RoutingDecision,
        message: str,
        window: List[Message],
        session_id: Optional[str]
    ) -> AgentResult:
        with time_agent_operation(registration.name, "handle") as timer:
            try:
                result = await registration.agent.handle(decision.modified_message or message, window)
            except Exception as e:
                self.logger.error(f"{registration.name} failed: {e}", exc_info=True)
                result = AgentResult.fail(
                    f"I encountered an error processing your request: {e}",
                    ErrorCode.INTERNAL_ERROR,
                    {"message": str(e)}
                )
            timer.success = result.success

        self.audit_logger.log_agent_event(
            "delegated",
            registration.name,
            "handle",
            "success" if result.success else (result.error or "failure"),
            execution_time_ms=timer.duration_ms,
            metadata={"session_id": session_id, "source": decision.source.value}
        )

        routed = RoutedMessage(
            original_message=message,
            routed_agent_name=registration.name,
            response=result
        )
        async with self._history_lock:
            self._routing_history.append(routed)
            self._message_history.append(Message.agent(result.content))

        if session_id is not None and self.session_manager is not None:
            await self.session_manager.add_routed_message(session_id, routed)
            await self.session_manager.update_session(session_id, {"metadata": {"active_agent": registration.name}})

        return result.model_copy(update={"content": f"[{registration.name}]: {result.content}"})

    async def _handle_directly(self, message: str, window: List[Message], session_id: Optional[str]) -> AgentResult:
        """Answer with the supervisor persona; no RoutedMessage is recorded."""
        conversation = list(window)
        if not conversation or conversation[-1].content != message:
            conversation.append(Message.user(message))

        try:
            reply = await self.completion.complete(ROUTER_PROMPT, conversation)
        except CompletionError as e:
            self.logger.warning(f"Direct answer failed: {e}")
            result = AgentResult.fail(
                f"I encountered an error processing your request: {e}",
                ErrorCode.UPSTREAM_ERROR,
                {"message": str(e)}
            )
        else:
            result = AgentResult.ok(reply)

        async with self._history_lock:
            self._message_history.append(Message.agent(result.content))

        self.audit_logger.log_routing_event(
            "direct_answer",
            None,
            0.0,
            DecisionSource.NONE.value,
            session_id=session_id,
            metadata={"success": result.success}
        )
        return result
