"""Constructs the router, its workers and the session services from configuration."""

import logging
from typing import Optional

from ..lib.completion import AnthropicCompletionClient, CompletionClient
from ..lib.config import MorpheusConfig
from ..lib.logging_config import get_audit_logger
from ..lib.metrics import get_metrics_collector
from ..models.capability import CapabilityRegistration
from .agent_registry import CapabilityRegistry
from .editor_agent import EditorAgent
from .planner_agent import PlannerAgent
from .sandbox_policy import SandboxGuard
from .session_channels import SessionChannelHub
from .session_manager import MemorySessionManager
from .supervisor import SupervisorAgent
from .terminal_agent import TerminalAgent
from .tool_agent import ToolAgent
from .web_agent import WebAgent


logger = logging.getLogger(__name__)


class ServiceContainer:
    """Owns one instance of every service for the lifetime of the process."""

    def __init__(self, config: MorpheusConfig, completion: Optional[CompletionClient] = None):
        self.config = config
        self.audit_logger = get_audit_logger()
        self.metrics = get_metrics_collector()
        self.completion = completion or AnthropicCompletionClient(config.completion)

        self.guard = SandboxGuard(audit_logger=self.audit_logger, metrics=self.metrics)
        self.sessions = MemorySessionManager(audit_logger=self.audit_logger, metrics=self.metrics)
        self.channels = SessionChannelHub(self.sessions)

        self.terminal = TerminalAgent(
            self.completion,
            sandbox_root=config.terminal.sandbox_root,
            timeout_seconds=config.terminal.timeout_seconds,
            guard=self.guard
        )
        self.editor = EditorAgent(self.completion, sandbox_root=config.editor.sandbox_root, guard=self.guard)
        self.web = WebAgent(
            self.completion,
            screenshot_dir=config.web.screenshot_dir,
            headless=config.web.headless,
            navigation_timeout_ms=config.web.navigation_timeout_ms,
            guard=self.guard
        )
        self.planner = PlannerAgent(self.completion)
        self.tool = ToolAgent(
            self.completion,
            request_timeout=config.tool.request_timeout,
            builtin_tools=config.tool.builtin_tools,
            credentials=config.tool.credentials
        )

        self.registry = CapabilityRegistry()
        for agent in (self.terminal, self.editor, self.web, self.planner, self.tool):
            self.registry.register(CapabilityRegistration.for_agent(agent))

        self.supervisor = SupervisorAgent(
            self.registry,
            self.completion,
            session_manager=self.sessions,
            channels=self.channels,
            history_window=config.router.history_window,
            min_confidence=config.router.min_confidence,
            audit_logger=self.audit_logger,
            metrics=self.metrics
        )

    async def start(self) -> bool:
        """Initialize every worker; returns False if any failed to initialize."""
        initialized = await self.supervisor.initialize()
        if initialized:
            logger.info("All agents initialized successfully")
        else:
            logger.error("Failed to initialize agents")
        return initialized

    async def stop(self) -> None:
        await self.supervisor.shutdown()
        await self.completion.close()
        logger.info("Services stopped")
