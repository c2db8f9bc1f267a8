"""Common base for capability agents."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..lib.completion import CompletionClient, CompletionError
from ..models.agent_result import AgentResult, ErrorCode
from ..models.capability import AgentKind
from ..models.message import Message


class BaseAgent(ABC):
    """
    Capability worker reachable from the router.

    Every agent exposes `handle(message, history)` and owns its own sandbox
    state. Free-form requests are answered through the shared completion
    service using the agent's persona prompt.
    """

    kind: AgentKind

    def __init__(
        self,
        name: str,
        description: str,
        system_prompt: str,
        completion: CompletionClient
    ):
        self.name = name
        self.description = description
        self.system_prompt = system_prompt
        self.completion = completion
        self.logger = logging.getLogger(f"{__name__}.{self.kind.value}")
        self._initialized = False

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> bool:
        """Prepare sandbox resources. Returns False if the agent cannot operate."""
        self.logger.info(f"Initializing {self.name}")
        self._initialized = True
        return True

    async def shutdown(self) -> None:
        self._initialized = False

    @abstractmethod
    async def handle(self, message: str, history: List[Message]) -> AgentResult:
        """Handle one routed message with the recent conversation as context."""

    async def health_check(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "kind": self.kind.value,
            "healthy": self._initialized
        }

    async def _complete(
        self,
        message: str,
        history: List[Message],
        system_prompt: Optional[str] = None
    ) -> str:
        """Ask the completion service, with `message` appended to the history."""
        conversation = list(history)
        if not conversation or conversation[-1].content != message:
            conversation.append(Message.user(message))
        return await self.completion.complete(system_prompt or self.system_prompt, conversation)

    async def _answer(self, message: str, history: List[Message]) -> AgentResult:
        """Answer free text with the persona prompt, reporting upstream failures as results."""
        try:
            reply = await self._complete(message, history)
        except CompletionError as e:
            self.logger.warning(f"{self.name} completion failed: {e}")
            return AgentResult.fail(
                f"I encountered an error processing your request: {e}",
                ErrorCode.UPSTREAM_ERROR,
                {"message": str(e)}
            )
        return AgentResult.ok(reply)
