"""
Language-model completion service used for routing and persona answers.

`CompletionClient` is the seam every agent talks to; the Anthropic-backed
implementation is the production client and tests script their own.
"""

import logging
import os
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from anthropic import APIError, AsyncAnthropic

from ..models.message import Message, MessageRole
from .config import CompletionConfig


logger = logging.getLogger(__name__)


class CompletionError(Exception):
    """Raised when the completion service cannot produce an answer."""
    pass


class CompletionClient(ABC):
    """Stateless text completion: system prompt plus conversation in, text out."""

    @abstractmethod
    async def complete(self, system_prompt: str, conversation: List[Message]) -> str:
        """
        Produce the next reply for a conversation.

        Args:
            system_prompt: Persona or instructions for the model
            conversation: Ordered messages, oldest first

        Returns:
            Reply text

        Raises:
            CompletionError: If the upstream service fails
        """

    async def close(self) -> None:
        """Release any network resources."""
        return None


def to_provider_messages(conversation: List[Message]) -> List[Dict[str, str]]:
    """
    Convert a conversation into the alternating user/assistant list the Messages API expects.

    Agent messages become assistant turns, system messages are carried as user
    turns, consecutive turns of the same role are merged and the list always
    starts with a user turn.
    """
    converted: List[Dict[str, str]] = []
    for message in conversation:
        if not message.content:
            continue
        if message.role == MessageRole.AGENT:
            role, content = "assistant", message.content
        elif message.role == MessageRole.SYSTEM:
            role, content = "user", f"[system] {message.content}"
        else:
            role, content = "user", message.content

        if converted and converted[-1]["role"] == role:
            converted[-1]["content"] += f"\n\n{content}"
        else:
            converted.append({"role": role, "content": content})

    if not converted or converted[0]["role"] != "user":
        converted.insert(0, {"role": "user", "content": "(conversation start)"})
    return converted


class AnthropicCompletionClient(CompletionClient):
    """Completion client backed by the Anthropic Messages API."""

    def __init__(self, config: CompletionConfig, client: Optional[AsyncAnthropic] = None):
        self.config = config
        self._client = client
        self.logger = logging.getLogger(__name__)

    def _get_client(self) -> AsyncAnthropic:
        if self._client is None:
            api_key = os.environ.get(self.config.api_key_env)
            if not api_key:
                raise CompletionError(f"API key variable {self.config.api_key_env} is not set")
            base_url = os.environ.get("ANTHROPIC_BASE_URL")
            self._client = AsyncAnthropic(api_key=api_key, base_url=base_url, timeout=self.config.timeout)
        return self._client

    async def complete(self, system_prompt: str, conversation: List[Message]) -> str:
        client = self._get_client()
        try:
            response = await client.messages.create(
                model=self.config.model,
                system=system_prompt,
                messages=to_provider_messages(conversation),
                max_tokens=self.config.max_tokens,
                temperature=self.config.temperature,
            )
        except APIError as e:
            self.logger.error(f"Completion request failed: {e}")
            raise CompletionError(str(e)) from e

        parts = [block.text for block in response.content if getattr(block, "type", None) == "text"]
        return "".join(parts)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.close()
            self._client = None
