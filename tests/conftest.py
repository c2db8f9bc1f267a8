"""
Shared fixtures for Morpheus tests.

Provides a scripted completion client so routing and persona answers can be
exercised without a language-model service.
"""

import os
from typing import Any, Callable, List, Optional, Tuple, Union

import pytest

from morpheus.lib.completion import CompletionClient, CompletionError
from morpheus.lib.logging_config import AuditLogger
from morpheus.models.message import Message
from morpheus.services.sandbox_policy import SandboxGuard


Reply = Union[str, Exception, Callable[[str, List[Message]], str]]


class ScriptedCompletionClient(CompletionClient):
    """Completion client that replays scripted replies in order.

    Each reply may be a string, an exception to raise, or a callable taking
    `(system_prompt, conversation)`. When the script runs out, `default` is used.
    """

    def __init__(self, replies: Optional[List[Reply]] = None, default: Reply = "OK"):
        self.replies: List[Reply] = list(replies or [])
        self.default = default
        self.calls: List[Tuple[str, List[Message]]] = []
        self.closed = False

    async def complete(self, system_prompt: str, conversation: List[Message]) -> str:
        self.calls.append((system_prompt, list(conversation)))
        reply = self.replies.pop(0) if self.replies else self.default
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            return reply(system_prompt, conversation)
        return reply

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def completion():
    """Completion client that answers every request with plain text."""
    return ScriptedCompletionClient(default="I am a scripted reply.")


@pytest.fixture
def failing_completion():
    """Completion client whose upstream is always down."""
    return ScriptedCompletionClient(default=CompletionError("service unavailable"))


@pytest.fixture
def audit_logger():
    return AuditLogger("morpheus.audit.test")


@pytest.fixture
def guard(audit_logger):
    return SandboxGuard(audit_logger=audit_logger)


@pytest.fixture
def sandbox_dir(tmp_path):
    """Empty sandbox root directory."""
    root = tmp_path / "sandbox"
    root.mkdir()
    return str(root)


@pytest.fixture
def scripted():
    """Factory for completion clients with a custom script."""
    def factory(replies: Optional[List[Reply]] = None, default: Reply = "OK") -> ScriptedCompletionClient:
        return ScriptedCompletionClient(replies, default)
    return factory


def write_lines(path: str, lines: List[str]) -> None:
    """Write `lines` joined by newlines, without a trailing newline."""
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write("\n".join(lines))


@pytest.fixture
def make_lines_file(sandbox_dir) -> Callable[..., Any]:
    def factory(name: str, lines: List[str]) -> str:
        path = os.path.join(sandbox_dir, name)
        write_lines(path, lines)
        return path
    return factory
