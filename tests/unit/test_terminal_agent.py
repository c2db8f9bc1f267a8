"""
Unit tests for the command-exec sandbox agent.
"""

import os

import pytest

from morpheus.models.agent_result import ErrorCode
from morpheus.models.message import Message
from morpheus.services.terminal_agent import TerminalAgent


@pytest.fixture
def terminal(completion, guard, sandbox_dir):
    return TerminalAgent(completion, sandbox_root=sandbox_dir, timeout_seconds=5, guard=guard)


class TestTerminalExecute:
    """Test command execution inside the sandbox."""

    @pytest.mark.asyncio
    async def test_echo(self, terminal):
        result = await terminal.execute("echo hello")

        assert result.success
        assert result.content.strip() == "hello"
        assert result.data["exit_code"] == 0
        assert result.data["stderr"] == ""

    @pytest.mark.asyncio
    async def test_runs_in_sandbox_root(self, terminal, sandbox_dir):
        open(os.path.join(sandbox_dir, "marker.txt"), "w").close()

        result = await terminal.execute("ls")

        assert "marker.txt" in result.content

    @pytest.mark.asyncio
    async def test_blocked_command_has_no_side_effect(self, terminal, sandbox_dir):
        victim = os.path.join(sandbox_dir, "keep.txt")
        open(victim, "w").close()

        result = await terminal.execute("rm -rf keep.txt")

        assert not result.success
        assert result.error == ErrorCode.COMMAND_BLOCKED.value
        assert os.path.exists(victim)
        assert terminal.guard.get_audit_records(blocked_only=True)

    @pytest.mark.asyncio
    async def test_non_zero_exit(self, terminal):
        result = await terminal.execute("ls no_such_directory_here")

        assert not result.success
        assert result.error == ErrorCode.EXECUTION_FAILED.value
        assert result.data["exit_code"] != 0
        assert result.content.startswith("Error executing command:")

    @pytest.mark.asyncio
    async def test_exit_code_without_stderr(self, terminal):
        result = await terminal.execute("exit 3")

        assert not result.success
        assert result.data["exit_code"] == 3
        assert "exit code 3" in result.content

    @pytest.mark.asyncio
    async def test_stderr_with_success_is_a_warning(self, terminal):
        result = await terminal.execute("ls missing_file_xyz; echo done")

        assert result.success
        assert result.content.startswith("Command executed with warnings:")
        assert "done" in result.data["stdout"]

    @pytest.mark.asyncio
    async def test_no_output(self, terminal):
        result = await terminal.execute("true")

        assert result.success
        assert result.content == "Command executed successfully with no output."

    @pytest.mark.asyncio
    async def test_timeout(self, completion, guard, sandbox_dir):
        terminal = TerminalAgent(completion, sandbox_root=sandbox_dir, timeout_seconds=0.2, guard=guard)

        result = await terminal.execute("sleep 5")

        assert not result.success
        assert result.error == ErrorCode.EXECUTION_TIMEOUT.value
        assert result.data["timeout_seconds"] == 0.2


class TestTerminalHandle:
    """Test directive parsing and persona answers."""

    @pytest.mark.asyncio
    async def test_exec_directive(self, terminal, completion):
        result = await terminal.handle("!exec echo routed", [])

        assert result.success
        assert result.content.strip() == "routed"
        assert completion.calls == []

    @pytest.mark.asyncio
    async def test_free_text_goes_to_completion(self, terminal, completion):
        history = [Message.user("earlier"), Message.agent("reply")]

        result = await terminal.handle("how do I list hidden files?", history)

        assert result.success
        assert result.content == "I am a scripted reply."
        system_prompt, conversation = completion.calls[0]
        assert "Terminal Agent" in system_prompt
        assert conversation[-1].content == "how do I list hidden files?"
        assert len(conversation) == 3

    @pytest.mark.asyncio
    async def test_completion_failure(self, failing_completion, guard, sandbox_dir):
        terminal = TerminalAgent(failing_completion, sandbox_root=sandbox_dir, guard=guard)

        result = await terminal.handle("explain pipes", [])

        assert not result.success
        assert result.error == ErrorCode.UPSTREAM_ERROR.value

    @pytest.mark.asyncio
    async def test_initialize_creates_sandbox(self, completion, guard, tmp_path):
        root = tmp_path / "fresh"
        terminal = TerminalAgent(completion, sandbox_root=str(root), guard=guard)

        assert await terminal.initialize() is True
        assert root.is_dir()
        assert (await terminal.health_check())["healthy"] is True
