"""Command-exec sandbox agent."""

import asyncio
import os
from typing import List, Optional

from ..lib.completion import CompletionClient
from ..lib.metrics import time_agent_operation
from ..models.agent_result import AgentResult, ErrorCode
from ..models.capability import AgentKind
from ..models.message import Message
from .base_agent import BaseAgent
from .sandbox_policy import SandboxGuard


TERMINAL_PROMPT = """You are a Terminal Agent for Morpheus AI.
Your role is to execute terminal commands safely within a sandboxed environment.
- You must analyze commands for security risks before executing them.
- You should never execute commands that could damage the system or access sensitive information.
- For file operations, work only within your assigned sandbox directory.
- Provide clear explanations of command outputs, especially for errors.
- When possible, suggest improvements or alternatives to commands that fail.
- To run a command, the user must send it as `!exec <command>`."""

EXEC_PREFIX = "!exec"


class TerminalAgent(BaseAgent):
    """Runs shell commands confined to a sandbox working directory."""

    kind = AgentKind.TERMINAL

    def __init__(
        self,
        completion: CompletionClient,
        sandbox_root: str = "./sandbox",
        timeout_seconds: float = 10.0,
        guard: Optional[SandboxGuard] = None
    ):
        super().__init__(
            "Terminal Agent",
            "Executes terminal commands in a sandboxed environment",
            TERMINAL_PROMPT,
            completion
        )
        self.sandbox_root = os.path.realpath(os.path.expanduser(sandbox_root))
        self.timeout_seconds = timeout_seconds
        self.guard = guard or SandboxGuard()

    async def initialize(self) -> bool:
        try:
            os.makedirs(self.sandbox_root, exist_ok=True)
        except OSError as e:
            self.logger.error(f"Failed to create terminal sandbox {self.sandbox_root}: {e}")
            return False
        self.logger.info(f"Terminal sandbox ready at {self.sandbox_root}")
        return await super().initialize()

    async def handle(self, message: str, history: List[Message]) -> AgentResult:
        text = message.strip()
        if text.startswith(EXEC_PREFIX):
            return await self.execute(text[len(EXEC_PREFIX):].strip())
        return await self._answer(message, history)

    async def execute(self, command: str, session_id: Optional[str] = None) -> AgentResult:
        """Run one command in the sandbox root.

        Args:
            command: Shell command line
            session_id: Optional session identifier for the audit trail

        Returns:
            AgentResult whose data carries stdout, stderr and exit_code
        """
        check = self.guard.check_command(command, session_id)
        if not check["allowed"]:
            return AgentResult.fail(
                "I cannot execute this command as it contains potentially unsafe operations. "
                "Please try a different command.",
                check["error"],
                {"command": command, "reason": check["reason"]}
            )

        with time_agent_operation(self.name, "execute") as timer:
            try:
                os.makedirs(self.sandbox_root, exist_ok=True)
                process = await asyncio.create_subprocess_shell(
                    command,
                    cwd=self.sandbox_root,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE
                )
            except OSError as e:
                timer.success = False
                return AgentResult.fail(
                    f"Error executing command: {e}",
                    ErrorCode.EXECUTION_FAILED,
                    {"stdout": "", "stderr": str(e), "exit_code": None}
                )
            try:
                stdout_bytes, stderr_bytes = await asyncio.wait_for(
                    process.communicate(), timeout=self.timeout_seconds
                )
            except asyncio.TimeoutError:
                process.kill()
                await process.wait()
                timer.success = False
                self.logger.warning(f"Command timed out after {self.timeout_seconds}s: {command}")
                return AgentResult.fail(
                    f"Command timed out after {self.timeout_seconds:g} seconds.",
                    ErrorCode.EXECUTION_TIMEOUT,
                    {"command": command, "timeout_seconds": self.timeout_seconds}
                )

            if process.returncode != 0:
                timer.success = False

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")
        data = {"stdout": stdout, "stderr": stderr, "exit_code": process.returncode}

        if process.returncode != 0:
            detail = stderr.strip() or f"exit code {process.returncode}"
            return AgentResult.fail(f"Error executing command: {detail}", ErrorCode.EXECUTION_FAILED, data)

        if stderr:
            return AgentResult.ok(
                f"Command executed with warnings:\n{stderr}\n\nOutput:\n{stdout or 'No output'}",
                data
            )

        return AgentResult.ok(stdout or "Command executed successfully with no output.", data)
