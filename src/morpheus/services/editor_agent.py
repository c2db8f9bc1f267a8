"""File-edit sandbox agent."""

import os
import re
import stat
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import aiofiles
import aiofiles.os

from ..lib.completion import CompletionClient
from ..lib.metrics import time_agent_operation
from ..models.agent_result import AgentResult, ErrorCode
from ..models.capability import AgentKind
from ..models.file_operation import FileOperation, FileOperationType
from ..models.message import Message
from .base_agent import BaseAgent
from .sandbox_policy import SandboxGuard


EDITOR_PROMPT = """You are an Editor Agent for Morpheus AI.
Your role is to help users create, edit, and manage code and text files:
- You can read, write, and modify files within your workspace
- You should provide clear information about file operations
- You should handle errors gracefully with helpful feedback
- You should be able to suggest code improvements
- You should work within the constraints of the designated workspace
- File operations are issued as `!file <read|write|edit|delete|create|list> <path> [args]`"""

FILE_PREFIX = "!file"
FILE_REFERENCE = re.compile(r"file\s+([^\s]+)", re.IGNORECASE)


class DirectiveError(ValueError):
    """Raised when a `!file` directive cannot be parsed."""
    pass


def format_size(size: int) -> str:
    """Human-readable size with one decimal above bytes."""
    if size < 1024:
        return f"{size} B"
    if size < 1024 * 1024:
        return f"{size / 1024:.1f} KB"
    if size < 1024 * 1024 * 1024:
        return f"{size / (1024 * 1024):.1f} MB"
    return f"{size / (1024 * 1024 * 1024):.1f} GB"


def _directory_size(path: str) -> int:
    total = 0
    for dirpath, _dirnames, filenames in os.walk(path):
        for filename in filenames:
            try:
                total += os.lstat(os.path.join(dirpath, filename)).st_size
            except OSError:
                continue
    return total


directory_size = aiofiles.os.wrap(_directory_size)


def parse_file_directive(command: str) -> FileOperation:
    """Parse the text after `!file` into a FileOperation.

    Syntax: `<op> <path> [content]`, or `edit <path> <start> <end> <content>`.

    Raises:
        DirectiveError: If the operation is unknown or arguments are missing
    """
    parts = command.strip().split(None, 1)
    if not parts:
        raise DirectiveError("File operation is required")

    op = parts[0].lower()
    rest = parts[1] if len(parts) > 1 else ""

    try:
        operation_type = FileOperationType(op)
    except ValueError:
        raise DirectiveError(f"Unknown file operation: {op}")

    if operation_type == FileOperationType.LIST:
        return FileOperation(type=operation_type, path=rest.strip() or ".")

    path_and_args = rest.split(None, 1)
    if not path_and_args:
        raise DirectiveError("File path is required")
    path = path_and_args[0]
    args = path_and_args[1] if len(path_and_args) > 1 else ""

    if operation_type in (FileOperationType.READ, FileOperationType.DELETE):
        return FileOperation(type=operation_type, path=path)

    if operation_type == FileOperationType.WRITE:
        if not args:
            raise DirectiveError("Content is required for write operation")
        return FileOperation(type=operation_type, path=path, content=args)

    if operation_type == FileOperationType.CREATE:
        return FileOperation(type=operation_type, path=path, content=args)

    edit_args = args.split(None, 2)
    if len(edit_args) < 3:
        raise DirectiveError("Line numbers and content are required for edit operation")
    try:
        line_start, line_end = int(edit_args[0]), int(edit_args[1])
    except ValueError:
        raise DirectiveError("Line numbers must be integers")
    return FileOperation(
        type=operation_type, path=path, line_start=line_start, line_end=line_end, content=edit_args[2]
    )


class EditorAgent(BaseAgent):
    """Reads and edits text files confined to a sandbox root."""

    kind = AgentKind.EDITOR

    def __init__(
        self,
        completion: CompletionClient,
        sandbox_root: str = "./sandbox",
        guard: Optional[SandboxGuard] = None
    ):
        super().__init__(
            "Editor Agent",
            "Handles code editing and file manipulation",
            EDITOR_PROMPT,
            completion
        )
        self.sandbox_root = os.path.realpath(os.path.expanduser(sandbox_root))
        self.guard = guard or SandboxGuard()

    async def initialize(self) -> bool:
        try:
            await aiofiles.os.makedirs(self.sandbox_root, exist_ok=True)
        except OSError as e:
            self.logger.error(f"Failed to create editor workspace {self.sandbox_root}: {e}")
            return False
        self.logger.info(f"Editor workspace ready at {self.sandbox_root}")
        return await super().initialize()

    async def handle(self, message: str, history: List[Message]) -> AgentResult:
        text = message.strip()
        if text.startswith(FILE_PREFIX):
            try:
                operation = parse_file_directive(text[len(FILE_PREFIX):])
            except DirectiveError as e:
                return AgentResult.fail(f"Error parsing file operation: {e}", ErrorCode.INVALID_DIRECTIVE)
            return await self.execute(operation)

        prompt = message
        reference = FILE_REFERENCE.search(message)
        if reference:
            file_content = await self._referenced_content(reference.group(1))
            if file_content is not None:
                prompt += f"\n\nHere is the content of {reference.group(1)}:\n```\n{file_content}\n```"
        return await self._answer(prompt, history)

    async def _referenced_content(self, requested: str) -> Optional[str]:
        resolved = self.guard.resolve_path(self.sandbox_root, requested)
        if not resolved["allowed"] or not await aiofiles.os.path.isfile(resolved["path"]):
            return None
        try:
            async with aiofiles.open(resolved["path"], "r", encoding="utf-8") as f:
                return await f.read()
        except (OSError, UnicodeDecodeError):
            return None

    def _relative(self, path: str) -> str:
        return os.path.relpath(path, self.sandbox_root)

    def _within_root(self, path: str) -> bool:
        return path == self.sandbox_root or path.startswith(self.sandbox_root + os.sep)

    async def execute(self, operation: FileOperation, session_id: Optional[str] = None) -> AgentResult:
        """Perform one file operation inside the sandbox.

        Args:
            operation: Requested operation
            session_id: Optional session identifier for the audit trail

        Returns:
            AgentResult describing the outcome
        """
        resolved = self.guard.resolve_path(self.sandbox_root, operation.path, session_id)
        if not resolved["allowed"]:
            return AgentResult.fail(
                f"Cannot access path outside of workspace: {operation.path}",
                resolved["error"]
            )
        path = resolved["path"]

        if operation.type != FileOperationType.LIST:
            type_check = self.guard.check_extension(path, session_id)
            if not type_check["allowed"]:
                return AgentResult.fail(
                    f"File type not allowed: {os.path.splitext(path)[1] or '(none)'}",
                    type_check["error"]
                )

        with time_agent_operation(self.name, operation.type.value) as timer:
            try:
                if operation.type == FileOperationType.READ:
                    result = await self.read_file(path)
                elif operation.type == FileOperationType.WRITE:
                    result = await self.write_file(path, operation.content or "")
                elif operation.type == FileOperationType.EDIT:
                    result = await self.edit_file(
                        path,
                        operation.line_start if operation.line_start is not None else 1,
                        operation.line_end if operation.line_end is not None else 1,
                        operation.content or ""
                    )
                elif operation.type == FileOperationType.DELETE:
                    result = await self.delete_file(path)
                elif operation.type == FileOperationType.CREATE:
                    result = await self.create_file(path, operation.content or "")
                else:
                    result = await self.list_files(path)
            except (OSError, UnicodeDecodeError) as e:
                self.logger.error(f"File operation {operation.type.value} failed on {path}: {e}")
                result = AgentResult.fail(
                    f"Error performing file operation: {e}",
                    ErrorCode.INTERNAL_ERROR,
                    {"path": self._relative(path)}
                )
            timer.success = result.success

        return result

    async def read_file(self, path: str) -> AgentResult:
        if not await aiofiles.os.path.isfile(path):
            return AgentResult.fail(f"File not found: {self._relative(path)}", ErrorCode.FILE_NOT_FOUND)

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            content = await f.read()
        extension = os.path.splitext(path)[1][1:]
        relative = self._relative(path)
        return AgentResult.ok(
            f"File content of {relative}:\n\n```{extension}\n{content}\n```",
            {"content": content, "path": relative}
        )

    async def write_file(self, path: str, content: str) -> AgentResult:
        await aiofiles.os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write(content)
        relative = self._relative(path)
        return AgentResult.ok(f"File written successfully: {relative}", {"path": relative})

    async def create_file(self, path: str, content: str) -> AgentResult:
        if await aiofiles.os.path.exists(path):
            return AgentResult.fail(f"File already exists: {self._relative(path)}", ErrorCode.FILE_EXISTS)

        await aiofiles.os.makedirs(os.path.dirname(path), exist_ok=True)
        async with aiofiles.open(path, "x", encoding="utf-8") as f:
            await f.write(content)
        relative = self._relative(path)
        return AgentResult.ok(f"File created successfully: {relative}", {"path": relative, "content": content})

    async def edit_file(self, path: str, line_start: int, line_end: int, new_content: str) -> AgentResult:
        """Replace the inclusive 1-based line range with `new_content`."""
        if not await aiofiles.os.path.isfile(path):
            return AgentResult.fail(f"File not found: {self._relative(path)}", ErrorCode.FILE_NOT_FOUND)

        async with aiofiles.open(path, "r", encoding="utf-8") as f:
            lines = (await f.read()).split("\n")

        line_count = len(lines)
        if line_start < 1 or line_end < line_start or line_start > line_count + 1 or line_end > line_count + 1:
            return AgentResult.fail(
                f"Invalid line numbers. File has {line_count} lines. "
                f"Requested edit from {line_start} to {line_end}.",
                ErrorCode.INVALID_LINE_RANGE,
                {"line_count": line_count, "line_start": line_start, "line_end": line_end}
            )

        updated = lines[:line_start - 1] + new_content.split("\n") + lines[line_end:]
        async with aiofiles.open(path, "w", encoding="utf-8") as f:
            await f.write("\n".join(updated))

        relative = self._relative(path)
        return AgentResult.ok(
            f"File edited successfully: {relative}. Replaced lines {line_start} to {line_end}.",
            {"path": relative, "line_start": line_start, "line_end": line_end, "new_content": new_content}
        )

    async def delete_file(self, path: str) -> AgentResult:
        if not await aiofiles.os.path.isfile(path):
            return AgentResult.fail(f"File not found: {self._relative(path)}", ErrorCode.FILE_NOT_FOUND)
        await aiofiles.os.remove(path)
        relative = self._relative(path)
        return AgentResult.ok(f"File deleted successfully: {relative}", {"path": relative})

    async def list_files(self, path: str) -> AgentResult:
        relative = self._relative(path)
        if not await aiofiles.os.path.exists(path):
            return AgentResult.fail(f"Directory not found: {relative}", ErrorCode.FILE_NOT_FOUND)
        if not await aiofiles.os.path.isdir(path):
            return AgentResult.fail(f"Not a directory: {relative}", ErrorCode.NOT_A_DIRECTORY)

        files: List[Dict[str, Any]] = []
        directories: List[Dict[str, Any]] = []
        for name in sorted(await aiofiles.os.listdir(path)):
            item_path = os.path.join(path, name)
            try:
                stats = await aiofiles.os.stat(item_path, follow_symlinks=False)
            except OSError as e:
                self.logger.warning(f"Skipping unreadable entry {item_path}: {e}")
                continue
            entry = {
                "name": name,
                "path": self._relative(item_path),
                "modified_time": datetime.fromtimestamp(stats.st_mtime, tz=timezone.utc).isoformat(),
            }
            if stat.S_ISLNK(stats.st_mode):
                entry["symlink"] = True
                target = os.path.realpath(item_path)
                # dangling or out-of-root links are listed but never followed
                if not self._within_root(target) or not await aiofiles.os.path.exists(target):
                    entry["size"] = format_size(stats.st_size)
                    entry["extension"] = os.path.splitext(name)[1]
                    files.append(entry)
                    continue
                item_path = target

            if await aiofiles.os.path.isdir(item_path):
                entry["size"] = format_size(await directory_size(item_path))
                directories.append(entry)
            else:
                entry["size"] = format_size((await aiofiles.os.stat(item_path)).st_size)
                entry["extension"] = os.path.splitext(name)[1]
                files.append(entry)

        lines = [f"Contents of directory: {relative}", ""]
        if directories:
            lines.append("Directories:")
            lines.extend(f"- {d['name']}/ ({d['size']})" for d in directories)
            lines.append("")
        if files:
            lines.append("Files:")
            lines.extend(f"- {f['name']} ({f['size']})" for f in files)
        if not directories and not files:
            lines.append("Directory is empty.")

        return AgentResult.ok(
            "\n".join(lines).rstrip("\n"),
            {"directory_path": relative, "files": files, "directories": directories}
        )
