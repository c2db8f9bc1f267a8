"""Sandbox boundary enforcement with audit records.

The denylists below are flat substring filters. They reject the obvious
destructive requests but are not a security guarantee against a determined
local user.
"""

import ipaddress
import logging
import os
from collections import deque
from typing import Any, Deque, Dict, List, Optional
from urllib.parse import urlsplit

from ..lib.logging_config import AuditLogger
from ..lib.metrics import MetricsCollector, get_metrics_collector
from ..models.agent_result import ErrorCode
from ..models.audit_record import AuditRecord, EventType, ResultStatus


logger = logging.getLogger(__name__)


BLOCKED_COMMANDS = [
    "rm -rf",
    "sudo",
    "chmod",
    "chown",
    "mkfs",
    "dd",
    ">",
    ">>",
    "curl | bash",
    "wget | bash",
    "eval",
    "`",
    "mv /",
    "cp /",
]

BLOCKED_DOMAINS = [
    "localhost",
    "127.0.0.1",
    "0.0.0.0",
    "internal.",
    "private.",
    "admin.",
]

BLOCKED_DOMAIN_SUFFIXES = [".local"]

ALLOWED_EXTENSIONS = frozenset({
    ".txt", ".md", ".json", ".js", ".ts", ".html", ".css", ".py", ".java",
    ".c", ".cpp", ".h", ".sh", ".yaml", ".yml", ".xml", ".jsx", ".tsx",
    ".scss", ".less", ".go", ".php", ".rb",
})


class SandboxGuard:
    """Service for checking requests against the command, domain and path boundaries."""

    def __init__(
        self,
        audit_logger: Optional[AuditLogger] = None,
        metrics: Optional[MetricsCollector] = None,
        max_audit_records: int = 1000
    ):
        """Initialize the sandbox guard; only the newest max_audit_records decisions are kept."""
        self.logger = logging.getLogger(__name__)
        self.audit_logger = audit_logger or AuditLogger()
        self.metrics = metrics or get_metrics_collector()
        self._audit_records: Deque[AuditRecord] = deque(maxlen=max_audit_records)

    def check_command(self, command: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Validate a shell command against the command denylist.

        Args:
            command: Command line to run
            session_id: Optional session identifier

        Returns:
            Validation result with allowed status and details
        """
        lowered = command.lower()
        for blocked in BLOCKED_COMMANDS:
            if blocked in lowered:
                return self._deny(
                    "command", ErrorCode.COMMAND_BLOCKED,
                    f"Command contains blocked pattern '{blocked}'",
                    session_id, {"command": command, "pattern": blocked}
                )

        if not command.strip():
            return self._deny(
                "command", ErrorCode.INVALID_DIRECTIVE, "Command is empty",
                session_id, {"command": command}
            )

        return self._allow("command", "Command permitted", session_id, {"command": command})

    def check_url(self, url: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Validate a URL's hostname against the domain blocklist.

        Unparsable URLs and URLs without a hostname are rejected.

        Args:
            url: Target URL
            session_id: Optional session identifier

        Returns:
            Validation result; allowed results carry the lower-cased `hostname`
        """
        try:
            hostname = urlsplit(url).hostname
        except ValueError:
            hostname = None

        if not hostname:
            return self._deny(
                "domain", ErrorCode.DOMAIN_BLOCKED, "URL could not be parsed or has no hostname",
                session_id, {"url": url}
            )

        hostname = hostname.lower()
        for blocked in BLOCKED_DOMAINS:
            if blocked in hostname:
                return self._deny(
                    "domain", ErrorCode.DOMAIN_BLOCKED, f"Domain matches blocked pattern '{blocked}'",
                    session_id, {"url": url, "hostname": hostname}
                )

        for suffix in BLOCKED_DOMAIN_SUFFIXES:
            if hostname.endswith(suffix):
                return self._deny(
                    "domain", ErrorCode.DOMAIN_BLOCKED, f"Domain ends with blocked suffix '{suffix}'",
                    session_id, {"url": url, "hostname": hostname}
                )

        try:
            address = ipaddress.ip_address(hostname)
        except ValueError:
            address = None
        if address is not None and (address.is_loopback or address.is_unspecified):
            return self._deny(
                "domain", ErrorCode.DOMAIN_BLOCKED, "Loopback addresses are not allowed",
                session_id, {"url": url, "hostname": hostname}
            )

        result = self._allow("domain", "Domain permitted", session_id, {"url": url})
        result["hostname"] = hostname
        return result

    def resolve_path(self, root: str, requested: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Resolve a sandbox-relative path and confirm it stays under `root`.

        Leading separators are stripped so absolute paths are taken relative to
        the sandbox root. Symlinks are resolved before the containment check.

        Args:
            root: Sandbox root directory
            requested: Path supplied by the caller
            session_id: Optional session identifier

        Returns:
            Validation result; allowed results carry the absolute `path`
        """
        root_real = os.path.realpath(root)
        relative = (requested or "").lstrip("/\\")
        candidate = os.path.realpath(os.path.join(root_real, relative))

        if candidate != root_real and not candidate.startswith(root_real + os.sep):
            return self._deny(
                "path", ErrorCode.PATH_VIOLATION, "Path resolves outside the sandbox root",
                session_id, {"requested": requested, "resolved": candidate}
            )

        result = self._allow("path", "Path inside sandbox", session_id, {"requested": requested})
        result["path"] = candidate
        return result

    def check_extension(self, path: str, session_id: Optional[str] = None) -> Dict[str, Any]:
        """Validate a file's extension against the editor allow-list."""
        extension = os.path.splitext(path)[1].lower()
        if extension not in ALLOWED_EXTENSIONS:
            return self._deny(
                "file_type", ErrorCode.FILE_TYPE_NOT_ALLOWED,
                f"File type '{extension or '(none)'}' is not allowed",
                session_id, {"path": path, "extension": extension}
            )
        return self._allow("file_type", "File type permitted", session_id, {"path": path})

    def _allow(self, boundary: str, reason: str, session_id: Optional[str], metadata: Dict[str, Any]) -> Dict[str, Any]:
        self._create_audit_record(session_id, f"{boundary}_allowed", ResultStatus.ALLOWED, reason, metadata)
        return {
            "allowed": True,
            "reason": reason,
            "action_required": "none",
            "error": None
        }

    def _deny(
        self,
        boundary: str,
        error: ErrorCode,
        reason: str,
        session_id: Optional[str],
        metadata: Dict[str, Any]
    ) -> Dict[str, Any]:
        self._create_audit_record(session_id, f"{boundary}_blocked", ResultStatus.BLOCKED, reason, metadata)
        self.audit_logger.log_security_event(
            event_type=error.value,
            severity="medium",
            description=reason,
            session_id=session_id,
            metadata=metadata
        )
        self.metrics.record_sandbox_block(boundary, error.value)
        self.logger.warning(f"Sandbox {boundary} check blocked: {reason}")
        return {
            "allowed": False,
            "reason": reason,
            "action_required": "block",
            "error": error
        }

    def _create_audit_record(
        self,
        session_id: Optional[str],
        action: str,
        result: ResultStatus,
        reason: str,
        metadata: Dict[str, Any]
    ) -> None:
        """Create an audit record for a boundary decision."""
        self._audit_records.append(AuditRecord(
            session_id=session_id,
            event_type=EventType.SECURITY,
            action=action,
            result=result,
            reason=reason,
            metadata=metadata
        ))

    def get_audit_records(
        self,
        session_id: Optional[str] = None,
        blocked_only: bool = False
    ) -> List[AuditRecord]:
        """Get audit records with optional filtering.

        Args:
            session_id: Filter by session ID
            blocked_only: Only return rejected requests

        Returns:
            List of matching audit records
        """
        records = list(self._audit_records)

        if session_id:
            records = [r for r in records if r.session_id == session_id]

        if blocked_only:
            records = [r for r in records if r.result == ResultStatus.BLOCKED.value]

        return records
