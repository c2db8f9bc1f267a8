"""
Structured logging configuration with audit trail support for Morpheus.

Provides JSON-formatted logging with OpenTelemetry correlation and a dedicated
audit stream for routing decisions and sandbox boundary events.
"""

import json
import logging
import logging.config
import logging.handlers
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from opentelemetry import trace

_RESERVED_RECORD_KEYS = {
    "name", "msg", "args", "levelname", "levelno", "pathname",
    "filename", "module", "exc_info", "exc_text", "stack_info",
    "lineno", "funcName", "created", "msecs", "relativeCreated",
    "thread", "threadName", "processName", "process", "message", "taskName"
}


class StructuredFormatter(logging.Formatter):
    """JSON formatter with OpenTelemetry trace correlation."""

    def __init__(self, include_trace: bool = True, extra_fields: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.include_trace = include_trace
        self.extra_fields = extra_fields or {}

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if self.include_trace:
            current_span = trace.get_current_span()
            if current_span and current_span.is_recording():
                span_context = current_span.get_span_context()
                log_entry.update({
                    "trace_id": format(span_context.trace_id, "032x"),
                    "span_id": format(span_context.span_id, "016x")
                })

        if record.exc_info:
            log_entry["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": self.formatException(record.exc_info)
            }

        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_entry[key] = value

        log_entry.update(self.extra_fields)

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class AuditLogger:
    """Specialized logger for routing, session and sandbox audit events."""

    def __init__(self, logger_name: str = "morpheus.audit"):
        self.logger = logging.getLogger(logger_name)

    def log_session_event(
        self,
        event_type: str,
        session_id: str,
        action: Optional[str] = None,
        result: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a session-related audit event."""
        self.logger.info(
            f"Session event: {event_type}",
            extra={
                "audit_type": "session",
                "event_type": event_type,
                "session_id": session_id,
                "action": action,
                "result": result,
                "metadata": metadata or {}
            }
        )

    def log_security_event(
        self,
        event_type: str,
        severity: str,
        description: str,
        agent_name: Optional[str] = None,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a sandbox boundary violation."""
        self.logger.warning(
            f"Security event: {event_type} - {description}",
            extra={
                "audit_type": "security",
                "event_type": event_type,
                "severity": severity,
                "description": description,
                "agent_name": agent_name,
                "session_id": session_id,
                "metadata": metadata or {}
            }
        )

    def log_routing_event(
        self,
        event_type: str,
        agent_name: Optional[str],
        confidence: float,
        source: str,
        session_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log a routing decision taken by the supervisor."""
        self.logger.info(
            f"Routing event: {event_type} -> {agent_name or 'direct'}",
            extra={
                "audit_type": "routing",
                "event_type": event_type,
                "agent_name": agent_name,
                "confidence": confidence,
                "source": source,
                "session_id": session_id,
                "metadata": metadata or {}
            }
        )

    def log_agent_event(
        self,
        event_type: str,
        agent_name: str,
        action: str,
        result: str,
        execution_time_ms: Optional[int] = None,
        metadata: Optional[Dict[str, Any]] = None
    ) -> None:
        """Log an agent operation audit event."""
        self.logger.info(
            f"Agent event: {event_type} - {action}",
            extra={
                "audit_type": "agent",
                "event_type": event_type,
                "agent_name": agent_name,
                "action": action,
                "result": result,
                "execution_time_ms": execution_time_ms,
                "metadata": metadata or {}
            }
        )


def setup_logging(config: Dict[str, Any]) -> None:
    """Setup structured logging configuration."""
    log_level = config.get("level", "INFO").upper()
    log_format = config.get("format", "structured")

    log_dir = Path(config.get("directory", "~/.morpheus/logs")).expanduser()
    log_dir.mkdir(parents=True, exist_ok=True)

    logging_config = {
        "version": 1,
        "disable_existing_loggers": False,
        "formatters": {
            "structured": {
                "()": StructuredFormatter,
                "include_trace": config.get("include_trace", True),
                "extra_fields": {
                    "service": "morpheus",
                    "environment": config.get("environment", "development")
                }
            },
            "simple": {
                "format": "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
            }
        },
        "handlers": {
            "console": {
                "class": "logging.StreamHandler",
                "level": log_level,
                "formatter": "structured" if log_format == "structured" else "simple",
                "stream": sys.stderr
            },
            "application_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": log_level,
                "formatter": "structured",
                "filename": str(log_dir / "morpheus.log"),
                "maxBytes": config.get("max_file_size", 10 * 1024 * 1024),
                "backupCount": config.get("backup_count", 5)
            },
            "audit_file": {
                "class": "logging.handlers.RotatingFileHandler",
                "level": "INFO",
                "formatter": "structured",
                "filename": str(log_dir / "audit.jsonl"),
                "maxBytes": config.get("max_file_size", 10 * 1024 * 1024),
                "backupCount": config.get("backup_count", 10)
            }
        },
        "loggers": {
            "morpheus": {
                "level": log_level,
                "handlers": ["console", "application_file"],
                "propagate": False
            },
            "morpheus.audit": {
                "level": "INFO",
                "handlers": ["audit_file"],
                "propagate": False
            },
            "opentelemetry": {
                "level": "WARNING",
                "handlers": ["console", "application_file"],
                "propagate": False
            }
        },
        "root": {
            "level": log_level,
            "handlers": ["console"]
        }
    }

    logging.config.dictConfig(logging_config)

    logger = logging.getLogger("morpheus.logging")
    logger.info("Structured logging initialized", extra={
        "config": {
            "level": log_level,
            "format": log_format,
            "directory": str(log_dir)
        }
    })


def get_audit_logger() -> AuditLogger:
    """Get the configured audit logger instance."""
    return AuditLogger()
