"""
Logging configuration for the Chat CLI.

This module provides structured logging with an audit trail for authentication
and token renewal events, and configurable output formats for the console and
rotating log files.
"""

import json
import logging
import logging.handlers
import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Dict, Any, Optional
from enum import Enum

from chat_shared.exceptions import ChatCliError


class LogLevel(Enum):
    """Log level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(Enum):
    """Log format enumeration."""
    STANDARD = "standard"
    JSON = "json"
    DETAILED = "detailed"


class AuditEventType(Enum):
    """Types of events that should be audited."""
    AUTHENTICATION = "authentication"
    TOKEN_RENEWAL = "token_renewal"
    ERROR_EVENT = "error_event"


# LogRecord attributes that are never copied into the "extra" block
_RESERVED_RECORD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname', 'filename',
    'module', 'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'taskName', 'getMessage',
    'exc_info', 'exc_text', 'stack_info', 'error_info', 'audit_info',
}


class StructuredFormatter(logging.Formatter):
    """
    Formatter that outputs structured JSON logs with consistent fields.
    """

    def __init__(self, include_extra_fields: bool = True):
        super().__init__()
        self.include_extra_fields = include_extra_fields

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as structured JSON."""
        log_entry = {
            'timestamp': datetime.fromtimestamp(record.created).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'module': record.module,
            'function': record.funcName,
            'line': record.lineno,
            'process': {'pid': os.getpid()},
        }

        if record.exc_info:
            log_entry['exception'] = {
                'type': record.exc_info[0].__name__ if record.exc_info[0] else None,
                'message': str(record.exc_info[1]) if record.exc_info[1] else None,
                'traceback': self.formatException(record.exc_info)
            }

        # Add structured error information if available
        error = getattr(record, 'error_info', None)
        if isinstance(error, ChatCliError):
            log_entry['error'] = {
                'code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions],
                'user_message': error.user_message
            }

        if hasattr(record, 'audit_info'):
            log_entry['audit'] = record.audit_info

        if self.include_extra_fields:
            extra_fields = {
                key: value for key, value in record.__dict__.items()
                if key not in _RESERVED_RECORD_FIELDS
            }
            if extra_fields:
                log_entry['extra'] = extra_fields

        return json.dumps(log_entry, default=str, ensure_ascii=False)


class DetailedFormatter(logging.Formatter):
    """
    Detailed human-readable formatter.
    """

    def __init__(self):
        super().__init__(
            fmt='%(asctime)s | %(levelname)-8s | %(name)-28s | %(funcName)-15s:%(lineno)-4d | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    def format(self, record: logging.LogRecord) -> str:
        formatted = super().format(record)

        error = getattr(record, 'error_info', None)
        if isinstance(error, ChatCliError):
            formatted += f"\n  Error Code: {error.error_code.value}"
            formatted += f"\n  Severity: {error.severity.value}"
            if error.context:
                formatted += f"\n  Context: {json.dumps(error.context, indent=2, default=str)}"
            if error.recovery_actions:
                actions = [action.value for action in error.recovery_actions]
                formatted += f"\n  Recovery Actions: {', '.join(actions)}"

        if hasattr(record, 'audit_info'):
            formatted += f"\n  Audit: {json.dumps(record.audit_info, indent=2, default=str)}"

        return formatted


class AuditLogger:
    """
    Specialized logger for audit events with structured information.
    """

    def __init__(self, logger_name: str = "audit"):
        self.logger = logging.getLogger(logger_name)

    def log_event(
        self,
        event_type: AuditEventType,
        message: str,
        username: Optional[str] = None,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        result: Optional[str] = None,
        additional_context: Optional[Dict[str, Any]] = None
    ):
        """
        Log an audit event with structured information.

        Args:
            event_type: Type of audit event
            message: Human-readable message
            username: Identity the event concerns
            resource_type: Type of resource being accessed
            resource_id: ID of the resource being accessed
            result: Result of the operation (success, failure, etc.)
            additional_context: Additional context information
        """
        audit_info = {
            'event_type': event_type.value,
            'timestamp': datetime.now().isoformat(),
            'username': username,
            'resource': {
                'type': resource_type,
                'id': resource_id
            } if resource_type or resource_id else None,
            'result': result,
            'context': additional_context or {}
        }

        # Remove None values
        audit_info = {k: v for k, v in audit_info.items() if v is not None}

        self.logger.info(message, extra={'audit_info': audit_info})

    def log_authentication(
        self,
        username: str,
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        """Log login attempts."""
        self.log_event(
            event_type=AuditEventType.AUTHENTICATION,
            message=f"Login {'successful' if success else 'failed'} for user: {username}",
            username=username,
            result="success" if success else "failure",
            additional_context={'failure_reason': failure_reason} if failure_reason else None
        )

    def log_token_renewal(
        self,
        username: str,
        token_kind: str,
        success: bool = True,
        failure_reason: Optional[str] = None
    ):
        """Log refresh-token and access-token renewals."""
        self.log_event(
            event_type=AuditEventType.TOKEN_RENEWAL,
            message=f"{token_kind} renewal {'succeeded' if success else 'failed'} for user: {username}",
            username=username,
            resource_type="token",
            resource_id=token_kind,
            result="success" if success else "failure",
            additional_context={'failure_reason': failure_reason} if failure_reason else None
        )

    def log_error(self, error: ChatCliError, username: Optional[str] = None):
        """Log error events."""
        self.log_event(
            event_type=AuditEventType.ERROR_EVENT,
            message=f"Error occurred: {error.message}",
            username=username,
            result="error",
            additional_context={
                'error_code': error.error_code.value,
                'severity': error.severity.value,
                'context': error.context,
                'recovery_actions': [action.value for action in error.recovery_actions]
            }
        )


def setup_logging(
    log_level: LogLevel = LogLevel.INFO,
    log_format: LogFormat = LogFormat.STANDARD,
    log_file: Optional[str] = None,
    max_file_size: int = 10 * 1024 * 1024,  # 10MB
    backup_count: int = 3,
    enable_console: bool = True,
    audit_file: Optional[str] = None
) -> Dict[str, logging.Logger]:
    """
    Set up logging for the client.

    The console uses the requested format; the log file, when given, always
    receives JSON records so it can be machine-read.

    Args:
        log_level: Minimum log level to capture
        log_format: Format for console output
        log_file: Path to main log file (optional)
        max_file_size: Maximum size of log files before rotation
        backup_count: Number of backup files to keep
        enable_console: Whether to enable console logging
        audit_file: Path to audit log file (optional, defaults to the main log)

    Returns:
        Dictionary of configured loggers
    """
    root_logger = logging.getLogger()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    root_logger.setLevel(getattr(logging, log_level.value))

    if log_format == LogFormat.JSON:
        formatter = StructuredFormatter()
    elif log_format == LogFormat.DETAILED:
        formatter = DetailedFormatter()
    else:  # STANDARD
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    if enable_console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        root_logger.addHandler(console_handler)

    if log_file:
        _add_rotating_handler(root_logger, log_file, max_file_size, backup_count)

    audit_logger = logging.getLogger('audit')
    audit_logger.setLevel(logging.INFO)
    for handler in audit_logger.handlers[:]:
        audit_logger.removeHandler(handler)
    if audit_file:
        _add_rotating_handler(audit_logger, audit_file, max_file_size, backup_count)

    return {
        'root': root_logger,
        'audit': audit_logger,
    }


def _add_rotating_handler(
    target: logging.Logger,
    path: str,
    max_file_size: int,
    backup_count: int
) -> None:
    log_path = Path(path)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.handlers.RotatingFileHandler(
        path,
        maxBytes=max_file_size,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setFormatter(StructuredFormatter())
    target.addHandler(file_handler)


def log_structured_error(
    logger: logging.Logger,
    error: ChatCliError,
    username: Optional[str] = None,
    level: int = logging.ERROR
):
    """
    Log a structured error with full context information.

    Args:
        logger: Logger instance to use
        error: The structured error to log
        username: Optional identity for context
        level: Log level, ERROR unless the caller treats the error as benign
    """
    extra = {
        'error_info': error,
        'username': username,
    }

    logger.log(level, error.message, extra=extra)
