"""
Exception hierarchy for the Chat CLI.

This module defines structured exceptions with error codes, context information,
and recovery suggestions for consistent error handling across the client.
"""

from datetime import datetime
from typing import Optional, Dict, Any, List
from enum import Enum


class ErrorCode(Enum):
    """Standardized error codes for the Chat CLI."""

    # Authentication Errors (1000-1099)
    AUTH_INVALID_CREDENTIALS = "AUTH_1001"
    AUTH_TOKEN_EXCHANGE_FAILED = "AUTH_1002"
    AUTH_TOKEN_REJECTED = "AUTH_1003"
    AUTH_NOT_LOGGED_IN = "AUTH_1004"

    # Network and Communication Errors (2000-2099)
    NETWORK_CONNECTION_FAILED = "NETWORK_2001"
    NETWORK_TIMEOUT = "NETWORK_2002"
    NETWORK_SERVER_ERROR = "NETWORK_2004"
    NETWORK_REQUEST_FAILED = "NETWORK_2005"

    # Session Storage Errors (3000-3099)
    SESSION_NOT_FOUND = "SESSION_3001"
    SESSION_CORRUPT = "SESSION_3002"
    SESSION_LOCK_BUSY = "SESSION_3003"
    SESSION_IO_FAILED = "SESSION_3004"

    # Validation Errors (4000-4099)
    VALIDATION_INVALID_INPUT = "VALIDATION_4001"

    # Configuration Errors (8000-8099)
    CONFIG_FILE_NOT_FOUND = "CONFIG_8001"
    CONFIG_INVALID_FORMAT = "CONFIG_8002"
    CONFIG_MISSING_REQUIRED_SETTING = "CONFIG_8003"
    CONFIG_INVALID_VALUE = "CONFIG_8004"

    # Internal Errors (9000-9099)
    INTERNAL_UNEXPECTED_ERROR = "INTERNAL_9001"


class ErrorSeverity(Enum):
    """Error severity levels for logging and handling."""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RecoveryAction(Enum):
    """Suggested recovery actions for errors."""
    RETRY = "retry"
    RETRY_WITH_BACKOFF = "retry_with_backoff"
    RETRY_NEXT_CYCLE = "retry_next_cycle"
    RECONNECT = "reconnect"
    LOGIN_AGAIN = "login_again"
    USER_INTERVENTION = "user_intervention"


class ChatCliError(Exception):
    """
    Base exception class for all Chat CLI errors.

    Provides structured error information including error codes, context,
    and recovery suggestions for consistent error handling.
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        context: Optional[Dict[str, Any]] = None,
        recovery_actions: Optional[List[RecoveryAction]] = None,
        cause: Optional[Exception] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)

        self.message = message
        self.error_code = error_code
        self.severity = severity
        self.context = context or {}
        self.recovery_actions = recovery_actions or []
        self.cause = cause
        self.user_message = user_message or message
        self.timestamp = datetime.now()

        # Add cause information to context if available
        if cause:
            self.context['cause_type'] = type(cause).__name__
            self.context['cause_message'] = str(cause)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary format for serialization."""
        return {
            'error': {
                'code': self.error_code.value,
                'message': self.message,
                'user_message': self.user_message,
                'severity': self.severity.value,
                'timestamp': self.timestamp.isoformat(),
                'context': self.context,
                'recovery_actions': [action.value for action in self.recovery_actions],
                'cause': {
                    'type': self.context.get('cause_type'),
                    'message': self.context.get('cause_message')
                } if self.cause else None
            }
        }


# Specific exception classes for different error categories

class AuthError(ChatCliError):
    """Bad credentials or a failed exchange with the token authority."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.AUTH_TOKEN_EXCHANGE_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.LOGIN_AGAIN],
            **kwargs
        )


class NetworkError(ChatCliError):
    """Network and communication related errors."""

    def __init__(self, message: str, error_code: ErrorCode = ErrorCode.NETWORK_CONNECTION_FAILED, **kwargs):
        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.MEDIUM,
            recovery_actions=[RecoveryAction.RETRY_WITH_BACKOFF, RecoveryAction.RECONNECT],
            **kwargs
        )


class SessionError(ChatCliError):
    """Base class for session storage errors."""

    def __init__(self, message: str, error_code: ErrorCode, path: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if path:
            context['path'] = path

        severity = kwargs.pop('severity', ErrorSeverity.MEDIUM)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.LOGIN_AGAIN])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )
        self.path = path


class SessionNotFoundError(SessionError):
    """The session file does not exist."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, ErrorCode.SESSION_NOT_FOUND, path=path, **kwargs)


class SessionCorruptError(SessionError):
    """The session file exists but does not hold a valid session record."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(message, ErrorCode.SESSION_CORRUPT, path=path, **kwargs)


class LockBusyError(SessionError):
    """Another writer holds the session lock."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.SESSION_LOCK_BUSY,
            path=path,
            severity=ErrorSeverity.LOW,
            recovery_actions=[RecoveryAction.RETRY_NEXT_CYCLE],
            **kwargs
        )


class SessionIOError(SessionError):
    """Disk failure while reading or writing a session."""

    def __init__(self, message: str, path: Optional[str] = None, **kwargs):
        super().__init__(
            message,
            ErrorCode.SESSION_IO_FAILED,
            path=path,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.RETRY_NEXT_CYCLE, RecoveryAction.USER_INTERVENTION],
            **kwargs
        )


class ValidationError(ChatCliError):
    """Input validation related errors."""

    def __init__(self, message: str, field_name: Optional[str] = None, **kwargs):
        # Extract context from kwargs to avoid duplicate parameter
        context = kwargs.pop('context', {})
        if field_name:
            context['field_name'] = field_name

        # Set default values if not provided
        error_code = kwargs.pop('error_code', ErrorCode.VALIDATION_INVALID_INPUT)
        severity = kwargs.pop('severity', ErrorSeverity.LOW)
        recovery_actions = kwargs.pop('recovery_actions', [RecoveryAction.USER_INTERVENTION])

        super().__init__(
            message=message,
            error_code=error_code,
            severity=severity,
            recovery_actions=recovery_actions,
            context=context,
            **kwargs
        )


class ConfigurationError(ChatCliError):
    """Configuration related errors."""

    def __init__(self, message: str, error_code: ErrorCode, config_key: Optional[str] = None, **kwargs):
        context = kwargs.pop('context', {})
        if config_key:
            context['config_key'] = config_key

        super().__init__(
            message=message,
            error_code=error_code,
            severity=ErrorSeverity.HIGH,
            recovery_actions=[RecoveryAction.USER_INTERVENTION],
            context=context,
            **kwargs
        )


def handle_exception(
    exception: Exception,
    context: Optional[Dict[str, Any]] = None,
    default_error_code: ErrorCode = ErrorCode.INTERNAL_UNEXPECTED_ERROR
) -> ChatCliError:
    """
    Convert a generic exception to a structured ChatCliError.

    Args:
        exception: The original exception
        context: Additional context information
        default_error_code: Default error code if specific mapping not found

    Returns:
        Structured ChatCliError
    """
    if isinstance(exception, ChatCliError):
        return exception

    # Map common exception types to structured errors
    exception_mapping = {
        ConnectionError: (ErrorCode.NETWORK_CONNECTION_FAILED, NetworkError),
        TimeoutError: (ErrorCode.NETWORK_TIMEOUT, NetworkError),
        PermissionError: (ErrorCode.SESSION_IO_FAILED, None),
        FileNotFoundError: (ErrorCode.CONFIG_FILE_NOT_FOUND, None),
        ValueError: (ErrorCode.VALIDATION_INVALID_INPUT, ValidationError),
    }

    error_code, error_class = exception_mapping.get(
        type(exception),
        (default_error_code, None)
    )

    if error_class is ValidationError:
        return ValidationError(
            message=str(exception),
            error_code=error_code,
            context=context,
            cause=exception
        )

    if error_class is NetworkError:
        return NetworkError(
            message=str(exception),
            error_code=error_code,
            context=context,
            cause=exception
        )

    return ChatCliError(
        message=str(exception),
        error_code=error_code,
        context=context,
        cause=exception
    )
