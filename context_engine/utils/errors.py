"""Error taxonomy for the context engine."""

from enum import Enum
from typing import Any, Optional


class ErrorCode(str, Enum):
    """Standard error codes for the context engine."""
    # Configuration errors
    CONFIG_NOT_FOUND = "ERR_CONFIG_NOT_FOUND"
    CONFIG_INVALID = "ERR_CONFIG_INVALID"
    CONFIG_RELOAD_FAILED = "ERR_CONFIG_RELOAD_FAILED"

    # Token counting errors
    ORACLE_UNAVAILABLE = "ERR_ORACLE_UNAVAILABLE"
    ORACLE_TIMEOUT = "ERR_ORACLE_TIMEOUT"

    # Archive errors
    ARCHIVE_NOT_FOUND = "ERR_ARCHIVE_NOT_FOUND"
    SCOPE_INVALID = "ERR_SCOPE_INVALID"
    SCOPE_MISMATCH = "ERR_SCOPE_MISMATCH"

    # Session errors
    SESSION_NOT_FOUND = "ERR_SESSION_NOT_FOUND"

    # General errors
    INTERNAL = "ERR_INTERNAL"


class ContextEngineError(Exception):
    """Base exception for context engine errors."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL,
        details: Optional[dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        """Convert error to dictionary for event payloads."""
        return {
            "success": False,
            "error": {
                "code": self.code.value,
                "message": self.message,
                "details": self.details,
            },
        }


class ConfigError(ContextEngineError):
    """Configuration-related errors."""

    def __init__(
        self,
        message: str,
        details: Optional[dict[str, Any]] = None,
        code: ErrorCode = ErrorCode.CONFIG_INVALID,
    ) -> None:
        super().__init__(message, code=code, details=details)


class InvalidScopeError(ContextEngineError):
    """Raised for a scope that is neither 'session' nor 'project'."""

    def __init__(self, scope: str) -> None:
        super().__init__(
            f"Unknown context scope: {scope!r}",
            code=ErrorCode.SCOPE_INVALID,
            details={"scope": str(scope)[:100]},
        )


class ScopeMismatchError(ContextEngineError):
    """Raised when restoring an archive under a different scope than it was stored with."""

    def __init__(self, context_id: str, requested: str, archived: str) -> None:
        super().__init__(
            f"Scope mismatch for {context_id}: requested {requested}, archived as {archived}",
            code=ErrorCode.SCOPE_MISMATCH,
            details={
                "context_id": context_id,
                "requested_scope": requested,
                "archived_scope": archived,
            },
        )


class ArchiveNotFoundError(ContextEngineError):
    """Raised when no archive exists for a context id."""

    def __init__(self, context_id: str, reason: str = "") -> None:
        message = f"Context {context_id} not found in archive"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(
            message,
            code=ErrorCode.ARCHIVE_NOT_FOUND,
            details={"context_id": context_id},
        )


class SessionNotFoundError(ContextEngineError):
    """Raised when a session id is not registered."""

    def __init__(self, session_id: str) -> None:
        super().__init__(
            f"Session {session_id} is not registered",
            code=ErrorCode.SESSION_NOT_FOUND,
            details={"session_id": session_id},
        )


class TokenOracleError(ContextEngineError):
    """Precise token oracle failure. Always caught by TokenCounter."""

    def __init__(
        self,
        message: str,
        timeout_seconds: Optional[float] = None,
    ) -> None:
        details = {}
        code = ErrorCode.ORACLE_UNAVAILABLE
        if timeout_seconds:
            details["timeout_seconds"] = timeout_seconds
            code = ErrorCode.ORACLE_TIMEOUT
        super().__init__(message, code=code, details=details)
