"""
Unified error handling for the security policy engine.

Every engine failure derives from SecGateError and carries an exit code
so the CLI and the HTTP layer can translate it without inspecting
messages.

Exit Codes:
- 0: Success (gate approved or bypassed)
- 1: Warning (gate pending approval)
- 2: Blocked (gate blocked)
- 10: Configuration error
- 11: Collaborator error (metrics provider unavailable)
- 12: Validation error (invalid policy or rule)
- 13: Not found
- 14: Invalid state
- 127: Unknown/internal error
"""

from __future__ import annotations

import functools
import sys
import traceback
from enum import IntEnum
from typing import Any, Callable, TypeVar

import structlog

logger = structlog.get_logger()


class ExitCode(IntEnum):
    """Standardized exit codes for CLI commands."""

    SUCCESS = 0
    WARNING = 1
    BLOCKED = 2
    CONFIG_ERROR = 10
    COLLABORATOR_ERROR = 11
    VALIDATION_ERROR = 12
    NOT_FOUND = 13
    INVALID_STATE = 14
    UNKNOWN_ERROR = 127


class SecGateError(Exception):
    """Base exception for engine errors with exit code support."""

    exit_code: ExitCode = ExitCode.UNKNOWN_ERROR
    show_traceback: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(SecGateError):
    """Raised for configuration-related errors."""

    exit_code = ExitCode.CONFIG_ERROR


class NotFoundError(SecGateError):
    """Raised for an unknown policy, repository or deployment gate."""

    exit_code = ExitCode.NOT_FOUND


class InvalidStateError(SecGateError):
    """Raised when a gate decision is attempted outside the PENDING state."""

    exit_code = ExitCode.INVALID_STATE


class ValidationError(SecGateError):
    """Raised for invalid policy or enforcement configuration."""

    exit_code = ExitCode.VALIDATION_ERROR


class InvalidRuleError(ValidationError):
    """Raised when a rule operand cannot be compiled for its operator."""


class CollaboratorError(SecGateError):
    """Raised when an external collaborator (metrics provider) fails."""

    exit_code = ExitCode.COLLABORATOR_ERROR


class NotificationError(SecGateError):
    """Raised when delivery to a single notification channel fails."""

    exit_code = ExitCode.COLLABORATOR_ERROR


# Type variable for decorated functions
F = TypeVar("F", bound=Callable[..., int])


def main_with_error_handling(
    *,
    show_traceback: bool = False,
    log_errors: bool = True,
) -> Callable[[F], F]:
    """
    Decorator for CLI main functions that provides unified error handling.

    Catches exceptions and converts them to appropriate exit codes with
    consistent error reporting.

    Exit codes:
        - SecGateError subclasses: Uses the error's exit_code
        - KeyboardInterrupt: Returns 130 (standard for SIGINT)
        - Other exceptions: Returns 127 (unknown error)
    """

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> int:
            try:
                return func(*args, **kwargs)
            except SecGateError as e:
                if log_errors:
                    logger.error(
                        "command_error",
                        error_type=type(e).__name__,
                        message=e.message,
                        exit_code=e.exit_code,
                        **e.details,
                    )
                if e.show_traceback or show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return e.exit_code
            except KeyboardInterrupt:
                if log_errors:
                    logger.info("command_interrupted")
                return 130
            except Exception as e:
                if log_errors:
                    logger.error(
                        "unexpected_error",
                        error_type=type(e).__name__,
                        message=str(e),
                        exit_code=ExitCode.UNKNOWN_ERROR,
                    )
                if show_traceback:
                    traceback.print_exc(file=sys.stderr)
                return ExitCode.UNKNOWN_ERROR

        return wrapper  # type: ignore[return-value]

    return decorator
