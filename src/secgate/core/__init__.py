"""Core modules for secgate - error taxonomy and exit codes."""

from secgate.core.errors import (
    CollaboratorError,
    ConfigurationError,
    ExitCode,
    InvalidRuleError,
    InvalidStateError,
    NotFoundError,
    NotificationError,
    SecGateError,
    ValidationError,
    main_with_error_handling,
)

__all__ = [
    "ExitCode",
    "SecGateError",
    "ConfigurationError",
    "NotFoundError",
    "InvalidStateError",
    "ValidationError",
    "InvalidRuleError",
    "CollaboratorError",
    "NotificationError",
    "main_with_error_handling",
]
