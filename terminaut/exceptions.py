"""Custom exception hierarchy for Terminaut.

This module provides a structured exception hierarchy that enables:
- Consistent error handling across the application
- Rich error context for debugging
- Error categorization for different handling strategies

Most of these errors are recovered locally (a bad state artifact, a
terminal surface that could not be created) and only counted through
``record_error``. Usage errors such as watching an empty path are raised
to the caller.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any


class TerminautError(Exception):
    """Base exception for all Terminaut errors.

    Attributes:
        message: Human-readable error description.
        context: Additional context for debugging.
        timestamp: When the error occurred.
    """

    def __init__(
        self,
        message: str,
        *,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        self.message = message
        self.context = context or {}
        self.timestamp = datetime.now()
        self.cause = cause
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message


# =============================================================================
# Configuration Errors
# =============================================================================


class ConfigError(TerminautError):
    """Base class for configuration-related errors."""

    pass


class ConfigLoadError(ConfigError):
    """Raised when configuration file fails to load."""

    def __init__(
        self,
        message: str = "Failed to load configuration",
        *,
        file_path: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or {}
        if file_path:
            ctx["file_path"] = file_path
        super().__init__(message, context=ctx, cause=cause)


class ConfigValidationError(ConfigError):
    """Raised when configuration validation fails."""

    def __init__(
        self,
        message: str = "Configuration validation failed",
        *,
        field: str | None = None,
        value: Any = None,
        expected: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or {}
        if field:
            ctx["field"] = field
        if value is not None:
            ctx["value"] = str(value)[:100]  # Truncate long values
        if expected:
            ctx["expected"] = expected
        super().__init__(message, context=ctx, cause=cause)


class ConfigSaveError(ConfigError):
    """Raised when configuration fails to save."""

    def __init__(
        self,
        message: str = "Failed to save configuration",
        *,
        file_path: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or {}
        if file_path:
            ctx["file_path"] = file_path
        super().__init__(message, context=ctx, cause=cause)


# =============================================================================
# State Artifact Errors
# =============================================================================


class StateArtifactError(TerminautError):
    """Base class for state artifact errors."""

    pass


class StateParseError(StateArtifactError):
    """Raised when a state artifact cannot be parsed.

    The whole document is rejected; callers keep whatever snapshot they
    already hold.
    """

    def __init__(
        self,
        message: str = "Failed to parse state artifact",
        *,
        file_path: str | None = None,
        field: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or {}
        if file_path:
            ctx["file_path"] = file_path
        if field:
            ctx["field"] = field
        super().__init__(message, context=ctx, cause=cause)


class StateWriteError(StateArtifactError):
    """Raised when an artifact cannot be written atomically."""

    def __init__(
        self,
        message: str = "Failed to write state artifact",
        *,
        file_path: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or {}
        if file_path:
            ctx["file_path"] = file_path
        super().__init__(message, context=ctx, cause=cause)


# =============================================================================
# Watcher Errors
# =============================================================================


class WatcherError(TerminautError):
    """Base class for state watcher errors."""

    pass


class InvalidProjectPathError(WatcherError):
    """Raised when asked to watch without a usable project path."""

    def __init__(self, path: Any = None) -> None:
        super().__init__(
            "A project path is required to watch session state",
            context={"path": repr(path)},
        )


# =============================================================================
# Task Archive Errors
# =============================================================================


class ArchiveError(TerminautError):
    """Base class for task archive errors."""

    pass


class ArchiveSaveError(ArchiveError):
    """Raised when the archived task set cannot be persisted."""

    def __init__(
        self,
        message: str = "Failed to save archived tasks",
        *,
        file_path: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or {}
        if file_path:
            ctx["file_path"] = file_path
        super().__init__(message, context=ctx, cause=cause)


# =============================================================================
# Session Errors
# =============================================================================


class SessionError(TerminautError):
    """Base class for session-related errors."""

    pass


class InvalidLaunchError(SessionError):
    """Raised when a launch request is missing required arguments."""

    def __init__(
        self,
        message: str = "Invalid launch request",
        *,
        project_id: str | None = None,
        mode: str | None = None,
        context: dict[str, Any] | None = None,
    ) -> None:
        ctx = context or {}
        if project_id:
            ctx["project_id"] = project_id
        if mode:
            ctx["mode"] = mode
        super().__init__(message, context=ctx)


class SurfaceCreationError(SessionError):
    """Raised by surface factories when a terminal surface cannot be created."""

    def __init__(
        self,
        message: str = "Failed to create terminal surface",
        *,
        working_directory: str | None = None,
        context: dict[str, Any] | None = None,
        cause: Exception | None = None,
    ) -> None:
        ctx = context or {}
        if working_directory:
            ctx["working_directory"] = working_directory
        super().__init__(message, context=ctx, cause=cause)


# =============================================================================
# Error Registry for Categorization
# =============================================================================


@dataclass
class ErrorStats:
    """Track error statistics for monitoring."""

    total_count: int = 0
    by_type: dict[str, int] = field(default_factory=dict)
    recent_errors: list[tuple[datetime, str, str]] = field(default_factory=list)
    max_recent: int = 100

    def record(self, error: Exception) -> None:
        """Record an error occurrence."""
        self.total_count += 1
        type_name = type(error).__name__
        self.by_type[type_name] = self.by_type.get(type_name, 0) + 1

        self.recent_errors.append((datetime.now(), type_name, str(error)[:200]))
        if len(self.recent_errors) > self.max_recent:
            self.recent_errors.pop(0)

    def reset(self) -> None:
        """Clear all recorded errors."""
        self.total_count = 0
        self.by_type.clear()
        self.recent_errors.clear()


# Global error stats tracker
error_stats = ErrorStats()


def record_error(error: Exception) -> None:
    """Record an error to global stats."""
    error_stats.record(error)
