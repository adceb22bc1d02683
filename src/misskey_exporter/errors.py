"""
Error types for the Misskey Metrics Exporter.

This module defines the ExporterError base class and subclasses for domain-specific
errors. Components raise these instead of ad-hoc exceptions when the failure is
part of the exporter's own contract (exhausted reconnection, invalid sampler
settings, a sampler that is already running).

Driver errors (psycopg) and transport errors (httpx) are not wrapped at the
point they occur; they propagate unchanged or are absorbed at the boundaries
documented in the owning module.
"""

from __future__ import annotations

from typing import Any


class ExporterError(Exception):
    """
    Base exception class for exporter errors.

    Attributes:
        error_code: Internal error code string (e.g., "invalid_argument",
            "unavailable", "failed_precondition").
        message: Human-readable error message.
        details: Optional structured details (e.g., attempt counts, settings).

    Example:
        >>> raise ExporterError(
        ...     error_code="unavailable",
        ...     message="Database unreachable",
        ...     details={"host": "db.internal"},
        ... )
    """

    def __init__(
        self,
        error_code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ) -> None:
        """
        Initialize an ExporterError.

        Args:
            error_code: Internal error code string identifying the error category.
            message: Human-readable error message.
            details: Optional dictionary with structured error details.
        """
        super().__init__(message)
        self.error_code = error_code
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """
        Convert the error to a dictionary for serialization.

        Returns:
            Dictionary with error_code, message, and details.
        """
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
        }


class InvalidArgumentError(ExporterError):
    """
    Error raised when a component receives an invalid setting.

    Maps to the "invalid_argument" error code.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an InvalidArgumentError."""
        super().__init__(
            error_code="invalid_argument", message=message, details=details
        )


class UnavailableError(ExporterError):
    """
    Error raised when a required backend cannot be reached.

    Raised by the store connector once its bounded reconnection sequence is
    exhausted. Fatal at startup; aborts only the current cycle afterwards.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize an UnavailableError."""
        super().__init__(error_code="unavailable", message=message, details=details)


class FailedPreconditionError(ExporterError):
    """
    Error raised when an operation is invoked in the wrong state.

    Maps to the "failed_precondition" error code, e.g. starting a sampler
    that is already running.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize a FailedPreconditionError."""
        super().__init__(
            error_code="failed_precondition", message=message, details=details
        )
