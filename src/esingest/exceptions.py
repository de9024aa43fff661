"""
esingest Exceptions
===================

Error taxonomy of the batching layer.

    IngestError
    ├── CapacityExceeded     buffer ceiling hit, caller must slow down
    ├── IngesterClosed       add() after close()
    ├── OperationRejected    malformed or permanently rejected operation
    ├── TransportTransient   retryable transport failure
    ├── TransportFatal       non-retryable transport failure
    ├── RetryExhausted       terminal failure after max_retries
    └── DispatchCancelled    batch cancelled by the caller

ConfigError is raised for invalid configuration values.
"""

from typing import Optional


class IngestError(Exception):
    """Base class for all esingest errors."""


class ConfigError(IngestError, ValueError):
    """Invalid configuration value."""


class CapacityExceeded(IngestError):
    """The pending-bytes ceiling would be breached by a new operation."""

    def __init__(self, pending_bytes: int, requested_bytes: int, limit: int):
        self.pending_bytes = pending_bytes
        self.requested_bytes = requested_bytes
        self.limit = limit
        super().__init__(
            f"Adding {requested_bytes} bytes to {pending_bytes} pending bytes "
            f"exceeds the limit of {limit} bytes"
        )


class IngesterClosed(IngestError):
    """The ingester no longer accepts operations."""


class OperationRejected(IngestError):
    """
    A single operation is malformed or was permanently rejected.

    Raised synchronously for operations that cannot be built, and attached
    to an OperationResult when the cluster rejects an item.
    """

    def __init__(self, message: str, status: Optional[int] = None, reason: Optional[dict] = None):
        self.status = status
        self.reason = reason
        super().__init__(message)


class TransportTransient(IngestError):
    """A retryable transport failure (throttling, resource exhaustion, timeouts)."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class TransportFatal(IngestError):
    """A non-retryable transport failure; the whole batch fails."""

    def __init__(self, message: str, status: Optional[int] = None):
        self.status = status
        super().__init__(message)


class RetryExhausted(IngestError):
    """Retries ran out; carries the last error seen."""

    def __init__(self, attempts: int, last_error: Optional[BaseException] = None):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(f"Gave up after {attempts} attempts: {last_error}")


class DispatchCancelled(IngestError):
    """The batch was cancelled before reaching a terminal outcome."""
