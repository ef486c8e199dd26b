"""Custom exceptions for context-fusion."""

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Error kind classification."""

    CONFIGURATION = "configuration"
    SCORING_FAILURE = "scoring_failure"
    FUSION_AMBIGUITY = "fusion_ambiguity"
    TIMEOUT = "timeout"
    CONTEXT_NOT_FOUND = "context_not_found"
    PRIVACY_VIOLATION = "privacy_violation"
    SOURCE_FAILURE = "source_failure"


class ContextFusionError(Exception):
    """Base error carrying a kind plus the operation and resource it concerns.

    Messages are built from the structured fields only so that chunk
    content never leaks into logs or tool responses.
    """

    def __init__(
        self,
        kind: ErrorKind,
        operation: str,
        resource_id: str | None = None,
        reason: str | None = None,
    ) -> None:
        self.kind = kind
        self.operation = operation
        self.resource_id = resource_id
        self.reason = reason
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        message = f"[{self.kind.value}] {self.operation}"
        if self.resource_id:
            message += f" ({self.resource_id})"
        if self.reason:
            message += f": {self.reason}"
        return message

    @property
    def retryable(self) -> bool:
        """Whether retrying the same request may succeed."""
        return self.kind is ErrorKind.TIMEOUT

    def to_dict(self) -> dict[str, Any]:
        """Convert to a structured dictionary."""
        return {
            "kind": self.kind.value,
            "operation": self.operation,
            "resource_id": self.resource_id,
            "reason": self.reason,
            "retryable": self.retryable,
        }


class ConfigurationError(ContextFusionError):
    """Raised when weights, thresholds or other settings are invalid."""

    def __init__(
        self, operation: str, resource_id: str | None = None, reason: str | None = None
    ) -> None:
        super().__init__(ErrorKind.CONFIGURATION, operation, resource_id, reason)


class StageTimeoutError(ContextFusionError, TimeoutError):
    """Raised when a pipeline stage exceeds its deadline."""

    def __init__(
        self, operation: str, resource_id: str | None = None, reason: str | None = None
    ) -> None:
        super().__init__(ErrorKind.TIMEOUT, operation, resource_id, reason)


class ContextNotFoundError(ContextFusionError):
    """Raised when no chunks survive and the caller required results."""

    def __init__(
        self, operation: str, resource_id: str | None = None, reason: str | None = None
    ) -> None:
        super().__init__(ErrorKind.CONTEXT_NOT_FOUND, operation, resource_id, reason)


class PrivacyViolationError(ContextFusionError):
    """Raised when a request asks for a privacy level below the configured minimum."""

    def __init__(
        self, operation: str, resource_id: str | None = None, reason: str | None = None
    ) -> None:
        super().__init__(ErrorKind.PRIVACY_VIOLATION, operation, resource_id, reason)
