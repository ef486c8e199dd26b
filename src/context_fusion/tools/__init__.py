"""MCP tool definitions."""

from datetime import datetime, timezone
from typing import Any

from context_fusion.exceptions import ContextFusionError

__all__ = ["create_error_response", "error_response_from_exception"]


def create_error_response(
    message: str,
    error_type: str,
    details: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Create standardized error response for MCP tools.

    Args:
        message: User-friendly error message
        error_type: Error type name (e.g., ValidationError, StageTimeoutError)
        details: Optional additional details

    Returns:
        Structured error response dictionary
    """
    response = {
        "error": True,
        "message": message,
        "error_type": error_type,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }
    if details:
        response["details"] = details
    return response


def error_response_from_exception(error: ContextFusionError) -> dict[str, Any]:
    """Error response carrying the structured fields of a typed error."""
    return create_error_response(
        message=str(error),
        error_type=type(error).__name__,
        details=error.to_dict(),
    )
