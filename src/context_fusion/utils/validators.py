"""Validation utilities for tool input.

Reusable validators that turn loosely typed MCP tool arguments into the
values the services expect.
"""

from context_fusion.models.context import PrivacyLevel, SourceType


class ValidationError(ValueError):
    """Raised when input validation fails."""


def validate_query(query: str) -> str:
    """Validate a query is a non-empty string.

    Args:
        query: The query string to validate

    Returns:
        The stripped query

    Raises:
        ValidationError: If query is empty
    """
    if not query or not isinstance(query, str) or not query.strip():
        raise ValidationError("Query must be a non-empty string")
    return query.strip()


def validate_tags(tags: list[str] | None) -> list[str]:
    """Validate and normalize a list of tags.

    Args:
        tags: Optional list of tag strings

    Returns:
        Normalized list of tags (stripped, non-empty, unique)

    Raises:
        ValidationError: If tags contain invalid values
    """
    if tags is None:
        return []

    if not isinstance(tags, list):
        raise ValidationError("Tags must be a list of strings")

    normalized: list[str] = []
    for tag in tags:
        if not isinstance(tag, str):
            raise ValidationError(f"Tag must be a string, got {type(tag).__name__}")
        tag = tag.strip()
        if tag and tag not in normalized:
            normalized.append(tag)

    return normalized


def validate_positive_int(
    value: int,
    field_name: str,
    min_value: int = 1,
    max_value: int | None = None,
) -> int:
    """Validate a positive integer within bounds.

    Args:
        value: The integer value to validate
        field_name: Name of the field for error messages
        min_value: Minimum allowed value (inclusive)
        max_value: Maximum allowed value (inclusive), None for no limit

    Returns:
        The validated integer

    Raises:
        ValidationError: If value is out of bounds
    """
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError(f"{field_name} must be an integer")

    if value < min_value:
        raise ValidationError(f"{field_name} must be at least {min_value}")

    if max_value is not None and value > max_value:
        raise ValidationError(f"{field_name} must be at most {max_value}")

    return value


def validate_unit_interval(value: float, field_name: str) -> float:
    """Validate a number lies in [0, 1].

    Raises:
        ValidationError: If value is not a number in range
    """
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(f"{field_name} must be a number")
    if not 0.0 <= value <= 1.0:
        raise ValidationError(f"{field_name} must be between 0.0 and 1.0")
    return float(value)


def validate_privacy_level(level: str) -> PrivacyLevel:
    """Validate and convert a string to PrivacyLevel enum.

    Raises:
        ValidationError: If the level is not valid
    """
    try:
        return PrivacyLevel(level)
    except ValueError as e:
        valid = [p.value for p in PrivacyLevel]
        raise ValidationError(
            f"Invalid privacy_level: '{level}'. Valid levels are: {', '.join(valid)}"
        ) from e


def validate_source_type(source_type: str) -> SourceType:
    """Validate and convert a string to SourceType enum.

    Raises:
        ValidationError: If the source type is not valid
    """
    try:
        return SourceType(source_type)
    except ValueError as e:
        valid = [s.value for s in SourceType]
        raise ValidationError(
            f"Invalid source_type: '{source_type}'. Valid types are: {', '.join(valid)}"
        ) from e
