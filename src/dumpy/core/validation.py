"""
Connection Descriptor Validation
Checks a descriptor for completeness before any network call is made.

Every problem is collected so the front-end can show them all at once;
validation never raises.
"""

from typing import Any, List, Optional

from .models import ConnectionDescriptor, ValidationIssue, ValidationResult

MIN_PORT = 1
MAX_PORT = 65535


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    return not str(value).strip()


def _parse_port(value: Any) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def validate(descriptor: ConnectionDescriptor) -> ValidationResult:
    """
    Validate a connection descriptor.

    Args:
        descriptor: The descriptor to check

    Returns:
        ValidationResult listing one issue per violated rule
    """
    errors: List[ValidationIssue] = []

    if _is_blank(descriptor.host):
        errors.append(ValidationIssue(field="host", message="Host is required"))
    if _is_blank(descriptor.port):
        errors.append(ValidationIssue(field="port", message="Port is required"))
    if _is_blank(descriptor.database_name):
        errors.append(ValidationIssue(field="database", message="Database name is required"))
    if _is_blank(descriptor.username):
        errors.append(ValidationIssue(field="username", message="Username is required"))

    if not _is_blank(descriptor.port):
        port = _parse_port(descriptor.port)
        if port is None:
            errors.append(ValidationIssue(field="port", message="Port must be a number"))
        elif not MIN_PORT <= port <= MAX_PORT:
            errors.append(ValidationIssue(
                field="port",
                message=f"Port must be between {MIN_PORT} and {MAX_PORT}"
            ))

    pooling = descriptor.pool_options
    if pooling is not None:
        if pooling.max_size is not None and pooling.max_size < 1:
            errors.append(ValidationIssue(
                field="pooling.max",
                message="Max pool size must be at least 1"
            ))
        if pooling.min_size is not None and pooling.min_size < 0:
            errors.append(ValidationIssue(
                field="pooling.min",
                message="Min pool size cannot be negative"
            ))
        if (
            pooling.min_size is not None
            and pooling.max_size is not None
            and pooling.min_size > pooling.max_size
        ):
            errors.append(ValidationIssue(
                field="pooling",
                message="Min pool size cannot be greater than max"
            ))

    return ValidationResult(is_valid=not errors, errors=errors)
