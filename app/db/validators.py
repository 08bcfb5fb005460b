"""Identifier helpers shared by ORM models and the request pipeline."""

import uuid


def parse_uuid(value: uuid.UUID | str) -> str | None:
    """Return the canonical string form of a UUID, or None when malformed."""
    if isinstance(value, uuid.UUID):
        return str(value)
    if not isinstance(value, str):
        return None
    try:
        return str(uuid.UUID(value))
    except ValueError:
        return None


def validate_uuid_string(_key: str, value: uuid.UUID | str) -> str:
    """Convert a UUID to its canonical string and validate the format.

    Usable with SQLAlchemy's @validates decorator so identifiers are stored
    consistently no matter how callers spell them.

    Raises:
        ValueError: If the value is not a valid UUID
    """
    parsed = parse_uuid(value)
    if parsed is None:
        raise ValueError(f"Invalid UUID format: {value}")
    return parsed
