"""Base classes and boundary normalizers for value objects."""

from typing import Any

from pydantic import BaseModel, ConfigDict


class ValueObject(BaseModel):
    """Base class for all value objects.

    Value objects are immutable and compared by value, not identity.
    """

    model_config = ConfigDict(
        frozen=True,
        arbitrary_types_allowed=True,
    )


def normalize_email(value: Any) -> str:
    """Trim and lowercase an email-like value. Returns "" for empty input."""
    if value is None:
        return ""
    return str(value).strip().lower()


def normalize_identifier(value: Any) -> str:
    """Normalize a Plex account id for matching: trimmed, lowercased, no hyphens."""
    if value is None:
        return ""
    return str(value).strip().lower().replace("-", "")


def clean_optional(value: Any) -> str | None:
    """Trim a string value, mapping blank input to None."""
    if value is None:
        return None
    text = str(value).strip()
    return text or None
