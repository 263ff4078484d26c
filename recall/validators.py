"""
Shared validation helpers for Recall services.
"""

from __future__ import annotations

import json
from enum import Enum
from typing import Optional, Sequence, Type, TypeVar

from recall.config import (
    MAX_EMBEDDING_TEXT_LENGTH,
    MAX_METADATA_BYTES,
    MIN_TTL_SECONDS,
)
from recall.errors import ValidationIssue

E = TypeVar("E", bound=Enum)


def validate_required_text(value: str, field: str, max_len: int) -> None:
    if not isinstance(value, str) or not value.strip():
        raise ValidationIssue(f"{field} must be a non-empty string", field=field, error_type="required")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_optional_text(value: Optional[str], field: str, max_len: int) -> None:
    if value is None:
        return
    if not isinstance(value, str):
        raise ValidationIssue(f"{field} must be a string", field=field, error_type="invalid_type")
    if len(value) > max_len:
        raise ValidationIssue(f"{field} exceeds max length {max_len}", field=field, error_type="max_length")


def validate_limit(value: int, field: str, max_value: int) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value <= 0 or value > max_value:
        raise ValidationIssue(f"{field} must be between 1 and {max_value}", field=field, error_type="out_of_range")


def validate_int_range(value: int, field: str, min_value: int, max_value: Optional[int] = None) -> None:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationIssue(f"{field} must be an integer", field=field, error_type="invalid_type")
    if value < min_value or (max_value is not None and value > max_value):
        if max_value is None:
            message = f"{field} must be at least {min_value}"
        else:
            message = f"{field} must be between {min_value} and {max_value}"
        raise ValidationIssue(message, field=field, error_type="out_of_range")


def validate_importance(value: int, field: str = "importance") -> None:
    validate_int_range(value, field, 1, 10)


def validate_ttl(value: Optional[int], field: str = "ttl_seconds") -> None:
    if value is None:
        return
    validate_int_range(value, field, MIN_TTL_SECONDS)


def validate_confidence(value: float, field: str) -> None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationIssue(f"{field} must be a number", field=field, error_type="invalid_type")
    if value < 0.0 or value > 1.0:
        raise ValidationIssue(f"{field} must be between 0.0 and 1.0", field=field, error_type="out_of_range")


def validate_string_list(
    values: Optional[Sequence[str]],
    field: str,
    max_items: int,
    max_item_length: int,
) -> None:
    if values is None:
        return
    if isinstance(values, str):
        raise ValidationIssue(f"{field} must be a list of strings", field=field, error_type="invalid_type")
    if len(values) > max_items:
        raise ValidationIssue(f"{field} exceeds max items {max_items}", field=field, error_type="max_items")
    for item in values:
        if not isinstance(item, str) or not item.strip():
            raise ValidationIssue(
                f"{field} must contain only non-empty strings",
                field=field,
                error_type="invalid_type",
            )
        if len(item) > max_item_length:
            raise ValidationIssue(
                f"{field} item exceeds max length {max_item_length}",
                field=field,
                error_type="max_length",
            )


def validate_metadata(metadata: Optional[dict], field: str) -> None:
    if metadata is None:
        return
    if not isinstance(metadata, dict):
        raise ValidationIssue(f"{field} must be an object", field=field, error_type="invalid_type")
    try:
        size = len(json.dumps(metadata))
    except (TypeError, ValueError) as exc:
        raise ValidationIssue(f"{field} must be JSON-serializable", field=field, error_type="invalid_type") from exc
    if size > MAX_METADATA_BYTES:
        raise ValidationIssue(
            f"{field} exceeds max size {MAX_METADATA_BYTES} bytes",
            field=field,
            error_type="max_bytes",
        )


def validate_embedding_text(text: str) -> None:
    validate_required_text(text, "text", MAX_EMBEDDING_TEXT_LENGTH)


def coerce_enum(enum_cls: Type[E], value, field: str) -> E:
    """Return the enum member for value or raise a ValidationIssue listing the choices."""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError as exc:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ValidationIssue(
            f"{field} must be one of: {allowed}",
            field=field,
            error_type="invalid_choice",
        ) from exc
