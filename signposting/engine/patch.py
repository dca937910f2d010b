"""
Override patches.

A patch maps a content field to either a concrete value or the INHERIT
sentinel. Keys that are absent leave the stored override untouched:

    {"name": "Ear pain"}          set name
    {"name": None} / {"name": ""} clear name → inherit the live base value
    {}                            no change

The hidden flag is carried separately (``hidden=True/False/None``).
"""

from __future__ import annotations

from signposting.core.exceptions import ValidationError
from signposting.engine.types import CONTENT_FIELDS

AGE_GROUPS = ("U5", "O5", "Adult")

_MAX_LENGTHS = {
    "name": 200,
    "age_group": 10,
    "link_to_page": 500,
}


class _Inherit:
    """Sentinel: the field has no override and follows the base item."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "INHERIT"

    def __bool__(self) -> bool:
        return False


INHERIT = _Inherit()


def is_set(value) -> bool:
    """True when a stored override value should win over the base value."""
    if value is None or value is INHERIT:
        return False
    if isinstance(value, str):
        return value.strip() != ""
    return True


def parse_patch(raw: dict | None) -> dict:
    """Validate a raw patch payload and normalise blanks to INHERIT.

    Raises:
        ValidationError: unknown fields, non-string values, an invalid
            age group, or values over the column length.
    """
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ValidationError("patch must be an object")

    unknown = sorted(set(raw) - set(CONTENT_FIELDS))
    if unknown:
        raise ValidationError(
            f"Unknown override fields: {', '.join(unknown)}",
            details={f: "not overridable" for f in unknown},
        )

    patch: dict = {}
    errors: dict = {}
    for field_name, value in raw.items():
        if value is None or (isinstance(value, str) and value.strip() == ""):
            patch[field_name] = INHERIT
            continue
        if not isinstance(value, str):
            errors[field_name] = "must be a string"
            continue
        limit = _MAX_LENGTHS.get(field_name)
        if limit and len(value) > limit:
            errors[field_name] = f"must be ≤ {limit} characters"
            continue
        if field_name == "age_group" and value not in AGE_GROUPS:
            errors[field_name] = f"must be one of: {', '.join(AGE_GROUPS)}"
            continue
        patch[field_name] = value

    if errors:
        raise ValidationError("Invalid override patch", details=errors)
    return patch


def validate_content(data: dict, *, partial: bool = False) -> dict:
    """Validate a full (or partial) item content payload for base/custom items.

    Returns only CONTENT_FIELDS keys, with blank optional strings as None.

    Raises:
        ValidationError: missing/invalid name or age group, bad types.
    """
    if not isinstance(data, dict):
        raise ValidationError("payload must be an object")

    content: dict = {}
    errors: dict = {}
    for field_name in CONTENT_FIELDS:
        if field_name not in data:
            continue
        value = data[field_name]
        if value is not None and not isinstance(value, str):
            errors[field_name] = "must be a string"
            continue
        value = value.strip() if field_name in ("name", "age_group") and value else value
        if value == "":
            value = None
        limit = _MAX_LENGTHS.get(field_name)
        if value and limit and len(value) > limit:
            errors[field_name] = f"must be ≤ {limit} characters"
            continue
        content[field_name] = value

    if not partial or "name" in data:
        if not content.get("name"):
            errors.setdefault("name", "is required")
    if not partial or "age_group" in data:
        age_group = content.get("age_group") or ("Adult" if not partial else None)
        if age_group not in AGE_GROUPS:
            errors.setdefault("age_group", f"must be one of: {', '.join(AGE_GROUPS)}")
        else:
            content["age_group"] = age_group

    if errors:
        raise ValidationError("Invalid item content", details=errors)
    return content
