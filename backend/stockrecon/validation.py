from __future__ import annotations

from typing import Any, Iterable, Optional


class ValidationError(ValueError):
    """400-level input problem."""


class ConflictError(ValueError):
    """409-level business rule conflict (e.g., posting already in flight)."""


def parse_int(value: Any, field: str, *, required: bool = False) -> Optional[int]:
    """
    Strict integer parsing for request input.

    - None / "" -> None (or ValidationError if required)
    - bool and float are rejected
    - strings must be plain digits with an optional leading minus
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        if required:
            raise ValidationError(f"{field} is required")
        return None
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        stripped = value.strip()
        digits = stripped[1:] if stripped.startswith("-") else stripped
        if digits.isdigit():
            return int(stripped)
    raise ValidationError(f"{field} must be an integer")


def parse_branch_filter(values: Iterable[str]) -> Optional[list[str]]:
    """Branch codes from repeated and/or comma-separated query values."""
    codes = []
    for raw in values or ():
        for part in str(raw).split(","):
            part = part.strip()
            if part and part not in codes:
                codes.append(part)
    return codes or None


def parse_paging(limit_raw: Any, offset_raw: Any, *, max_limit: int) -> tuple[int, int]:
    """
    Parse limit/offset and clamp limit to [1, max_limit].

    Missing limit means max_limit.
    """
    limit = parse_int(limit_raw, "limit")
    offset = parse_int(offset_raw, "offset")

    if limit is None:
        limit = max_limit
    limit = max(1, min(limit, max_limit))

    if offset is None:
        offset = 0
    if offset < 0:
        raise ValidationError("offset must be >= 0")
    return limit, offset
