from __future__ import annotations

from datetime import datetime
from typing import Any

from pharmaflow.time_utils import parse_iso_datetime, normalize_utc


class DomainError(Exception):
    """
    Base class for errors that are safe to show to API clients.

    Each subclass carries a stable `code` and an HTTP status so routes can
    render a structured error without leaking storage-layer detail.
    """
    code = "ERROR"
    status_code = 400
    retryable = False

    def __init__(self, message: str, *, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
            "retryable": self.retryable,
        }


class ValidationError(DomainError, ValueError):
    """400-level input problem. Carries every violation found, not just the first."""
    code = "VALIDATION_ERROR"
    status_code = 400

    def __init__(self, message: str | list[dict], *, errors: list[dict] | None = None):
        if isinstance(message, list):
            errors = message
            message = "; ".join(f"{e['field']}: {e['message']}" for e in errors) or "Invalid input"
        self.errors = errors or []
        super().__init__(message, details={"errors": self.errors})


class NotFoundError(DomainError, LookupError):
    """Referenced stage, transition, entity, or user does not exist."""
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(DomainError):
    """409-level business rule conflict (e.g., deleting a referenced stage)."""
    code = "CONFLICT"
    status_code = 409


class StorageError(DomainError):
    """The database rejected or failed a write; the request may succeed on retry."""
    code = "STORAGE_ERROR"
    status_code = 503
    retryable = True


class Violations:
    """
    Collects field-level violations so a whole payload is reported at once.

    Usage:
        v = Violations()
        v.check(len(name) >= 2, "name", "must be at least 2 characters")
        v.raise_if_any()
    """

    def __init__(self):
        self.errors: list[dict] = []

    def add(self, field: str, message: str) -> None:
        self.errors.append({"field": field, "message": message})

    def check(self, condition: bool, field: str, message: str) -> bool:
        if not condition:
            self.add(field, message)
        return condition

    def __bool__(self) -> bool:
        return bool(self.errors)

    def raise_if_any(self) -> None:
        if self.errors:
            raise ValidationError(list(self.errors))


def clean_string(value: Any) -> str | None:
    if value is None:
        return None
    return str(value).strip()


def check_length(v: Violations, field: str, value: str | None, *, min_len: int = 0, max_len: int | None = None,
                 required: bool = True) -> None:
    if value is None or value == "":
        if required:
            v.add(field, "is required")
        return
    if len(value) < min_len or (max_len is not None and len(value) > max_len):
        if max_len is None:
            v.add(field, f"must be at least {min_len} characters")
        else:
            v.add(field, f"must be between {min_len} and {max_len} characters")


def coerce_int(v: Violations, field: str, value: Any, *, minimum: int | None = None) -> int | None:
    """Strict integer coercion: rejects bools, floats and decimal strings."""
    if isinstance(value, bool) or value is None:
        v.add(field, "must be an integer")
        return None
    if isinstance(value, int):
        result = value
    elif isinstance(value, str) and value.strip().lstrip("-").isdigit():
        result = int(value.strip())
    else:
        v.add(field, "must be an integer")
        return None
    if minimum is not None and result < minimum:
        v.add(field, f"must be >= {minimum}")
        return None
    return result


def coerce_id_list(v: Violations, field: str, value: Any) -> list[int]:
    """Accept a list of integer ids; None means empty."""
    if value is None:
        return []
    if not isinstance(value, (list, tuple, set)):
        v.add(field, "must be an array")
        return []
    ids: list[int] = []
    for idx, item in enumerate(value):
        if isinstance(item, bool) or not isinstance(item, int):
            if isinstance(item, str) and item.isdigit():
                ids.append(int(item))
                continue
            v.add(f"{field}[{idx}]", "must be a valid ID")
            continue
        ids.append(item)
    return ids


def coerce_bool(v: Violations, field: str, value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    v.add(field, "must be a boolean")
    return None


def coerce_datetime(v: Violations, field: str, value: Any) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return normalize_utc(value)
    if isinstance(value, str):
        try:
            return parse_iso_datetime(value)
        except ValueError:
            pass
    v.add(field, "must be an ISO-8601 datetime")
    return None
