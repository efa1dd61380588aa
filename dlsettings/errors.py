"""Error types raised by the settings store."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Stable error codes an API layer can expose as-is."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    IMMUTABLE_FIELD = "IMMUTABLE_FIELD"
    CONFLICT = "CONFLICT"
    NOT_FOUND = "NOT_FOUND"
    STORAGE_UNAVAILABLE = "STORAGE_UNAVAILABLE"


class ConfigError(Exception):
    """Base exception for settings store errors."""

    def __init__(
        self,
        message: str,
        *,
        code: ErrorCode,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.meta = dict(meta or {})

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.meta:
            payload["meta"] = dict(self.meta)
        return payload


class ValidationError(ConfigError):
    """Malformed caller input; raised before anything is written."""

    def __init__(
        self,
        message: str,
        *,
        section: str,
        field: str,
        value: Any = None,
        code: ErrorCode = ErrorCode.VALIDATION_ERROR,
    ) -> None:
        meta: dict[str, Any] = {"section": section, "field": field}
        if value is not None:
            meta["value"] = value
        super().__init__(message, code=code, meta=meta)
        self.section = section
        self.field = field
        self.value = value


class ImmutableFieldError(ValidationError):
    def __init__(self, section: str, field: str) -> None:
        super().__init__(
            f"field '{field}' in section '{section}' is immutable",
            section=section,
            field=field,
            code=ErrorCode.IMMUTABLE_FIELD,
        )


class ConflictError(ConfigError):
    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, code=ErrorCode.CONFLICT, meta=meta)


class NotFoundError(ConfigError):
    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, code=ErrorCode.NOT_FOUND, meta=meta)


class FatalError(ConfigError):
    """The backing database is unavailable. The cause is chained, never retried."""

    def __init__(self, message: str, *, meta: Mapping[str, Any] | None = None) -> None:
        super().__init__(message, code=ErrorCode.STORAGE_UNAVAILABLE, meta=meta)


def from_pydantic(exc: Any, *, section: str) -> ValidationError:
    """Convert a pydantic ValidationError into ours, keeping the first failing location."""
    errors = exc.errors() if hasattr(exc, "errors") else []
    if not errors:
        return ValidationError(str(exc), section=section, field="")
    first = errors[0]
    loc = ".".join(str(p) for p in first.get("loc", ()) if p != "__root__")
    return ValidationError(
        f"{section}: {loc or 'value'}: {first.get('msg', 'invalid value')}",
        section=section,
        field=loc,
        value=first.get("input") if isinstance(first.get("input"), (str, int, float, bool)) else None,
    )
