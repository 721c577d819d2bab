from __future__ import annotations

import traceback
import uuid
from collections.abc import Mapping
from datetime import datetime, timezone
from typing import Any

_REDACTED_KEYS = {"api_key", "apikey", "password", "token", "secret", "authorization"}
_REDACTED = "***"


class FneError(RuntimeError):
    code = "fne_error"
    status_code = 500

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        status_code: int | None = None,
        errors: Mapping[str, list[str]] | None = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code
        if status_code is not None:
            self.status_code = status_code
        self.errors: dict[str, list[str]] = {k: list(v) for k, v in (errors or {}).items()}
        self.meta: dict[str, Any] = dict(meta or {})

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "message": self.message,
            "error": self.code,
            "status_code": self.status_code,
        }
        if self.errors:
            out["errors"] = self.errors
        if self.meta:
            out["meta"] = self.meta
        return out


class ConfigurationError(FneError):
    code = "configuration_error"
    status_code = 500


class BadRequestError(FneError):
    code = "bad_request"
    status_code = 400


class AuthenticationError(FneError):
    code = "authentication_error"
    status_code = 401


class NotFoundError(FneError):
    code = "not_found"
    status_code = 404


class ServerError(FneError):
    code = "server_error"
    status_code = 500


class DecodeError(FneError):
    code = "decode_error"
    status_code = 502


class MappingError(FneError):
    code = "mapping_error"
    status_code = 400

    def __init__(
        self,
        message: str,
        *,
        kind: str = "mapping_failed",
        offending_value: Any = None,
        meta: Mapping[str, Any] | None = None,
    ) -> None:
        merged = {"kind": kind}
        if offending_value is not None:
            merged["offending_value"] = repr(offending_value)
        merged.update(meta or {})
        super().__init__(message, meta=merged)
        self.kind = kind
        self.offending_value = offending_value


class ValidationError(BadRequestError):
    code = "validation_error"
    status_code = 422

    def __init__(
        self,
        errors: Mapping[str, list[str]],
        *,
        failed_rules: Mapping[str, list[str]] | None = None,
        data: Any = None,
        message: str | None = None,
    ) -> None:
        self.failed_rules: dict[str, list[str]] = {k: list(v) for k, v in (failed_rules or {}).items()}
        self.data = redact(data) if data is not None else None
        super().__init__(message or _diagnostic_message(errors, self.failed_rules), errors=errors)


def redact(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {
            k: (_REDACTED if str(k).lower() in _REDACTED_KEYS else redact(v))
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return [redact(v) for v in value]
    return value


def _diagnostic_message(errors: Mapping[str, list[str]], failed_rules: Mapping[str, list[str]]) -> str:
    if not errors:
        return "Validation failed."
    lines = [f"Validation failed for {len(errors)} field(s):"]
    for field, messages in errors.items():
        rules = failed_rules.get(field) or []
        suffix = f" [rules: {', '.join(rules)}]" if rules else ""
        lines.append(f"  - {field}: {' '.join(messages)}{suffix}")
    return "\n".join(lines)


def format_error(exc: BaseException, *, include_trace: bool = False, request_id: str | None = None) -> dict[str, Any]:
    if isinstance(exc, FneError):
        out = exc.to_dict()
    else:
        out = {"message": str(exc) or type(exc).__name__, "error": "internal_error", "status_code": 500}

    meta = dict(out.get("meta") or {})
    meta["timestamp"] = datetime.now(timezone.utc).isoformat()
    meta["request_id"] = request_id or uuid.uuid4().hex
    if include_trace:
        meta["trace"] = traceback.format_exception(type(exc), exc, exc.__traceback__)
    out["meta"] = meta
    return out
