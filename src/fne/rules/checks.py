from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from typing import Any

from ..mappers import UUID_RE

RuleCheck = Callable[[str, Any, "str | None"], "str | None"]

_EMAIL_RE = re.compile(
    r"^[A-Za-z0-9.!#$%&'*+/=?^_`{|}~-]+@[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?"
    r"(?:\.[A-Za-z0-9](?:[A-Za-z0-9-]{0,61}[A-Za-z0-9])?)+$"
)


def is_numeric(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    if isinstance(value, str):
        try:
            float(value.strip())
        except ValueError:
            return False
        return value.strip() != ""
    return False


def is_empty(value: Any) -> bool:
    if value is None or value == "":
        return True
    return isinstance(value, (list, tuple, Mapping)) and len(value) == 0


def _string_form(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else ""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _format_bound(bound: float) -> str:
    return str(int(bound)) if bound.is_integer() else str(bound)


def check_required(field: str, value: Any, arg: str | None) -> str | None:
    if is_empty(value):
        return f"The {field} field is required."
    return None


def check_string(field: str, value: Any, arg: str | None) -> str | None:
    if value is not None and not isinstance(value, str):
        return f"The {field} field must be a string."
    return None


def check_numeric(field: str, value: Any, arg: str | None) -> str | None:
    if value is not None and not is_numeric(value):
        return f"The {field} field must be numeric."
    return None


def check_email(field: str, value: Any, arg: str | None) -> str | None:
    if value is not None and not (isinstance(value, str) and _EMAIL_RE.match(value)):
        return f"The {field} field must be a valid email address."
    return None


def check_boolean(field: str, value: Any, arg: str | None) -> str | None:
    if value is not None and not isinstance(value, bool):
        return f"The {field} field must be a boolean."
    return None


def check_array(field: str, value: Any, arg: str | None) -> str | None:
    if value is not None and not isinstance(value, (list, tuple, Mapping)):
        return f"The {field} field must be an array."
    return None


def check_min(field: str, value: Any, arg: str | None) -> str | None:
    bound = float(arg or 0)
    if value is not None and is_numeric(value) and float(value) < bound:
        return f"The {field} field must be at least {_format_bound(bound)}."
    return None


def check_max(field: str, value: Any, arg: str | None) -> str | None:
    bound = float(arg or 0)
    if value is not None and is_numeric(value) and float(value) > bound:
        return f"The {field} field must not exceed {_format_bound(bound)}."
    return None


def check_in(field: str, value: Any, arg: str | None) -> str | None:
    allowed = [part.strip() for part in (arg or "").split(",")]
    if value is not None and _string_form(value) not in allowed:
        return f"The {field} field must be one of: {', '.join(allowed)}."
    return None


def check_uuid(field: str, value: Any, arg: str | None) -> str | None:
    if value is not None and not (isinstance(value, str) and UUID_RE.match(value)):
        return f"The {field} field must be a valid UUID."
    return None


BUILTIN_RULES: dict[str, RuleCheck] = {
    "required": check_required,
    "string": check_string,
    "numeric": check_numeric,
    "email": check_email,
    "boolean": check_boolean,
    "array": check_array,
    "min": check_min,
    "max": check_max,
    "in": check_in,
    "uuid": check_uuid,
}
