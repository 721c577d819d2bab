from __future__ import annotations

from collections.abc import Mapping, MutableMapping, MutableSequence, Sequence
from typing import Any


class _Missing:
    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"

    def __bool__(self) -> bool:
        return False


MISSING: Any = _Missing()


def _split(path: str) -> list[str]:
    return [segment for segment in str(path).split(".") if segment != ""]


def _is_sequence(value: Any) -> bool:
    return isinstance(value, Sequence) and not isinstance(value, (str, bytes, bytearray))


def _step(current: Any, segment: str) -> Any:
    if isinstance(current, Mapping):
        if segment in current:
            return current[segment]
        if segment.lstrip("-").isdigit() and int(segment) in current:
            return current[int(segment)]
        return MISSING
    if _is_sequence(current) and segment.isdigit():
        index = int(segment)
        if index < len(current):
            return current[index]
    return MISSING


def get_path(document: Any, path: str) -> Any:
    current = document
    for segment in _split(path):
        current = _step(current, segment)
        if current is MISSING:
            return MISSING
    return current


def has_path(document: Any, path: str) -> bool:
    return get_path(document, path) is not MISSING


def _pad(items: MutableSequence[Any], index: int) -> None:
    while len(items) <= index:
        items.append(None)


def set_path(document: MutableMapping[str, Any], path: str, value: Any) -> None:
    segments = _split(path)
    if not segments:
        raise ValueError("Cannot set a value at an empty path.")

    current: Any = document
    for position, segment in enumerate(segments):
        last = position == len(segments) - 1

        if isinstance(current, MutableSequence) and segment.isdigit():
            index = int(segment)
            _pad(current, index)
            if last:
                current[index] = value
                return
            if not isinstance(current[index], (MutableMapping, MutableSequence)):
                current[index] = {}
            current = current[index]
            continue

        if last:
            current[segment] = value
            return

        child = current.get(segment)
        if not isinstance(child, (MutableMapping, MutableSequence)):
            child = {}
            current[segment] = child
        current = child
