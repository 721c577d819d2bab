from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Union

import yaml

from ..enums import DocumentType
from .checks import BUILTIN_RULES

RULES_DIR = Path(__file__).resolve().parent


@dataclass(frozen=True, slots=True)
class RuleSpec:
    name: str
    arg: str | None = None

    @classmethod
    def parse(cls, raw: str) -> "RuleSpec":
        name, sep, arg = str(raw).partition(":")
        name = name.strip()
        if name not in BUILTIN_RULES:
            raise ValueError(f"Unknown validation rule: {raw!r}")
        return cls(name=name, arg=arg if sep else None)

    def __str__(self) -> str:
        return self.name if self.arg is None else f"{self.name}:{self.arg}"


@dataclass(frozen=True, slots=True)
class FieldRef:
    path: str


@dataclass(frozen=True, slots=True)
class EachRef:
    parent: str
    child: str


@dataclass(frozen=True, slots=True)
class EachNestedRef:
    parent: str
    child: str


FieldPath = Union[FieldRef, EachRef, EachNestedRef]


def parse_field_path(path: str) -> FieldPath:
    segments = path.split(".")
    wildcards = [i for i, seg in enumerate(segments) if seg == "*"]
    if not wildcards:
        return FieldRef(path)
    if len(segments) == 3 and wildcards == [1]:
        return EachRef(parent=segments[0], child=segments[2])
    if len(segments) == 4 and wildcards == [1, 3]:
        return EachNestedRef(parent=segments[0], child=segments[2])
    raise ValueError(f"Unsupported field path: {path!r}")


@dataclass(frozen=True, slots=True)
class FieldRules:
    target: FieldPath
    rules: tuple[RuleSpec, ...]


@dataclass(frozen=True, slots=True)
class RuleSet:
    document_type: DocumentType
    fields: dict[str, FieldRules] = field(default_factory=dict)

    @classmethod
    def load(cls, document_type: DocumentType | str, rules_dir: Path | None = None) -> "RuleSet":
        doc_type = DocumentType(document_type)
        data = _load_yaml((rules_dir or RULES_DIR) / f"{doc_type.value}.yml") or {}
        return cls(document_type=doc_type, fields=parse_rules(data.get("rules") or {}))

    def extended(self, extra: dict[str, Any]) -> "RuleSet":
        fields = dict(self.fields)
        for path, field_rules in parse_rules(extra).items():
            current = fields.get(path)
            if current is not None:
                field_rules = FieldRules(target=current.target, rules=current.rules + field_rules.rules)
            fields[path] = field_rules
        return RuleSet(document_type=self.document_type, fields=fields)

    def merged(self, extra: dict[str, Any] | None) -> dict[str, FieldRules]:
        fields = dict(self.fields)
        fields.update(parse_rules(extra or {}))
        return fields


def parse_rules(raw: dict[str, Any]) -> dict[str, FieldRules]:
    out: dict[str, FieldRules] = {}
    for path, rules in raw.items():
        if isinstance(rules, str):
            rules = rules.split("|")
        out[str(path)] = FieldRules(
            target=parse_field_path(str(path)),
            rules=tuple(r if isinstance(r, RuleSpec) else RuleSpec.parse(r) for r in rules),
        )
    return out


def _load_yaml(path: Path) -> dict | None:
    if not path.exists():
        raise FileNotFoundError(str(path))
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return None
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping at {path}, got {type(data).__name__}.")
    return data
