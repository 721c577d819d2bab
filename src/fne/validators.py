from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from .enums import DocumentType, InvoiceTemplate, InvoiceType, ParseableEnum, PaymentMethod, TaxType
from .errors import ValidationError
from .paths import MISSING, get_path
from .rules.checks import BUILTIN_RULES, is_empty, is_numeric
from .rules.loader import EachNestedRef, EachRef, FieldRef, FieldRules, RuleSet, RuleSpec

ITEMS_HINT = "Hint: Make sure to load the items relation before certifying, e.g. invoice.load('items')."


@dataclass(slots=True)
class ValidationOutcome:
    errors: dict[str, list[str]] = field(default_factory=dict)
    failed_rules: dict[str, list[str]] = field(default_factory=dict)

    def add(self, path: str, message: str, rule: str) -> None:
        self.errors.setdefault(path, []).append(message)
        self.failed_rules.setdefault(path, []).append(rule)

    def __bool__(self) -> bool:
        return bool(self.errors)


def _items(doc: Mapping[str, Any], key: str) -> list[Any]:
    value = doc.get(key) if isinstance(doc, Mapping) else None
    return value if isinstance(value, list) else []


class BaseValidator:
    document_type: DocumentType
    enum_fields: dict[str, type[ParseableEnum]] = {}

    def __init__(self, ruleset: RuleSet | None = None) -> None:
        base = ruleset or RuleSet.load(self.document_type)
        self.ruleset = base.extended({path: [enum_cls.in_rule()] for path, enum_cls in self.enum_fields.items()})

    def validate(self, doc: Mapping[str, Any], extra_rules: dict[str, Any] | None = None) -> None:
        outcome = ValidationOutcome()
        for path, field_rules in self.ruleset.merged(extra_rules).items():
            self._apply_field(doc, path, field_rules, outcome)
        self.validate_conditional(doc, outcome)
        if outcome:
            raise ValidationError(outcome.errors, failed_rules=outcome.failed_rules, data=dict(doc))

    def _apply_field(self, doc: Mapping[str, Any], path: str, field_rules: FieldRules, outcome: ValidationOutcome) -> None:
        target = field_rules.target
        if isinstance(target, FieldRef):
            value = get_path(doc, target.path)
            self._apply_rules(target.path, None if value is MISSING else value, field_rules.rules, outcome)
        elif isinstance(target, EachRef):
            for index, element in enumerate(_items(doc, target.parent)):
                value = element.get(target.child) if isinstance(element, Mapping) else None
                self._apply_rules(f"{target.parent}.{index}.{target.child}", value, field_rules.rules, outcome)
        elif isinstance(target, EachNestedRef):
            for index, element in enumerate(_items(doc, target.parent)):
                if not isinstance(element, Mapping):
                    continue
                for sub_index, value in enumerate(_items(element, target.child)):
                    key = f"{target.parent}.{index}.{target.child}.{sub_index}"
                    self._apply_rules(key, value, field_rules.rules, outcome)
        else:
            raise TypeError(f"Unsupported field target for {path!r}: {target!r}")

    def _apply_rules(self, path: str, value: Any, rules: tuple[RuleSpec, ...], outcome: ValidationOutcome) -> None:
        for rule in rules:
            message = BUILTIN_RULES[rule.name](path, value, rule.arg)
            if message is not None:
                outcome.add(path, message, str(rule))

    def validate_conditional(self, doc: Mapping[str, Any], outcome: ValidationOutcome) -> None:
        return None


def _check_rne(doc: Mapping[str, Any], outcome: ValidationOutcome) -> None:
    if doc.get("isRne") is True and is_empty(doc.get("rne")):
        outcome.add("rne", "The rne field is required when isRne is true.", "required_if:isRne,true")


def _check_foreign_currency(doc: Mapping[str, Any], outcome: ValidationOutcome) -> None:
    if doc.get("foreignCurrency") and doc.get("foreignCurrencyRate") in (None, "", 0):
        outcome.add(
            "foreignCurrencyRate",
            "The foreign currency rate field is required when foreign currency is provided.",
            "required_with:foreignCurrency",
        )


def _check_custom_taxes(custom_taxes: Any, prefix: str, outcome: ValidationOutcome) -> None:
    if not isinstance(custom_taxes, list):
        return
    for index, tax in enumerate(custom_taxes):
        tax = tax if isinstance(tax, Mapping) else {}
        if is_empty(tax.get("name")):
            outcome.add(f"{prefix}.{index}.name", "The name field is required for custom taxes.", "required")
        if not is_numeric(tax.get("amount")):
            outcome.add(
                f"{prefix}.{index}.amount",
                "The amount field is required and must be numeric for custom taxes.",
                "numeric",
            )


class InvoiceValidator(BaseValidator):
    document_type = DocumentType.INVOICE
    enum_fields = {
        "invoiceType": InvoiceType,
        "paymentMethod": PaymentMethod,
        "template": InvoiceTemplate,
        "items.*.taxes.*": TaxType,
    }

    def validate_conditional(self, doc: Mapping[str, Any], outcome: ValidationOutcome) -> None:
        if doc.get("template") == InvoiceTemplate.B2B.value and is_empty(doc.get("clientNcc")):
            outcome.add("clientNcc", "The client ncc field is required when template is B2B.", "required_if:template,B2B")
        _check_rne(doc, outcome)
        _check_foreign_currency(doc, outcome)

        items = _items(doc, "items")
        if doc.get("invoiceType") == InvoiceType.SALE.value:
            if not items:
                outcome.add("items", "Items are required for sale invoices.", "required_if:invoiceType,sale")
                outcome.errors["items"].append(ITEMS_HINT)
            for index, item in enumerate(items):
                if not isinstance(item, Mapping) or is_empty(item.get("taxes")):
                    outcome.add(f"items.{index}.taxes", "Taxes are required for sale invoice items.", "required_if:invoiceType,sale")

        for index, item in enumerate(items):
            if isinstance(item, Mapping):
                _check_custom_taxes(item.get("customTaxes"), f"items.{index}.customTaxes", outcome)
        _check_custom_taxes(doc.get("customTaxes"), "customTaxes", outcome)


class PurchaseValidator(BaseValidator):
    document_type = DocumentType.PURCHASE
    enum_fields = {"paymentMethod": PaymentMethod, "template": InvoiceTemplate}

    def validate_conditional(self, doc: Mapping[str, Any], outcome: ValidationOutcome) -> None:
        _check_rne(doc, outcome)
        _check_foreign_currency(doc, outcome)
        for index, item in enumerate(_items(doc, "items")):
            if isinstance(item, Mapping) and not is_empty(item.get("taxes")):
                outcome.add(f"items.{index}.taxes", "Taxes are not allowed for purchase invoices.", "prohibited")


class RefundValidator(BaseValidator):
    document_type = DocumentType.REFUND

    def validate_conditional(self, doc: Mapping[str, Any], outcome: ValidationOutcome) -> None:
        for index, item in enumerate(_items(doc, "items")):
            quantity = item.get("quantity") if isinstance(item, Mapping) else None
            if not is_numeric(quantity) or float(quantity) <= 0:
                outcome.add(f"items.{index}.quantity", "The quantity must be greater than 0.", "gt:0")


_VALIDATORS: dict[DocumentType, type[BaseValidator]] = {
    DocumentType.INVOICE: InvoiceValidator,
    DocumentType.PURCHASE: PurchaseValidator,
    DocumentType.REFUND: RefundValidator,
}


def create_validator(document_type: DocumentType | str) -> BaseValidator:
    return _VALIDATORS[DocumentType(document_type)]()
