from __future__ import annotations

import copy
import re
from abc import ABC, abstractmethod
from collections.abc import Mapping
from enum import Enum
from typing import Any

from .enums import DocumentType, ForeignCurrency, InvoiceTemplate, InvoiceType, PaymentMethod
from .errors import MappingError
from .paths import MISSING, get_path, set_path

UUID_RE = re.compile(r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$", re.IGNORECASE)

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off", ""}
_INT_RE = re.compile(r"^[+-]?(0|[1-9]\d*)$")
_FLOAT_RE = re.compile(r"^[+-]?(\d+\.\d*|\.\d+|\d+(\.\d*)?[eE][+-]?\d+)$")


def camelize(key: str) -> str:
    head, *rest = key.split("_")
    return head[:1].lower() + head[1:] + "".join(part[:1].upper() + part[1:] for part in rest)


def normalize_keys(value: Any) -> Any:
    if isinstance(value, Mapping):
        out: dict[Any, Any] = {}
        for key, child in value.items():
            name = camelize(key) if isinstance(key, str) and "_" in key else key
            out[name] = normalize_keys(child)
        return out
    if isinstance(value, (list, tuple)):
        return [normalize_keys(child) for child in value]
    return value


def _normalize_scalar(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if not isinstance(value, str):
        return value

    text = value.strip()
    lowered = text.lower()
    if lowered in _TRUE_STRINGS:
        return True
    if lowered in _FALSE_STRINGS:
        return False
    if _INT_RE.match(text):
        return int(text)
    if _FLOAT_RE.match(text):
        return float(text)
    return value


def normalize_values(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {key: normalize_values(child) for key, child in value.items()}
    if isinstance(value, list):
        return [normalize_values(child) for child in value]
    return _normalize_scalar(value)


def _text(value: Any, *, field: str) -> str:
    if value is None or value is False:
        return ""
    if value is True:
        return "1"
    if isinstance(value, Enum):
        return str(value.value)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (Mapping, list, tuple, set)):
        raise MappingError(
            f"The {field} field must be a scalar value.",
            kind="invalid_scalar",
            offending_value=value,
        )
    return str(value)


def _number(value: Any, *, field: str) -> float:
    if isinstance(value, Enum):
        value = value.value
    if isinstance(value, bool):
        return float(value)
    if isinstance(value, (int, float)):
        return float(value)
    if isinstance(value, str):
        try:
            return float(value.strip())
        except ValueError:
            pass
    raise MappingError(
        f"The {field} field must be numeric.",
        kind="invalid_number",
        offending_value=value,
    )


def _clamp_discount(value: Any, *, field: str) -> float:
    return max(0.0, min(100.0, _number(value, field=field)))


def _enum_value(enum_cls: type, value: Any, *, field: str) -> str:
    if value is None or value == "" or value is False:
        return ""
    if isinstance(value, (Mapping, list, tuple, set)):
        raise MappingError(
            f"The {field} field must be a scalar value.",
            kind="invalid_scalar",
            offending_value=value,
        )
    try:
        return enum_cls.parse(value).value
    except ValueError as exc:
        raise MappingError(
            f"The {field} field has an unsupported value: {value!r}. Allowed: {', '.join(enum_cls.values())}.",
            kind="invalid_enum",
            offending_value=value,
        ) from exc


class BaseMapper(ABC):
    document_type: DocumentType

    def __init__(self, mapping: Mapping[str, str] | None = None) -> None:
        self.mapping: dict[str, str] = dict(mapping or {})

    def map(self, source: Mapping[str, Any]) -> dict[str, Any]:
        if not isinstance(source, Mapping):
            raise MappingError(
                f"Expected a mapping of source fields, got {type(source).__name__}.",
                kind="invalid_source",
                offending_value=source,
            )
        data = normalize_keys(source)
        if self.mapping:
            data = self.apply_custom_mapping(data)
        data = normalize_values(data)
        return self.do_map(data)

    def apply_custom_mapping(self, data: dict[str, Any]) -> dict[str, Any]:
        resolved: list[tuple[str, Any]] = []
        for target, source_path in self.mapping.items():
            path = ".".join(camelize(seg) if "_" in seg else seg for seg in str(source_path).split("."))
            value = get_path(data, path)
            if value is not MISSING:
                resolved.append((target, copy.deepcopy(value)))

        merged = copy.deepcopy(data)
        for target, value in resolved:
            set_path(merged, target, value)
        return merged

    @abstractmethod
    def do_map(self, data: dict[str, Any]) -> dict[str, Any]:
        raise NotImplementedError


class InvoiceMapper(BaseMapper):
    document_type = DocumentType.INVOICE
    allow_taxes = True
    allow_client_ncc = True

    def invoice_type(self, data: dict[str, Any]) -> str:
        raw = data.get("invoiceType")
        return _enum_value(InvoiceType, raw, field="invoiceType") or InvoiceType.SALE.value

    def do_map(self, data: dict[str, Any]) -> dict[str, Any]:
        template = _enum_value(InvoiceTemplate, data.get("template"), field="template")
        is_rne = data.get("isRne", False)

        mapped: dict[str, Any] = {
            "invoiceType": self.invoice_type(data),
            "paymentMethod": _enum_value(PaymentMethod, data.get("paymentMethod"), field="paymentMethod"),
            "template": template,
            "isRne": is_rne if is_rne is not None else False,
            "clientCompanyName": _text(data.get("clientCompanyName"), field="clientCompanyName"),
            "clientPhone": _text(data.get("clientPhone"), field="clientPhone"),
            "clientEmail": _text(data.get("clientEmail"), field="clientEmail"),
            "pointOfSale": _text(data.get("pointOfSale"), field="pointOfSale"),
            "establishment": _text(data.get("establishment"), field="establishment"),
        }

        if self.allow_client_ncc and template == InvoiceTemplate.B2B.value and data.get("clientNcc") is not None:
            mapped["clientNcc"] = _text(data["clientNcc"], field="clientNcc")
        if mapped["isRne"] is True and data.get("rne") is not None:
            mapped["rne"] = _text(data["rne"], field="rne")

        for optional in ("clientSellerName", "commercialMessage", "footer"):
            if data.get(optional) is not None:
                mapped[optional] = _text(data[optional], field=optional)

        currency = _enum_value(ForeignCurrency, data.get("foreignCurrency"), field="foreignCurrency")
        if currency:
            mapped["foreignCurrency"] = currency
            rate = data.get("foreignCurrencyRate")
            mapped["foreignCurrencyRate"] = 0 if rate in (None, "", False) else _number(rate, field="foreignCurrencyRate")
        else:
            mapped["foreignCurrency"] = ""
            mapped["foreignCurrencyRate"] = 0

        mapped["items"] = self.map_items(data.get("items") or [])

        if data.get("discount") is not None:
            mapped["discount"] = _clamp_discount(data["discount"], field="discount")
        if self.allow_taxes and isinstance(data.get("customTaxes"), list):
            mapped["customTaxes"] = self.map_custom_taxes(data["customTaxes"], prefix="customTaxes")

        return mapped

    def map_items(self, items: Any) -> list[dict[str, Any]]:
        if isinstance(items, Mapping):
            items = list(items.values())
        if not isinstance(items, list):
            raise MappingError("The items field must be a list.", kind="invalid_item", offending_value=items)
        return [self.map_item(item, index) for index, item in enumerate(items)]

    def map_item(self, item: Any, index: int) -> dict[str, Any]:
        if not isinstance(item, Mapping):
            raise MappingError(
                f"Item {index} must be a mapping of fields.",
                kind="invalid_item",
                offending_value=item,
            )
        prefix = f"items.{index}"
        quantity = item.get("quantity")
        amount = item.get("amount")
        mapped: dict[str, Any] = {
            "description": _text(item.get("description"), field=f"{prefix}.description"),
            "quantity": 1.0 if quantity is None else _number(quantity, field=f"{prefix}.quantity"),
            "amount": 0.0 if amount is None else _number(amount, field=f"{prefix}.amount"),
        }

        if self.allow_taxes:
            taxes = item.get("taxes")
            if isinstance(taxes, list):
                mapped["taxes"] = [_text(tax, field=f"{prefix}.taxes").upper() for tax in taxes]
            elif isinstance(taxes, str) and taxes:
                mapped["taxes"] = [taxes.upper()]
            if isinstance(item.get("customTaxes"), list):
                mapped["customTaxes"] = self.map_custom_taxes(item["customTaxes"], prefix=f"{prefix}.customTaxes")

        if item.get("reference") is not None:
            mapped["reference"] = _text(item["reference"], field=f"{prefix}.reference")
        if item.get("discount") is not None:
            mapped["discount"] = _clamp_discount(item["discount"], field=f"{prefix}.discount")
        if item.get("measurementUnit") is not None:
            mapped["measurementUnit"] = _text(item["measurementUnit"], field=f"{prefix}.measurementUnit")
        return mapped

    def map_custom_taxes(self, custom_taxes: list[Any], *, prefix: str) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        for index, tax in enumerate(custom_taxes):
            if not isinstance(tax, Mapping):
                raise MappingError(
                    f"{prefix}.{index} must be a mapping with name and amount.",
                    kind="invalid_item",
                    offending_value=tax,
                )
            amount = tax.get("amount")
            out.append(
                {
                    "name": _text(tax.get("name"), field=f"{prefix}.{index}.name"),
                    "amount": 0.0 if amount is None else _number(amount, field=f"{prefix}.{index}.amount"),
                }
            )
        return out


class PurchaseMapper(InvoiceMapper):
    document_type = DocumentType.PURCHASE
    allow_taxes = False
    allow_client_ncc = False

    def invoice_type(self, data: dict[str, Any]) -> str:
        return InvoiceType.PURCHASE.value


class RefundMapper(BaseMapper):
    document_type = DocumentType.REFUND

    def do_map(self, data: dict[str, Any]) -> dict[str, Any]:
        items = data.get("items") or []
        if isinstance(items, Mapping):
            items = list(items.values())
        if not isinstance(items, list):
            raise MappingError("The items field must be a list.", kind="invalid_item", offending_value=items)
        return {"items": [self.map_item(item, index) for index, item in enumerate(items)]}

    def map_item(self, item: Any, index: int) -> dict[str, Any]:
        if not isinstance(item, Mapping):
            raise MappingError(
                f"Item {index} must be a mapping of fields.",
                kind="invalid_item",
                offending_value=item,
            )
        item_id = _text(item.get("id"), field=f"items.{index}.id").strip()
        if not UUID_RE.match(item_id):
            raise MappingError(
                f"Invalid UUID for refund item: {item_id}",
                kind="invalid_uuid",
                offending_value=item.get("id"),
            )
        quantity = item.get("quantity")
        return {
            "id": item_id,
            "quantity": 0.0 if quantity is None else _number(quantity, field=f"items.{index}.quantity"),
        }


_MAPPERS: dict[DocumentType, type[BaseMapper]] = {
    DocumentType.INVOICE: InvoiceMapper,
    DocumentType.PURCHASE: PurchaseMapper,
    DocumentType.REFUND: RefundMapper,
}


def create_mapper(document_type: DocumentType | str, mapping: Mapping[str, str] | None = None) -> BaseMapper:
    return _MAPPERS[DocumentType(document_type)](mapping)
