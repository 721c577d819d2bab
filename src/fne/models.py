from __future__ import annotations

from collections.abc import Mapping
from typing import Annotated, Any

from pydantic import AliasChoices, AliasGenerator, BaseModel, BeforeValidator, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from .errors import DecodeError


def to_display_units(minor: int | float | None) -> float:
    return (minor or 0) / 100


def _text(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return str(value)
    return value


def _optional_text(value: Any) -> Any:
    if value is None:
        return None
    return _text(value)


def _flag(value: Any) -> Any:
    if value is None:
        return False
    if isinstance(value, str):
        return value.strip().lower() in {"1", "true", "yes", "on"}
    return value


def _int(value: Any) -> Any:
    if value is None or value == "":
        return 0
    if isinstance(value, float):
        return int(round(value))
    if isinstance(value, str):
        return int(round(float(value)))
    return value


def _float(value: Any) -> Any:
    if value is None or value == "":
        return 0.0
    return value


def _empty_as_none(value: Any) -> Any:
    if isinstance(value, (list, tuple)) and not value:
        return None
    return value


def _list(value: Any) -> Any:
    if value is None:
        return []
    if isinstance(value, Mapping):
        return list(value.values())
    return value


Text = Annotated[str, BeforeValidator(_text)]
OptionalText = Annotated[str | None, BeforeValidator(_optional_text)]
Flag = Annotated[bool, BeforeValidator(_flag)]
Centimes = Annotated[int, BeforeValidator(_int)]
Number = Annotated[float, BeforeValidator(_float)]


class _ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=AliasGenerator(
            validation_alias=lambda name: AliasChoices(to_camel(name), name),
            serialization_alias=to_camel,
        ),
        extra="allow",
        frozen=True,
    )

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any] | None):
        if raw is None:
            raw = {}
        if not isinstance(raw, Mapping):
            raise DecodeError(f"Expected a JSON object for {cls.__name__}, got {type(raw).__name__}.")
        try:
            return cls.model_validate(dict(raw))
        except PydanticValidationError as exc:
            raise DecodeError(f"Could not decode {cls.__name__}: {exc}") from exc

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class Tax(_ApiModel):
    short_name: Text = ""
    amount: Number = 0.0
    name: OptionalText = None
    invoice_item_id: OptionalText = None
    vat_rate_id: OptionalText = None
    created_at: OptionalText = None
    updated_at: OptionalText = None


class CustomTax(_ApiModel):
    id: OptionalText = None
    name: Text = ""
    amount: Number = 0.0
    invoice_item_id: OptionalText = None
    invoice_id: OptionalText = None
    created_at: OptionalText = None
    updated_at: OptionalText = None


class Item(_ApiModel):
    id: OptionalText = None
    quantity: Number = 0.0
    reference: OptionalText = None
    description: Text = ""
    amount: Centimes = 0
    discount: Number = 0.0
    measurement_unit: OptionalText = None
    taxes: Annotated[list[Tax | str], BeforeValidator(_list)] = Field(default_factory=list)
    custom_taxes: Annotated[list[CustomTax], BeforeValidator(_list)] = Field(default_factory=list)
    invoice_id: OptionalText = None
    parent_id: OptionalText = None
    created_at: OptionalText = None
    updated_at: OptionalText = None

    @property
    def display_amount(self) -> float:
        return to_display_units(self.amount)

    @property
    def tax_codes(self) -> list[str]:
        return [tax if isinstance(tax, str) else tax.short_name for tax in self.taxes]


class Invoice(_ApiModel):
    id: OptionalText = None
    parent_id: OptionalText = None
    parent_reference: OptionalText = None
    token: Text = ""
    reference: Text = ""
    type: OptionalText = None
    subtype: OptionalText = None
    date: OptionalText = None
    payment_method: OptionalText = None
    status: OptionalText = None
    amount: Centimes = 0
    vat_amount: Centimes = 0
    fiscal_stamp: Centimes = 0
    discount: Number = 0.0
    client_ncc: OptionalText = None
    client_company_name: OptionalText = None
    client_phone: OptionalText = None
    client_email: OptionalText = None
    client_terminal: OptionalText = None
    client_merchant_name: OptionalText = None
    client_rccm: OptionalText = None
    client_seller_name: OptionalText = None
    client_establishment: OptionalText = None
    client_point_of_sale: OptionalText = None
    template: OptionalText = None
    description: OptionalText = None
    footer: OptionalText = None
    commercial_message: OptionalText = None
    foreign_currency: OptionalText = None
    foreign_currency_rate: Number = 0.0
    is_rne: Flag = False
    rne: OptionalText = None
    source: OptionalText = None
    created_at: OptionalText = None
    updated_at: OptionalText = None
    items: Annotated[list[Item], BeforeValidator(_list)] = Field(default_factory=list)
    custom_taxes: Annotated[list[CustomTax], BeforeValidator(_list)] = Field(default_factory=list)

    @property
    def display_amount(self) -> float:
        return to_display_units(self.amount)

    @property
    def display_vat_amount(self) -> float:
        return to_display_units(self.vat_amount)

    @property
    def display_fiscal_stamp(self) -> float:
        return to_display_units(self.fiscal_stamp)


class Response(_ApiModel):
    ncc: Text = ""
    reference: Text = ""
    token: Text = ""
    warning: Flag = False
    balance_sticker: Centimes = 0
    invoice: Annotated[Invoice | None, BeforeValidator(_empty_as_none)] = None

    def is_invoice(self) -> bool:
        return self.invoice is not None

    def is_refund(self) -> bool:
        return self.invoice is None

    @property
    def invoice_id(self) -> str | None:
        return self.invoice.id if self.invoice is not None else None
