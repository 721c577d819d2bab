from __future__ import annotations

from enum import Enum


class ParseableEnum(str, Enum):
    @classmethod
    def aliases(cls) -> dict[str, str]:
        return {}

    @classmethod
    def values(cls) -> list[str]:
        return [member.value for member in cls]

    @classmethod
    def in_rule(cls) -> str:
        return "in:" + ",".join(cls.values())

    @classmethod
    def parse(cls, raw: object) -> "ParseableEnum":
        if isinstance(raw, cls):
            return raw
        if isinstance(raw, Enum):
            raw = raw.value
        if not isinstance(raw, str):
            raise ValueError(f"Unsupported {cls.__name__} value: {raw!r}")
        key = raw.strip().lower()
        for member in cls:
            if member.value.lower() == key:
                return member
        alias = cls.aliases().get(key)
        if alias is not None:
            return cls(alias)
        raise ValueError(f"Unsupported {cls.__name__} value: {raw!r}")


class PaymentMethod(ParseableEnum):
    CASH = "cash"
    CARD = "card"
    CHECK = "check"
    MOBILE_MONEY = "mobile-money"
    TRANSFER = "transfer"
    DEFERRED = "deferred"

    @classmethod
    def aliases(cls) -> dict[str, str]:
        return {
            "espece": "cash",
            "especes": "cash",
            "carte": "card",
            "cheque": "check",
            "mobilemoney": "mobile-money",
            "mobile_money": "mobile-money",
            "virement": "transfer",
            "terme": "deferred",
            "a_terme": "deferred",
        }


class InvoiceTemplate(ParseableEnum):
    B2C = "B2C"
    B2B = "B2B"
    B2F = "B2F"
    B2G = "B2G"


class InvoiceType(ParseableEnum):
    SALE = "sale"
    PURCHASE = "purchase"


class TaxType(ParseableEnum):
    TVA = "TVA"
    TVAB = "TVAB"
    TVAC = "TVAC"
    TVAD = "TVAD"


class ForeignCurrency(ParseableEnum):
    XOF = "XOF"
    USD = "USD"
    EUR = "EUR"
    JPY = "JPY"
    CAD = "CAD"
    GBP = "GBP"
    AUD = "AUD"
    CNH = "CNH"
    CHF = "CHF"
    HKD = "HKD"
    NZD = "NZD"


class DocumentType(str, Enum):
    INVOICE = "invoice"
    PURCHASE = "purchase"
    REFUND = "refund"
