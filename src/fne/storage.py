from __future__ import annotations

import logging
from collections.abc import Mapping
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import BigInteger, Boolean, DateTime, Numeric, String, create_engine, select
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from .models import Response

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Certification(Base):
    __tablename__ = "fne_certifications"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    fne_invoice_id: Mapped[str | None] = mapped_column(String(36), unique=True)
    reference: Mapped[str] = mapped_column(String(64), unique=True, index=True)
    ncc: Mapped[str | None] = mapped_column(String(32))
    token: Mapped[str | None] = mapped_column(String(512))
    type: Mapped[str] = mapped_column(String(16), default="invoice")
    subtype: Mapped[str] = mapped_column(String(16), default="normal")
    status: Mapped[str] = mapped_column(String(16), default="paid")
    template: Mapped[str | None] = mapped_column(String(8))
    client_company_name: Mapped[str | None] = mapped_column(String(255))
    client_ncc: Mapped[str | None] = mapped_column(String(32))
    client_phone: Mapped[str | None] = mapped_column(String(32))
    client_email: Mapped[str | None] = mapped_column(String(255))
    amount: Mapped[int] = mapped_column(BigInteger, default=0)
    vat_amount: Mapped[int] = mapped_column(BigInteger, default=0)
    fiscal_stamp: Mapped[int] = mapped_column(BigInteger, default=0)
    discount: Mapped[Decimal] = mapped_column(Numeric(5, 2), default=Decimal("0"))
    is_rne: Mapped[bool] = mapped_column(Boolean, default=False)
    rne: Mapped[str | None] = mapped_column(String(64))
    source: Mapped[str] = mapped_column(String(16), default="api")
    warning: Mapped[bool] = mapped_column(Boolean, default=False)
    balance_sticker: Mapped[int] = mapped_column(BigInteger, default=0)
    fne_date: Mapped[str | None] = mapped_column(String(32))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)


def certification_values(response: Response, canonical: Mapping[str, Any]) -> dict[str, Any]:
    invoice = response.invoice
    if invoice is None:
        raise ValueError("Refund responses are not recorded.")
    return {
        "fne_invoice_id": invoice.id,
        "reference": response.reference or invoice.reference,
        "ncc": response.ncc or None,
        "token": response.token or invoice.token or None,
        "type": invoice.type or "invoice",
        "subtype": invoice.subtype or "normal",
        "status": invoice.status or "paid",
        "template": invoice.template or canonical.get("template"),
        "client_company_name": invoice.client_company_name or canonical.get("clientCompanyName"),
        "client_ncc": invoice.client_ncc or canonical.get("clientNcc"),
        "client_phone": invoice.client_phone or canonical.get("clientPhone"),
        "client_email": invoice.client_email or canonical.get("clientEmail"),
        "amount": invoice.amount,
        "vat_amount": invoice.vat_amount,
        "fiscal_stamp": invoice.fiscal_stamp,
        "discount": Decimal(str(invoice.discount or canonical.get("discount") or 0)),
        "is_rne": bool(invoice.is_rne or canonical.get("isRne") is True),
        "rne": invoice.rne or canonical.get("rne"),
        "source": invoice.source or "api",
        "warning": response.warning,
        "balance_sticker": response.balance_sticker,
        "fne_date": invoice.date,
    }


class CertificationRecorder:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self._sessions = sessionmaker(bind=engine, expire_on_commit=False)

    @classmethod
    def from_url(cls, database_url: str, *, create_tables: bool = True) -> "CertificationRecorder":
        recorder = cls(create_engine(database_url))
        if create_tables:
            recorder.create_tables()
        return recorder

    def create_tables(self) -> None:
        Base.metadata.create_all(self.engine)

    def save(self, response: Response, canonical: Mapping[str, Any]) -> bool:
        if response.invoice is None:
            logger.debug("Skipping certification record for refund %s", response.reference)
            return False
        try:
            values = certification_values(response, canonical)
            with self._sessions.begin() as session:
                self._upsert(session, values)
        except (SQLAlchemyError, ValueError, TypeError, ArithmeticError) as exc:
            logger.warning("Could not record certification %s: %s", response.reference, exc)
            return False
        logger.info("Recorded certification %s", values["reference"])
        return True

    def _upsert(self, session: Session, values: dict[str, Any]) -> None:
        existing = session.scalars(
            select(Certification).where(Certification.reference == values["reference"])
        ).one_or_none()
        if existing is None:
            session.add(Certification(**values))
            return
        for key, value in values.items():
            setattr(existing, key, value)

    def find(self, reference: str) -> Certification | None:
        with self._sessions() as session:
            return session.scalars(
                select(Certification).where(Certification.reference == reference)
            ).one_or_none()
