from __future__ import annotations

import logging
from dataclasses import dataclass, field

from .cache import Cache, MemoryCache
from .config import FneSettings, get_settings
from .pipeline import InvoiceService, PurchaseService, RefundService
from .storage import CertificationRecorder
from .transport import Transport, UrllibTransport


@dataclass(slots=True)
class FneClient:
    settings: FneSettings
    transport: Transport = field(default_factory=UrllibTransport)
    cache: Cache | None = None
    recorder: CertificationRecorder | None = None
    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("fne"))

    @classmethod
    def from_settings(cls, settings: FneSettings | None = None, *, transport: Transport | None = None) -> "FneClient":
        settings = settings or get_settings()
        recorder = CertificationRecorder.from_url(settings.database_url) if settings.certification_table else None
        return cls(
            settings=settings,
            transport=transport or UrllibTransport(),
            cache=MemoryCache() if settings.cache.enabled else None,
            recorder=recorder,
        )

    def invoice(self) -> InvoiceService:
        return InvoiceService(
            self.transport,
            self.settings,
            cache=self.cache,
            logger=self.logger,
            recorder=self.recorder,
        )

    def purchase(self) -> PurchaseService:
        return PurchaseService(self.transport, self.settings, cache=self.cache, logger=self.logger)

    def refund(self) -> RefundService:
        return RefundService(self.transport, self.settings, logger=self.logger)
