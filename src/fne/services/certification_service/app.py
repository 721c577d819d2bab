from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ...client import FneClient
from ...errors import FneError, format_error

logger = logging.getLogger(__name__)


class RefundItem(BaseModel):
    id: str = Field(min_length=1)
    quantity: float


class RefundRequest(BaseModel):
    items: list[RefundItem] = Field(min_length=1)


def create_app(client: FneClient | None = None) -> FastAPI:
    app = FastAPI(title="FNE Certification Service", version="0.1.0")
    state: dict[str, FneClient] = {}

    def _client() -> FneClient:
        if "client" not in state:
            state["client"] = client or FneClient.from_settings()
        return state["client"]

    @app.exception_handler(FneError)
    async def _fne_error(request: Request, exc: FneError) -> JSONResponse:
        logger.info("%s %s failed: %s", request.method, request.url.path, exc.code)
        return JSONResponse(status_code=exc.status_code, content=format_error(exc))

    @app.get("/healthz")
    def healthz() -> dict:
        return {"status": "ok"}

    @app.post("/invoices/sign")
    def sign_invoice(payload: dict) -> dict:
        return _client().invoice().sign(payload).to_dict()

    @app.post("/purchases/submit")
    def submit_purchase(payload: dict) -> dict:
        return _client().purchase().submit(payload).to_dict()

    @app.post("/invoices/{invoice_id}/refund")
    def refund_invoice(invoice_id: str, req: RefundRequest) -> dict:
        items = [item.model_dump() for item in req.items]
        return _client().refund().issue(invoice_id, items).to_dict()

    return app


app = create_app()
