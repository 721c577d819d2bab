import io
import json
import logging

import pytest

from fne.cache import MemoryCache
from fne.config import FneSettings
from fne.errors import (
    AuthenticationError,
    BadRequestError,
    ConfigurationError,
    DecodeError,
    MappingError,
    ServerError,
    ValidationError,
)
from fne.models import Response
from fne.pipeline import InvoiceService, PurchaseService, RefundService
from fne.transport import RetryPolicy, TransportError, TransportResponse

INVOICE_ID = "e2b2d8da-a532-4c08-9182-f5b428ca468d"
ITEM_ID = "bf9cc241-9b5f-4d26-a570-aa8e682a759e"


def _sign_payload() -> dict:
    return {
        "ncc": "9606123E",
        "reference": "9606123E25000000019",
        "token": "https://verification.fne.ci/qr/abc",
        "warning": False,
        "balance_sticker": 179,
        "invoice": {
            "id": INVOICE_ID,
            "reference": "9606123E25000000019",
            "amount": 118000,
            "vatAmount": 18000,
            "items": [{"id": ITEM_ID, "quantity": 1, "amount": 118000, "taxes": [{"shortName": "TVA"}]}],
        },
    }


class FakeTransport:
    def __init__(self, *responses: object) -> None:
        self.responses = list(responses) or [_ok(_sign_payload())]
        self.calls: list[dict] = []

    def send(self, method: str, url: str, headers: dict, body: bytes | None, timeout: float) -> object:
        self.calls.append(
            {"method": method, "url": url, "headers": dict(headers), "body": json.loads(body or b"null"), "timeout": timeout}
        )
        response = self.responses[0] if len(self.responses) == 1 else self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


class FakeRecorder:
    def __init__(self, fail: bool = False) -> None:
        self.saved: list[tuple[Response, dict]] = []
        self.fail = fail

    def save(self, response: Response, canonical: dict) -> bool:
        if self.fail:
            raise RuntimeError("database is down")
        self.saved.append((response, canonical))
        return True


class Invoice:
    def __init__(self, lines: tuple) -> None:
        self.lines = lines

    def to_canonical_map(self) -> dict:
        return {
            "invoice_type": "sale",
            "payment_method": "card",
            "template": "B2C",
            "is_rne": False,
            "client_company_name": "Acme SARL",
            "client_phone": "0707070707",
            "client_email": "billing@acme.ci",
            "point_of_sale": "01",
            "establishment": "Plateau",
            "items": self.lines,
        }


class Line:
    def __init__(self, description: str) -> None:
        self.description = description

    def to_canonical_map(self) -> dict:
        return {"description": self.description, "quantity": 1, "amount": 500, "taxes": ("TVA",)}


def _ok(payload: dict) -> TransportResponse:
    return TransportResponse(status_code=200, body=json.dumps(payload).encode("utf-8"))


def _settings(**overrides) -> FneSettings:
    values = {"api_key": "secret", "base_url": "https://fne.example.test"}
    values.update(overrides)
    return FneSettings(**values)


def _no_sleep() -> RetryPolicy:
    return RetryPolicy(sleep=lambda _: None)


def _invoice_data(**overrides) -> dict:
    data = {
        "invoiceType": "sale",
        "paymentMethod": "cash",
        "template": "B2C",
        "isRne": False,
        "clientCompanyName": "Acme SARL",
        "clientPhone": "0707070707",
        "clientEmail": "billing@acme.ci",
        "pointOfSale": "01",
        "establishment": "Plateau",
        "items": [{"description": "Widget", "quantity": 1, "amount": 118000, "taxes": ["TVA"]}],
    }
    data.update(overrides)
    return data


def test_sign_posts_canonical_json_with_bearer_auth() -> None:
    transport = FakeTransport()
    service = InvoiceService(transport, _settings(timeout=12), retry=_no_sleep())

    response = service.sign(_invoice_data())

    assert response.reference == "9606123E25000000019"
    assert response.invoice is not None and response.invoice.items[0].id == ITEM_ID
    call = transport.calls[0]
    assert call["method"] == "POST"
    assert call["url"] == "https://fne.example.test/external/invoices/sign"
    assert call["headers"]["Authorization"] == "Bearer secret"
    assert call["headers"]["Content-Type"] == "application/json"
    assert call["headers"]["Accept"] == "application/json"
    assert call["timeout"] == 12
    assert call["body"]["paymentMethod"] == "cash"
    assert call["body"]["items"][0]["taxes"] == ["TVA"]


def test_per_call_timeout_override() -> None:
    transport = FakeTransport()

    InvoiceService(transport, _settings(), retry=_no_sleep()).sign(_invoice_data(), timeout=3)

    assert transport.calls[0]["timeout"] == 3


def test_identical_payloads_hit_the_cache(caplog: pytest.LogCaptureFixture) -> None:
    transport = FakeTransport()
    service = InvoiceService(transport, _settings(), cache=MemoryCache(), retry=_no_sleep())

    with caplog.at_level(logging.DEBUG, logger="fne.pipeline"):
        first = service.sign(_invoice_data())
        second = service.sign(_invoice_data())

    assert len(transport.calls) == 1
    assert first == second
    assert any("Cache hit" in record.message for record in caplog.records)


def test_cache_disabled_in_settings_sends_every_time() -> None:
    transport = FakeTransport()
    settings = _settings(cache={"enabled": False})
    service = InvoiceService(transport, settings, cache=MemoryCache(), retry=_no_sleep())

    service.sign(_invoice_data())
    service.sign(_invoice_data())

    assert len(transport.calls) == 2


def test_refund_is_never_cached() -> None:
    transport = FakeTransport(_ok({"ncc": "9606123E", "reference": "A9606123E25000000001", "token": "t", "balanceSticker": 178}))
    cache = MemoryCache()
    service = RefundService(transport, _settings(), cache=cache, retry=_no_sleep())
    items = [{"id": ITEM_ID, "quantity": 1}]

    first = service.issue(INVOICE_ID, items)
    service.issue(INVOICE_ID, items)

    assert len(transport.calls) == 2
    assert len(cache) == 0
    assert first.is_refund()
    call = transport.calls[0]
    assert call["url"] == f"https://fne.example.test/external/invoices/{INVOICE_ID}/refund"
    assert call["body"] == {"items": [{"id": ITEM_ID, "quantity": 1.0}]}


def test_refund_requires_invoice_id() -> None:
    service = RefundService(FakeTransport(), _settings(), retry=_no_sleep())

    with pytest.raises(BadRequestError):
        service.execute({"items": [{"id": ITEM_ID, "quantity": 1}]})


def test_refund_mapping_error_is_not_sent() -> None:
    transport = FakeTransport()
    service = RefundService(transport, _settings(), retry=_no_sleep())

    with pytest.raises(MappingError) as info:
        service.issue(INVOICE_ID, [{"id": "not-a-uuid", "quantity": 1}])

    assert info.value.kind == "invalid_uuid"
    assert transport.calls == []


def test_validation_errors_propagate_without_sending() -> None:
    transport = FakeTransport()
    service = InvoiceService(transport, _settings(), retry=_no_sleep())

    with pytest.raises(ValidationError) as info:
        service.sign(_invoice_data(template="B2B"))

    assert "clientNcc" in info.value.errors
    assert transport.calls == []


def test_purchase_rejects_source_items_with_taxes_before_mapping() -> None:
    transport = FakeTransport()
    service = PurchaseService(transport, _settings(), retry=_no_sleep())

    with pytest.raises(ValidationError) as info:
        service.submit(_invoice_data(invoiceType="purchase"))

    assert info.value.errors == {"items.0.taxes": ["Taxes are not allowed for purchase invoices."]}
    assert transport.calls == []


def test_purchase_submit_sends_without_taxes() -> None:
    transport = FakeTransport()
    service = PurchaseService(transport, _settings(), cache=MemoryCache(), retry=_no_sleep())
    data = _invoice_data(items=[{"description": "Maize", "quantity": "10", "amount": "250"}])

    service.submit(data)
    service.submit(data)

    assert len(transport.calls) == 1
    body = transport.calls[0]["body"]
    assert body["invoiceType"] == "purchase"
    assert body["items"] == [{"description": "Maize", "quantity": 10.0, "amount": 250.0}]


def test_unexpected_mapper_failure_is_wrapped() -> None:
    class BrokenMapper:
        def map(self, source: dict) -> dict:
            raise KeyError("items")

    service = InvoiceService(FakeTransport(), _settings(), mapper=BrokenMapper(), retry=_no_sleep())

    with pytest.raises(MappingError) as info:
        service.sign(_invoice_data())

    assert str(info.value).startswith("Mapping failed:")
    assert info.value.meta["original_error"] == "'items'"


def test_missing_data_raises_bad_request() -> None:
    service = InvoiceService(FakeTransport(), _settings(), retry=_no_sleep())

    with pytest.raises(BadRequestError) as info:
        service.execute()

    assert not isinstance(info.value, ValidationError)


def test_set_data_and_set_model_resolution_order() -> None:
    transport = FakeTransport()
    service = InvoiceService(transport, _settings(), retry=_no_sleep())

    service.set_model(Invoice((Line("from model"),)))
    service.execute()
    service.set_data(_invoice_data(items=[{"description": "from data", "quantity": 1, "amount": 1, "taxes": ["TVA"]}]))
    service.execute()
    service.execute(_invoice_data(items=[{"description": "explicit", "quantity": 1, "amount": 1, "taxes": ["TVA"]}]))

    descriptions = [call["body"]["items"][0]["description"] for call in transport.calls]
    assert descriptions == ["from model", "from data", "explicit"]
    assert transport.calls[0]["body"]["paymentMethod"] == "card"
    assert transport.calls[0]["body"]["items"][0]["taxes"] == ["TVA"]


def test_set_model_requires_serializable() -> None:
    service = InvoiceService(FakeTransport(), _settings(), retry=_no_sleep())

    with pytest.raises(TypeError):
        service.set_model(object())


def test_server_errors_are_retried_then_succeed() -> None:
    delays: list[float] = []
    transport = FakeTransport(
        TransportResponse(status_code=503, body=b""),
        TransportError("connection reset"),
        _ok(_sign_payload()),
    )
    service = InvoiceService(transport, _settings(), retry=RetryPolicy(sleep=delays.append))

    response = service.sign(_invoice_data())

    assert response.balance_sticker == 179
    assert len(transport.calls) == 3
    assert delays == [1.0, 2.0]


def test_server_errors_exhaust_attempts() -> None:
    transport = FakeTransport(TransportResponse(status_code=500, body=b'{"message": "Internal"}'))
    service = InvoiceService(transport, _settings(), retry=_no_sleep())

    with pytest.raises(ServerError) as info:
        service.sign(_invoice_data())

    assert info.value.message == "Internal"
    assert len(transport.calls) == 3


def test_client_errors_are_not_retried() -> None:
    transport = FakeTransport(TransportResponse(status_code=401, body=b'{"message": "Invalid API key"}'))
    service = InvoiceService(transport, _settings(), retry=_no_sleep())

    with pytest.raises(AuthenticationError):
        service.sign(_invoice_data())

    assert len(transport.calls) == 1


def test_retry_disabled_in_settings() -> None:
    transport = FakeTransport(TransportResponse(status_code=502, body=b""))
    service = InvoiceService(transport, _settings(retry={"enabled": False}))

    with pytest.raises(ServerError):
        service.sign(_invoice_data())

    assert len(transport.calls) == 1


def test_missing_api_key_fails_before_sending() -> None:
    transport = FakeTransport()
    service = InvoiceService(transport, _settings(api_key=""), retry=_no_sleep())

    with pytest.raises(ConfigurationError):
        service.sign(_invoice_data())

    assert transport.calls == []


def test_process_response_accepts_streams_and_plain_dicts() -> None:
    service = InvoiceService(FakeTransport(), _settings())

    assert service.process_response({"reference": "R"}) == {"reference": "R"}
    assert service.process_response(io.BytesIO(b'{"reference": "S"}')) == {"reference": "S"}
    assert service.process_response(_ok({"reference": "T"})) == {"reference": "T"}

    with pytest.raises(DecodeError):
        service.process_response(io.BytesIO(b"not json"))
    with pytest.raises(DecodeError):
        service.process_response(_ok([1, 2]))  # type: ignore[arg-type]


def test_plain_dict_transport_is_supported() -> None:
    transport = FakeTransport(_sign_payload())

    response = InvoiceService(transport, _settings(), retry=_no_sleep()).sign(_invoice_data())

    assert response.ncc == "9606123E"


def test_recorder_is_called_when_enabled() -> None:
    recorder = FakeRecorder()
    service = InvoiceService(FakeTransport(), _settings(certification_table=True), recorder=recorder, retry=_no_sleep())

    response = service.sign(_invoice_data())

    assert len(recorder.saved) == 1
    saved_response, canonical = recorder.saved[0]
    assert saved_response == response
    assert canonical["clientCompanyName"] == "Acme SARL"


def test_recorder_respects_explicit_flag_and_swallows_failures() -> None:
    recorder = FakeRecorder()
    service = InvoiceService(FakeTransport(), _settings(), recorder=recorder, retry=_no_sleep())

    service.sign(_invoice_data())
    assert recorder.saved == []

    service.sign(_invoice_data(), record=True)
    assert len(recorder.saved) == 1

    failing = InvoiceService(FakeTransport(), _settings(), recorder=FakeRecorder(fail=True), retry=_no_sleep())
    assert failing.sign(_invoice_data(), record=True).reference == "9606123E25000000019"
