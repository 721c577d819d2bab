from __future__ import annotations

import hashlib
import json
import logging
import urllib.parse
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from .cache import Cache
from .config import FneSettings
from .enums import DocumentType
from .errors import BadRequestError, DecodeError, FneError, MappingError, ServerError, ValidationError
from .mappers import BaseMapper, create_mapper
from .models import Response
from .transport import RetryPolicy, Transport, TransportError, TransportResponse, raise_for_status
from .validators import BaseValidator, create_validator

SIGN_PATH = "/external/invoices/sign"
REFUND_PATH = "/external/invoices/{invoice_id}/refund"


@runtime_checkable
class Serializable(Protocol):
    def to_canonical_map(self) -> Mapping[str, Any]: ...


def to_plain(value: Any) -> Any:
    if isinstance(value, Serializable):
        return to_plain(value.to_canonical_map())
    if isinstance(value, Mapping):
        return {key: to_plain(child) for key, child in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [to_plain(child) for child in value]
    return value


def cache_digest(payload: Mapping[str, Any]) -> str:
    raw = json.dumps(payload, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.md5(raw.encode("utf-8")).hexdigest()


class BaseService:
    document_type: DocumentType
    cacheable = True
    cache_fields: tuple[str, ...] = ("invoiceType", "template", "items")

    def __init__(
        self,
        transport: Transport,
        settings: FneSettings,
        *,
        mapper: BaseMapper | None = None,
        validator: BaseValidator | None = None,
        cache: Cache | None = None,
        logger: logging.Logger | None = None,
        retry: RetryPolicy | None = None,
    ) -> None:
        self.transport = transport
        self.settings = settings
        self.mapper = mapper or create_mapper(self.document_type, settings.mapping.for_type(self.document_type.value))
        self.validator = validator or create_validator(self.document_type)
        self.cache = cache
        self.logger = logger or logging.getLogger(__name__)
        self.retry = retry or _retry_from_settings(settings)
        self._data: dict[str, Any] | None = None
        self._model: Serializable | None = None
        self.last_payload: dict[str, Any] | None = None

    def set_data(self, data: Mapping[str, Any]) -> "BaseService":
        self._data = to_plain(data)
        return self

    def set_model(self, model: Serializable) -> "BaseService":
        if not isinstance(model, Serializable):
            raise TypeError(f"{type(model).__name__} must implement to_canonical_map() to be certified.")
        self._model = model
        return self

    def resolve_data(self, data: Mapping[str, Any] | None = None) -> dict[str, Any]:
        if data:
            return to_plain(data)
        if self._data:
            return self._data
        if self._model is not None:
            resolved = to_plain(self._model)
            if resolved:
                return resolved
        raise BadRequestError(
            f"No data to send for {self.document_type.value}. "
            "Pass the data to execute(), call set_data() or call set_model() first."
        )

    def validate_source(self, data: dict[str, Any]) -> None:
        return None

    def get_validation_rules(self) -> dict[str, Any]:
        return {}

    def get_cache_key(self, payload: Mapping[str, Any]) -> str:
        subset = {key: payload.get(key) for key in self.cache_fields}
        return f"fne:{self.document_type.value}:{cache_digest(subset)}"

    @property
    def cache_enabled(self) -> bool:
        return self.cacheable and self.cache is not None and self.settings.cache.enabled

    def execute(self, data: Mapping[str, Any] | None = None, *, timeout: float | None = None) -> Response:
        source = self.resolve_data(data)
        self.validate_source(source)

        try:
            payload = self.mapper.map(source)
        except FneError:
            raise
        except Exception as exc:
            raise MappingError(f"Mapping failed: {exc}", meta={"original_error": str(exc)}) from exc

        self.validator.validate(payload, self.get_validation_rules())
        self.last_payload = payload

        cache_key = self.get_cache_key(payload) if self.cache_enabled else ""
        if cache_key and self.cache.has(cache_key):
            self.logger.debug("Cache hit for %s (%s)", self.document_type.value, cache_key)
            return Response.from_dict(self.cache.get(cache_key))

        effective_timeout = timeout if timeout is not None else self.settings.timeout
        result = self.retry.run(lambda: self.process_response(self.make_request(payload, source, effective_timeout)))

        if cache_key and result:
            self.cache.set(cache_key, result, self.settings.cache.ttl)
            self.logger.debug("Cached response for %s (%s)", self.document_type.value, cache_key)

        return Response.from_dict(result)

    def headers(self) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Authorization": f"Bearer {self.settings.require_api_key()}",
        }

    def endpoint(self, source: Mapping[str, Any]) -> str:
        return f"{self.settings.base_url}{SIGN_PATH}"

    def request_body(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return payload

    def make_request(self, payload: Mapping[str, Any], source: Mapping[str, Any], timeout: float) -> Any:
        url = self.endpoint(source)
        body = json.dumps(self.request_body(payload), ensure_ascii=False).encode("utf-8")
        self.logger.info("POST %s (%s)", url, self.document_type.value)
        try:
            return self.transport.send("POST", url, self.headers(), body, timeout)
        except (TransportError, OSError) as exc:
            raise ServerError(f"Network error while calling {url}: {exc}", meta={"url": url}) from exc

    def process_response(self, raw: Any) -> dict[str, Any]:
        if isinstance(raw, TransportResponse):
            raise_for_status(raw)
            result = raw.json()
        elif hasattr(raw, "read"):
            body = raw.read()
            if isinstance(body, bytes):
                body = body.decode("utf-8", errors="replace")
            try:
                result = json.loads(body) if body.strip() else {}
            except json.JSONDecodeError as exc:
                raise DecodeError(f"Invalid JSON response: {exc.msg}") from exc
        elif isinstance(raw, Mapping):
            result = dict(raw)
        else:
            raise DecodeError(f"Unsupported response type: {type(raw).__name__}")

        if not isinstance(result, dict):
            raise DecodeError(f"Expected a JSON object in the response, got {type(result).__name__}.")
        return result


def _retry_from_settings(settings: FneSettings) -> RetryPolicy:
    if not settings.retry.enabled:
        return RetryPolicy(max_attempts=1)
    return RetryPolicy(
        max_attempts=settings.retry.max_attempts,
        initial_delay_ms=settings.retry.initial_delay_ms,
        multiplier=settings.retry.multiplier,
    )


class InvoiceService(BaseService):
    document_type = DocumentType.INVOICE

    def __init__(self, transport: Transport, settings: FneSettings, *, recorder: Any = None, **kwargs: Any) -> None:
        super().__init__(transport, settings, **kwargs)
        self.recorder = recorder

    def sign(self, data: Mapping[str, Any] | None = None, *, record: bool | None = None, timeout: float | None = None) -> Response:
        response = self.execute(data, timeout=timeout)
        should_record = self.settings.certification_table if record is None else record
        if should_record and self.recorder is not None and response.is_invoice():
            try:
                self.recorder.save(response, self.last_payload or {})
            except Exception:
                self.logger.warning("Could not record certification %s", response.reference, exc_info=True)
        return response


class PurchaseService(BaseService):
    document_type = DocumentType.PURCHASE

    def validate_source(self, data: dict[str, Any]) -> None:
        items = data.get("items")
        if isinstance(items, Mapping):
            items = list(items.values())
        if not isinstance(items, list):
            return
        errors = {
            f"items.{index}.taxes": ["Taxes are not allowed for purchase invoices."]
            for index, item in enumerate(items)
            if isinstance(item, Mapping) and "taxes" in item
        }
        if errors:
            raise ValidationError(
                errors,
                failed_rules={key: ["prohibited"] for key in errors},
                data=data,
            )

    def submit(self, data: Mapping[str, Any] | None = None, *, timeout: float | None = None) -> Response:
        return self.execute(data, timeout=timeout)


class RefundService(BaseService):
    document_type = DocumentType.REFUND
    cacheable = False

    def validate_source(self, data: dict[str, Any]) -> None:
        if not _invoice_id(data):
            raise BadRequestError(
                "The invoiceId of the original invoice is required to issue a refund.",
                errors={"invoiceId": ["The invoiceId field is required."]},
            )

    def get_cache_key(self, payload: Mapping[str, Any]) -> str:
        return ""

    def endpoint(self, source: Mapping[str, Any]) -> str:
        invoice_id = urllib.parse.quote(_invoice_id(source), safe="")
        return f"{self.settings.base_url}{REFUND_PATH.format(invoice_id=invoice_id)}"

    def request_body(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        return {"items": payload.get("items", [])}

    def issue(self, invoice_id: str, items: list[Mapping[str, Any]], *, timeout: float | None = None) -> Response:
        return self.execute({"invoiceId": invoice_id, "items": items}, timeout=timeout)


def _invoice_id(data: Mapping[str, Any]) -> str:
    value = data.get("invoiceId", data.get("invoice_id"))
    return str(value).strip() if value is not None else ""
