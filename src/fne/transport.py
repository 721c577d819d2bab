from __future__ import annotations

import json
import logging
import time
import urllib.error
import urllib.request
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol, TypeVar

from tenacity import Retrying, before_sleep_log, retry_if_exception_type, stop_after_attempt, wait_exponential

from .errors import (
    AuthenticationError,
    BadRequestError,
    DecodeError,
    FneError,
    NotFoundError,
    ServerError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

_DEFAULT_MESSAGES = {
    400: "Bad Request",
    401: "Unauthorized",
    403: "Forbidden",
    404: "Not Found",
    422: "Unprocessable Entity",
    500: "Internal Server Error",
}


class TransportError(RuntimeError):
    pass


@dataclass(frozen=True, slots=True)
class TransportResponse:
    status_code: int
    body: bytes = b""
    headers: dict[str, str] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        text = self.text()
        if not text.strip():
            return {}
        try:
            return json.loads(text)
        except json.JSONDecodeError as exc:
            raise DecodeError(f"Invalid JSON response: {exc.msg}", meta={"body": text[:500]}) from exc


class Transport(Protocol):
    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None,
        timeout: float,
    ) -> TransportResponse: ...


class UrllibTransport:
    def send(
        self,
        method: str,
        url: str,
        headers: Mapping[str, str],
        body: bytes | None,
        timeout: float,
    ) -> TransportResponse:
        req = urllib.request.Request(url, data=body, headers=dict(headers), method=method)
        try:
            with urllib.request.urlopen(req, timeout=timeout) as resp:
                return TransportResponse(
                    status_code=resp.status,
                    body=resp.read(),
                    headers=dict(resp.headers.items()),
                )
        except urllib.error.HTTPError as exc:
            payload = exc.read() if exc.fp else b""
            return TransportResponse(
                status_code=exc.code,
                body=payload,
                headers=dict(exc.headers.items()) if exc.headers else {},
            )
        except urllib.error.URLError as exc:
            raise TransportError(f"Request to {url} failed: {exc.reason}") from exc
        except TimeoutError as exc:
            raise TransportError(f"Request to {url} timed out after {timeout}s") from exc


def _error_payload(response: TransportResponse) -> tuple[str, dict[str, list[str]]]:
    message = _DEFAULT_MESSAGES.get(response.status_code, f"HTTP Error {response.status_code}")
    errors: dict[str, list[str]] = {}
    try:
        payload = response.json()
    except DecodeError:
        return message, errors
    if isinstance(payload, Mapping):
        message = str(payload.get("message") or payload.get("error") or message)
        raw_errors = payload.get("errors")
        if isinstance(raw_errors, Mapping):
            errors = {
                str(key): [str(v) for v in value] if isinstance(value, list) else [str(value)]
                for key, value in raw_errors.items()
            }
    return message, errors


def raise_for_status(response: TransportResponse) -> None:
    status = response.status_code
    if 200 <= status < 300:
        return
    message, errors = _error_payload(response)
    meta = {"status": status}
    if status in (400, 422):
        raise BadRequestError(message, status_code=status, errors=errors, meta=meta)
    if status in (401, 403):
        raise AuthenticationError(message, status_code=status, meta=meta)
    if status == 404:
        raise NotFoundError(message, meta=meta)
    if 500 <= status < 600:
        raise ServerError(message, status_code=status, errors=errors, meta=meta)
    raise FneError(message, code="http_error", status_code=status, errors=errors, meta=meta)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    max_attempts: int = 3
    initial_delay_ms: int = 1000
    multiplier: float = 2.0
    sleep: Callable[[float], None] = time.sleep

    def retrying(self) -> Retrying:
        return Retrying(
            stop=stop_after_attempt(max(1, self.max_attempts)),
            wait=wait_exponential(multiplier=self.initial_delay_ms / 1000.0, exp_base=self.multiplier),
            retry=retry_if_exception_type(ServerError),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self.sleep,
            reraise=True,
        )

    def run(self, fn: Callable[[], T]) -> T:
        return self.retrying()(fn)
