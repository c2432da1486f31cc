"""JSON-over-HTTP client shared by provider backends."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 120.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 10.0
DEFAULT_USER_AGENT = "orpheus-dispatch/0.1"


@dataclass(slots=True)
class ProviderResponse:
    """Structured result of one provider request."""

    url: str
    status_code: int
    body: dict[str, Any] = field(default_factory=dict)
    is_success: bool = False
    error: str | None = None


class ProviderClient:
    """httpx wrapper that never raises for transport or HTTP failures."""

    def __init__(
        self,
        *,
        base_url: str,
        headers: dict[str, str] | None = None,
        timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        base_headers = {"User-Agent": DEFAULT_USER_AGENT, "Content-Type": "application/json"}
        if headers:
            base_headers.update(headers)
        self._client = httpx.Client(
            base_url=base_url,
            timeout=httpx.Timeout(timeout_seconds, connect=DEFAULT_CONNECT_TIMEOUT_SECONDS),
            headers=base_headers,
            transport=transport,
        )

    def post_json(self, path: str, payload: dict[str, Any]) -> ProviderResponse:
        return self._request("POST", path, json=payload)

    def get(self, path: str) -> ProviderResponse:
        return self._request("GET", path)

    def _request(self, method: str, path: str, **kwargs: Any) -> ProviderResponse:
        try:
            response = self._client.request(method, path, **kwargs)
        except httpx.TimeoutException:
            logger.warning("Timeout calling %s %s", method, path)
            return ProviderResponse(url=path, status_code=0, error="timeout")
        except httpx.HTTPError as exc:
            logger.warning("HTTP error calling %s %s: %s", method, path, exc)
            return ProviderResponse(url=path, status_code=0, error=str(exc) or type(exc).__name__)

        body = _json_body(response)
        if response.is_success:
            return ProviderResponse(
                url=str(response.url),
                status_code=response.status_code,
                body=body,
                is_success=True,
            )
        return ProviderResponse(
            url=str(response.url),
            status_code=response.status_code,
            body=body,
            error=_error_message(response.status_code, body),
        )

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> ProviderClient:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()


def _json_body(response: httpx.Response) -> dict[str, Any]:
    try:
        data = response.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {"data": data}


def _error_message(status_code: int, body: dict[str, Any]) -> str:
    """Provider error text; all three providers nest it under ``error.message``."""

    error = body.get("error")
    if isinstance(error, dict) and error.get("message"):
        return f"HTTP {status_code}: {error['message']}"
    if isinstance(error, str) and error:
        return f"HTTP {status_code}: {error}"
    return f"HTTP {status_code}"
