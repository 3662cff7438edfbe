"""Shared HTTP plumbing for API-key providers."""

from __future__ import annotations

import logging
from typing import Any, Mapping

import httpx

from .base import BaseProvider
from .errors import LlmProviderError
from .shapes import (
    error_detail,
    extract_text,
    extract_usage_tokens,
    request_id_from_headers,
    response_snippet,
)
from .types import LlmCallResult

DEFAULT_HTTP_TIMEOUT_SECONDS = 120.0


class RestProvider(BaseProvider):
    """Provider that POSTs JSON and normalises the JSON reply."""

    def __init__(
        self,
        name: str,
        api_key: str,
        *,
        timeout: float = DEFAULT_HTTP_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not api_key:
            raise ValueError(f"{name} API key is required")
        super().__init__(name=name)
        self._api_key = api_key
        self._timeout = timeout
        self._transport = transport
        self._logger = logging.getLogger(__name__)

    async def _post(
        self,
        url: str,
        headers: Mapping[str, str],
        payload: Mapping[str, Any],
        *,
        model: str,
    ) -> tuple[Any, httpx.Headers]:
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(url, headers=dict(headers), json=dict(payload))
            except httpx.RequestError as exc:
                raise LlmProviderError(
                    f"LLM provider network error: {exc}",
                    provider=self.name,
                    endpoint=url,
                    model=model,
                ) from exc

        body = _decode_body(response)
        if not response.is_success:
            request_id = request_id_from_headers(response.headers)
            self._logger.warning(
                "provider=%s model=%s status=%s request_id=%s endpoint=%s",
                self.name,
                model,
                response.status_code,
                request_id,
                url,
            )
            raise LlmProviderError(
                f"LLM provider error ({response.status_code}): {error_detail(body)}",
                provider=self.name,
                status_code=response.status_code,
                endpoint=url,
                model=model,
                response_snippet=response_snippet(body),
                request_id=request_id,
            )
        return body, response.headers

    def _to_result(
        self,
        body: Any,
        headers: httpx.Headers,
        *,
        url: str,
        model: str,
    ) -> LlmCallResult:
        text = extract_text(body)
        if text is None:
            raise LlmProviderError(
                "LLM response missing output_text",
                provider=self.name,
                status_code=200,
                endpoint=url,
                model=model,
                response_snippet=response_snippet(body),
                request_id=request_id_from_headers(headers),
            )
        input_tokens, output_tokens = extract_usage_tokens(body)
        return LlmCallResult(
            output_text=text,
            raw_response=body,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            endpoint=url,
        )


def _decode_body(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError:
        return response.text


__all__ = ["DEFAULT_HTTP_TIMEOUT_SECONDS", "RestProvider"]
