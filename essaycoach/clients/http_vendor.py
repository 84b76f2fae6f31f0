from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from essaycoach.domain.dto import VendorRequest, VendorResponse
from essaycoach.domain.errors import ResponseParseError, VendorCallError
from essaycoach.domain.models import TokenUsage

logger = logging.getLogger("essaycoach.vendor")


class OpenAICompatibleVendorClient:
    """Chat-completions client for vendors exposing the OpenAI wire format.

    No retries: a failed call surfaces as ``VendorCallError`` and fails the task.
    """

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str | None,
        timeout_seconds: float = 120,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout_seconds = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    def _http(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout_seconds, transport=self._transport)
        return self._client

    async def complete(self, request: VendorRequest) -> VendorResponse:
        if not self.api_key:
            raise VendorCallError("vendor api key is not configured", code="vendor_auth_missing")

        payload: dict[str, Any] = {
            "model": request.model,
            "messages": [
                {"role": "system", "content": request.system_prompt},
                {"role": "user", "content": request.user_prompt},
            ],
            "temperature": request.temperature,
        }
        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        started = time.perf_counter()
        try:
            response = await self._http().post(f"{self.base_url}/chat/completions", headers=headers, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            raise VendorCallError(
                f"vendor returned HTTP {exc.response.status_code}: {exc.response.text[:200]}",
                code="vendor_unavailable",
            ) from exc
        except httpx.RequestError as exc:
            raise VendorCallError(f"vendor request failed: {exc}", code="vendor_unavailable") from exc
        latency_ms = int((time.perf_counter() - started) * 1000)

        try:
            data = response.json()
            content = data["choices"][0]["message"]["content"]
        except (ValueError, KeyError, IndexError, TypeError) as exc:
            raise ResponseParseError(f"unexpected chat completion envelope: {response.text[:200]}") from exc
        if not isinstance(content, str):
            raise ResponseParseError("chat completion content is not text")

        usage = data.get("usage") or {}
        return VendorResponse(
            content=content,
            token_usage=TokenUsage(
                prompt_tokens=int(usage.get("prompt_tokens") or 0),
                completion_tokens=int(usage.get("completion_tokens") or 0),
                total_tokens=int(usage.get("total_tokens") or 0),
            ),
            latency_ms=latency_ms,
            raw_text=response.text,
        )

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
