import asyncio
import json

import httpx
import pytest

from essaycoach.clients.http_vendor import OpenAICompatibleVendorClient
from essaycoach.domain.dto import VendorRequest
from essaycoach.domain.errors import ResponseParseError, VendorCallError

REQUEST = VendorRequest(system_prompt="system", user_prompt="user", model="qwen-plus", max_tokens=256)


def _client(handler, api_key: str | None = "secret") -> OpenAICompatibleVendorClient:
    return OpenAICompatibleVendorClient(
        base_url="https://vendor.test/v1/",
        api_key=api_key,
        transport=httpx.MockTransport(handler),
    )


async def _complete(client: OpenAICompatibleVendorClient):
    try:
        return await client.complete(REQUEST)
    finally:
        await client.aclose()


@pytest.mark.unit
def test_chat_completion_is_posted_and_usage_read() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(
            200,
            json={
                "choices": [{"message": {"role": "assistant", "content": '{"scoreTR": 7}'}}],
                "usage": {"prompt_tokens": 10, "completion_tokens": 5, "total_tokens": 15},
            },
        )

    response = asyncio.run(_complete(_client(handler)))

    assert response.content == '{"scoreTR": 7}'
    assert response.token_usage.total_tokens == 15
    [request] = seen
    assert str(request.url) == "https://vendor.test/v1/chat/completions"
    assert request.headers["Authorization"] == "Bearer secret"
    body = json.loads(request.content)
    assert body["model"] == "qwen-plus"
    assert body["max_tokens"] == 256
    assert [message["role"] for message in body["messages"]] == ["system", "user"]


@pytest.mark.unit
def test_http_error_becomes_vendor_call_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(503, text="overloaded")

    with pytest.raises(VendorCallError) as exc_info:
        asyncio.run(_complete(_client(handler)))
    assert exc_info.value.code == "vendor_unavailable"
    assert "503" in str(exc_info.value)


@pytest.mark.unit
def test_transport_error_becomes_vendor_call_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(VendorCallError):
        asyncio.run(_complete(_client(handler)))


@pytest.mark.unit
def test_missing_api_key_fails_before_any_request() -> None:
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json={})

    with pytest.raises(VendorCallError) as exc_info:
        asyncio.run(_complete(_client(handler, api_key=None)))
    assert exc_info.value.code == "vendor_auth_missing"
    assert calls == []


@pytest.mark.unit
def test_unexpected_envelope_is_a_parse_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(ResponseParseError):
        asyncio.run(_complete(_client(handler)))
