from __future__ import annotations

import json

import httpx
import pytest

from printscout.llm.openrouter_client import OpenRouterClient

BASE_URL = "https://llm.test/api/v1"


def _completion(content: str, model: str = "m1", tokens: int = 12) -> dict:
    return {
        "model": model,
        "choices": [{"message": {"role": "assistant", "content": content}}],
        "usage": {"total_tokens": tokens},
    }


def _client(handler, models=("m1", "m2"), api_key="key") -> OpenRouterClient:
    return OpenRouterClient(
        api_key=api_key,
        models=list(models),
        base_url=BASE_URL,
        timeout=5,
        transport=httpx.MockTransport(handler),
    )


@pytest.mark.asyncio
async def test_complete_json_posts_chat_completion():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json=_completion('{"keywords": ["vase"]}'))

    response = await _client(handler).complete_json("system", "find a vase")

    assert response.text == '{"keywords": ["vase"]}'
    assert response.model == "m1"
    assert response.tokens_used == 12
    assert seen[0].url.path == "/api/v1/chat/completions"
    assert seen[0].headers["Authorization"] == "Bearer key"
    body = json.loads(seen[0].content)
    assert body["model"] == "m1"
    assert body["response_format"] == {"type": "json_object"}
    assert [m["role"] for m in body["messages"]] == ["system", "user"]


@pytest.mark.asyncio
async def test_complete_json_falls_back_to_next_model_on_retryable_status():
    models_tried: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        model = json.loads(request.content)["model"]
        models_tried.append(model)
        if model == "m1":
            return httpx.Response(503)
        return httpx.Response(200, json=_completion("{}", model="m2"))

    response = await _client(handler).complete_json("system", "prompt")

    assert models_tried == ["m1", "m2"]
    assert response.model == "m2"


@pytest.mark.asyncio
async def test_complete_json_raises_on_auth_error_without_fallback():
    models_tried: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        models_tried.append(json.loads(request.content)["model"])
        return httpx.Response(401, json={"error": "bad key"})

    with pytest.raises(httpx.HTTPStatusError):
        await _client(handler).complete_json("system", "prompt")
    assert models_tried == ["m1"]


@pytest.mark.asyncio
async def test_complete_json_raises_last_error_when_every_model_fails():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(httpx.ConnectError):
        await _client(handler).complete_json("system", "prompt")


@pytest.mark.asyncio
async def test_disabled_client_refuses_to_call():
    client = _client(lambda request: httpx.Response(200), api_key="  ")
    assert client.enabled is False
    with pytest.raises(RuntimeError):
        await client.complete_json("system", "prompt")
