import asyncio
import json

import httpx
import pytest

from contextual_rag.llm import LLMClientError, OpenAIChatClient


def _client(handler) -> OpenAIChatClient:
    return OpenAIChatClient(
        base_url="http://llm.local/v1/",
        api_key="secret",
        timeout_seconds=12,
        transport=httpx.MockTransport(handler),
    )


def test_generate_posts_chat_completion_and_strips_reply() -> None:
    captured: dict[str, object] = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["url"] = str(request.url)
        captured["authorization"] = request.headers.get("Authorization")
        captured["json"] = json.loads(request.content)
        return httpx.Response(200, json={"choices": [{"message": {"content": "  hello \n"}}]})

    reply = asyncio.run(
        _client(handler).generate(
            system_prompt="system",
            user_prompt="user",
            model="gpt-4o-mini",
            max_output_tokens=100,
            temperature=0.3,
        )
    )

    assert reply == "hello"
    assert captured["url"] == "http://llm.local/v1/chat/completions"
    assert captured["authorization"] == "Bearer secret"
    assert captured["json"] == {
        "model": "gpt-4o-mini",
        "messages": [
            {"role": "system", "content": "system"},
            {"role": "user", "content": "user"},
        ],
        "max_tokens": 100,
        "temperature": 0.3,
    }


def test_generate_wraps_http_errors() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(429, json={"error": "rate limited"})

    with pytest.raises(LLMClientError):
        asyncio.run(
            _client(handler).generate(
                system_prompt="s", user_prompt="u", model="m", max_output_tokens=1, temperature=0
            )
        )


def test_generate_rejects_payload_without_choices() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"choices": []})

    with pytest.raises(LLMClientError, match="missing choices"):
        asyncio.run(
            _client(handler).generate(
                system_prompt="s", user_prompt="u", model="m", max_output_tokens=1, temperature=0
            )
        )


def test_stream_yields_deltas_until_done() -> None:
    captured: dict[str, object] = {}
    events = [
        {"choices": [{"delta": {"role": "assistant"}}]},
        {"choices": [{"delta": {"content": "Hel"}}]},
        {"choices": [{"delta": {"content": "lo"}}]},
    ]
    body = "".join(f"data: {json.dumps(event)}\n\n" for event in events)
    body += "data: [DONE]\n\n"
    body += 'data: {"choices": [{"delta": {"content": "ignored"}}]}\n\n'

    def handler(request: httpx.Request) -> httpx.Response:
        captured["json"] = json.loads(request.content)
        return httpx.Response(200, text=body, headers={"Content-Type": "text/event-stream"})

    async def collect() -> list[str]:
        return [
            delta
            async for delta in _client(handler).stream(
                system_prompt="s", user_prompt="u", model="m", max_output_tokens=10, temperature=0.7
            )
        ]

    assert asyncio.run(collect()) == ["Hel", "lo"]
    assert captured["json"]["stream"] is True
