from __future__ import annotations

import json
from typing import AsyncIterator, Protocol

import httpx


class LLMClientError(RuntimeError):
    pass


class TextGenerator(Protocol):
    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_output_tokens: int,
        temperature: float,
    ) -> str: ...


class StreamingTextGenerator(TextGenerator, Protocol):
    def stream(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_output_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]: ...


class OpenAIChatClient:
    """Client for OpenAI-compatible ``/chat/completions`` endpoints."""

    def __init__(
        self,
        *,
        base_url: str,
        api_key: str = "",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout_seconds = timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        headers = {"Authorization": f"Bearer {self._api_key}"} if self._api_key else None
        return httpx.AsyncClient(
            headers=headers,
            timeout=self._timeout_seconds,
            transport=self._transport,
        )

    @staticmethod
    def _payload(
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_output_tokens: int,
        temperature: float,
        stream: bool = False,
    ) -> dict[str, object]:
        payload: dict[str, object] = {
            "model": model,
            "messages": [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            "max_tokens": max_output_tokens,
            "temperature": temperature,
        }
        if stream:
            payload["stream"] = True
        return payload

    async def generate(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_output_tokens: int,
        temperature: float,
    ) -> str:
        payload = self._payload(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model=model,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
        )

        try:
            async with self._client() as client:
                response = await client.post(f"{self._base_url}/chat/completions", json=payload)
                response.raise_for_status()
            return _parse_completion(response.json())
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMClientError(str(exc)) from exc

    async def stream(
        self,
        *,
        system_prompt: str,
        user_prompt: str,
        model: str,
        max_output_tokens: int,
        temperature: float,
    ) -> AsyncIterator[str]:
        payload = self._payload(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            model=model,
            max_output_tokens=max_output_tokens,
            temperature=temperature,
            stream=True,
        )

        try:
            async with self._client() as client:
                async with client.stream(
                    "POST", f"{self._base_url}/chat/completions", json=payload
                ) as response:
                    response.raise_for_status()
                    async for line in response.aiter_lines():
                        if not line.startswith("data:"):
                            continue
                        data = line[len("data:") :].strip()
                        if data == "[DONE]":
                            return
                        delta = _parse_stream_delta(data)
                        if delta:
                            yield delta
        except (httpx.HTTPError, ValueError) as exc:
            raise LLMClientError(str(exc)) from exc


def _parse_completion(payload: object) -> str:
    if not isinstance(payload, dict):
        raise ValueError("Invalid chat completion payload: expected an object")

    choices = payload.get("choices")
    if not isinstance(choices, list) or not choices:
        raise ValueError("Invalid chat completion payload: missing choices")

    message = choices[0].get("message") if isinstance(choices[0], dict) else None
    content = message.get("content") if isinstance(message, dict) else None
    if not isinstance(content, str):
        raise ValueError("Invalid chat completion payload: missing assistant content")

    return content.strip()


def _parse_stream_delta(data: str) -> str | None:
    chunk = json.loads(data)
    choices = chunk.get("choices") if isinstance(chunk, dict) else None
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None

    delta = choices[0].get("delta")
    content = delta.get("content") if isinstance(delta, dict) else None
    if not isinstance(content, str) or not content:
        return None
    return content
