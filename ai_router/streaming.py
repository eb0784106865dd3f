"""
Token streaming for the conversational path.

Wire format is line-delimited server-sent events: each `data:` line holds
a JSON object with `choices[0].delta.content`, optionally a terminal
`usage` object, and the stream ends with `data: [DONE]`.

Upstreams are opened (connected and status-checked) before any byte is
relayed, so connection failures surface as ordinary request errors while
failures after the first chunk error the open stream.
"""

from __future__ import annotations

import codecs
import json
import logging
import os
from collections.abc import AsyncIterator
from typing import Any, Protocol

import anthropic
import httpx

from .config import GatewayConfig
from .types import Backend, BackendExecutionError, MisconfiguredEnvironment

logger = logging.getLogger(__name__)

SSE_DONE = b"data: [DONE]\n\n"


def sse_event(payload: dict[str, Any]) -> bytes:
    """Encode one server-sent event."""
    return f"data: {json.dumps(payload)}\n\n".encode()


def delta_event(text: str) -> bytes:
    return sse_event({"choices": [{"index": 0, "delta": {"content": text}}]})


def usage_event(prompt_tokens: int, completion_tokens: int) -> bytes:
    return sse_event(
        {
            "choices": [],
            "usage": {
                "prompt_tokens": prompt_tokens,
                "completion_tokens": completion_tokens,
                "total_tokens": prompt_tokens + completion_tokens,
            },
        }
    )


class StreamAccumulator:
    """
    Bookkeeping parser for a relayed event stream.

    Chunks may split lines (and UTF-8 sequences) anywhere; partial lines are
    buffered until completed. A line that fails to parse is skipped.
    """

    def __init__(self) -> None:
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._buffer = ""
        self._parts: list[str] = []
        self.content_chunks = 0
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.usage_seen = False
        self.done = False
        self.skipped_lines = 0

    @property
    def text(self) -> str:
        return "".join(self._parts)

    def feed(self, chunk: bytes) -> None:
        self._buffer += self._decoder.decode(chunk)
        *lines, self._buffer = self._buffer.split("\n")
        for line in lines:
            self._parse_line(line)

    def finish(self) -> None:
        """Flush a trailing line that had no newline."""
        tail = self._buffer + self._decoder.decode(b"", final=True)
        self._buffer = ""
        if tail:
            self._parse_line(tail)

    def _parse_line(self, line: str) -> None:
        line = line.rstrip("\r")
        if not line.startswith("data:"):
            return
        data = line[5:].strip()
        if data == "[DONE]":
            self.done = True
            return

        try:
            payload = json.loads(data)
            choices = payload.get("choices") or []
            content = choices[0].get("delta", {}).get("content") if choices else None
            usage = payload.get("usage")
        except (ValueError, AttributeError, IndexError, TypeError):
            self.skipped_lines += 1
            return

        if content:
            self._parts.append(content)
            self.content_chunks += 1
        if isinstance(usage, dict):
            self.usage_seen = True
            self.prompt_tokens = int(usage.get("prompt_tokens") or 0)
            self.completion_tokens = int(usage.get("completion_tokens") or 0)


class UpstreamStream(Protocol):
    """A connected model stream."""

    def chunks(self) -> AsyncIterator[bytes]: ...

    async def aclose(self) -> None: ...


class ModelStreamer(Protocol):
    """Opens a token stream from a model."""

    async def open(
        self,
        model: str,
        messages: list[dict[str, str]],
        system: str,
        max_tokens: int,
    ) -> UpstreamStream: ...


class HttpxUpstream:
    """Pass-through of an HTTP event stream."""

    def __init__(self, response: httpx.Response):
        self.response = response

    async def chunks(self) -> AsyncIterator[bytes]:
        async for chunk in self.response.aiter_bytes():
            yield chunk

    async def aclose(self) -> None:
        await self.response.aclose()


class GatewayStreamer:
    """Streams chat completions from the primary gateway."""

    def __init__(
        self,
        config: GatewayConfig | None = None,
        api_key: str | None = None,
        http: httpx.AsyncClient | None = None,
    ):
        self.config = config or GatewayConfig()
        self.api_key = api_key or os.environ.get(self.config.api_key_env)
        if not self.api_key:
            raise MisconfiguredEnvironment(
                f"Gateway API key required. Set {self.config.api_key_env} environment variable."
            )
        self.http = http or httpx.AsyncClient(timeout=self.config.timeout_s)

    async def open(
        self,
        model: str,
        messages: list[dict[str, str]],
        system: str,
        max_tokens: int,
    ) -> UpstreamStream:
        request = self.http.build_request(
            "POST",
            f"{self.config.base_url}/chat/completions",
            json={
                "model": model,
                "messages": [{"role": "system", "content": system}, *messages],
                "max_tokens": max_tokens,
                "stream": True,
                "stream_options": {"include_usage": True},
            },
            headers={"Authorization": f"Bearer {self.api_key}"},
        )
        try:
            response = await self.http.send(request, stream=True)
        except httpx.HTTPError as e:
            raise BackendExecutionError(Backend.PRIMARY_GATEWAY, str(e)) from e

        if response.status_code >= 400:
            body = (await response.aread()).decode("utf-8", errors="replace")
            await response.aclose()
            raise BackendExecutionError(
                Backend.PRIMARY_GATEWAY,
                f"HTTP {response.status_code}: {body[:200]}",
                upstream_status=response.status_code,
            )
        return HttpxUpstream(response)


class AnthropicUpstream:
    """Re-encodes an Anthropic message stream as gateway-style events."""

    def __init__(self, manager: Any, stream: Any):
        self._manager = manager
        self._stream = stream
        self._closed = False

    async def chunks(self) -> AsyncIterator[bytes]:
        async for text in self._stream.text_stream:
            yield delta_event(text)

        final_message = await self._stream.get_final_message()
        yield usage_event(final_message.usage.input_tokens, final_message.usage.output_tokens)
        yield SSE_DONE

    async def aclose(self) -> None:
        if not self._closed:
            self._closed = True
            await self._manager.__aexit__(None, None, None)


class AnthropicStreamer:
    """Streams from the high-capability Anthropic model."""

    def __init__(
        self,
        api_key: str | None = None,
        client: anthropic.AsyncAnthropic | None = None,
        api_key_env: str = "ANTHROPIC_API_KEY",
    ):
        if client is None:
            api_key = api_key or os.environ.get(api_key_env)
            if not api_key:
                raise MisconfiguredEnvironment(
                    f"Anthropic API key required. Set {api_key_env} environment variable."
                )
            client = anthropic.AsyncAnthropic(api_key=api_key)
        self.client = client

    async def open(
        self,
        model: str,
        messages: list[dict[str, str]],
        system: str,
        max_tokens: int,
    ) -> UpstreamStream:
        manager = self.client.messages.stream(
            model=model,
            max_tokens=max_tokens,
            system=system,
            messages=messages,
        )
        try:
            stream = await manager.__aenter__()
        except anthropic.APIStatusError as e:
            raise BackendExecutionError(model, str(e), upstream_status=e.status_code) from e
        except anthropic.APIError as e:
            raise BackendExecutionError(model, str(e)) from e
        return AnthropicUpstream(manager, stream)


__all__ = [
    "AnthropicStreamer",
    "AnthropicUpstream",
    "GatewayStreamer",
    "HttpxUpstream",
    "ModelStreamer",
    "SSE_DONE",
    "StreamAccumulator",
    "UpstreamStream",
    "delta_event",
    "sse_event",
    "usage_event",
]
