from __future__ import annotations

import dataclasses
import json
import logging
from typing import Any, AsyncIterator, Callable, Optional

import httpx

from storyloom.core.errors import UpstreamError
from storyloom.services.providers import (
    AIConfig,
    ChatMessage,
    GenerateOptions,
    ProviderAdapter,
    get_adapter,
    resolve_base_url,
)


logger = logging.getLogger(__name__)

SSE_DATA_PREFIX = "data:"
SSE_DONE = "[DONE]"

# marker returned by parse_sse_line for the terminator line
STREAM_DONE = object()


def parse_sse_line(line: str) -> Any:
    """Parse one complete line of a provider stream.

    Returns the decoded JSON event, ``STREAM_DONE`` for the terminator, or
    None for anything to skip (comments, ``event:`` lines, blank lines and
    malformed JSON).
    """
    line = line.rstrip("\r")
    if not line.startswith(SSE_DATA_PREFIX):
        return None
    data = line[len(SSE_DATA_PREFIX):]
    if data.startswith(" "):
        data = data[1:]
    if data.strip() == SSE_DONE:
        return STREAM_DONE
    try:
        return json.loads(data)
    except ValueError:
        # upstreams interleave control lines; a bad one must not kill the stream
        logger.debug("ai_client.skip_malformed_line len=%s", len(data))
        return None


def _stream_error_message(event: Any) -> Optional[str]:
    """Error carried in-band by the stream itself (both formats use an "error" object)."""
    if not isinstance(event, dict):
        return None
    err = event.get("error")
    if err is None:
        return None
    if isinstance(err, dict):
        return str(err.get("message") or err.get("type") or err)
    return str(err)


class AIClient:
    """Streaming HTTP client for one resolved provider configuration."""

    def __init__(
        self,
        config: AIConfig,
        *,
        connect_timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.config = config
        self.adapter: ProviderAdapter = get_adapter(config.provider)
        # no read timeout: a chapter can take minutes to stream
        self._timeout = httpx.Timeout(None, connect=connect_timeout)
        self._transport = transport

    @property
    def endpoint(self) -> str:
        return self.adapter.endpoint_for(resolve_base_url(self.config))

    def _http_client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(timeout=self._timeout, transport=self._transport)

    def _prepare(self, messages: list[ChatMessage], options: Optional[GenerateOptions], stream: bool):
        opts = dataclasses.replace(options or GenerateOptions(), stream=stream)
        url = self.endpoint
        headers = self.adapter.build_headers(self.config.api_key)
        body = self.adapter.build_request(messages, opts, self.config.model)
        return url, headers, body

    async def stream_generate(
        self,
        messages: list[ChatMessage],
        options: Optional[GenerateOptions] = None,
    ) -> AsyncIterator[str]:
        """Yield text fragments as soon as each stream event is decoded."""
        url, headers, body = self._prepare(messages, options, stream=True)
        logger.info("ai_client.stream provider=%s model=%s url=%s", self.config.provider, body.get("model"), url)
        try:
            async with self._http_client() as client:
                async with client.stream("POST", url, headers=headers, json=body) as resp:
                    if not resp.is_success:
                        error_text = (await resp.aread()).decode("utf-8", errors="replace")
                        logger.warning("ai_client.upstream_error status=%s body=%s", resp.status_code, error_text[:500])
                        raise UpstreamError(f"API error: {error_text}")

                    buffer = ""
                    async for text in resp.aiter_text():
                        buffer += text
                        lines = buffer.split("\n")
                        # the last piece may be an incomplete line, keep it for the next read
                        buffer = lines.pop()
                        for line in lines:
                            event = parse_sse_line(line)
                            if event is STREAM_DONE:
                                return
                            fragment = self._fragment_of(event)
                            if fragment:
                                yield fragment

                    # connection closed without a trailing newline
                    if buffer:
                        event = parse_sse_line(buffer)
                        if event is not STREAM_DONE:
                            fragment = self._fragment_of(event)
                            if fragment:
                                yield fragment
        except httpx.HTTPError as e:
            logger.warning("ai_client.transport_error url=%s error=%s", url, e)
            raise UpstreamError(f"API request failed: {e}")

    def _fragment_of(self, event: Any) -> Optional[str]:
        if event is None:
            return None
        message = _stream_error_message(event)
        if message is not None:
            raise UpstreamError(f"API error: {message}")
        return self.adapter.extract_fragment(event)

    async def generate(
        self,
        messages: list[ChatMessage],
        options: Optional[GenerateOptions] = None,
    ) -> str:
        """Single non-streaming completion; returns the whole text."""
        url, headers, body = self._prepare(messages, options, stream=False)
        try:
            async with self._http_client() as client:
                resp = await client.post(url, headers=headers, json=body)
        except httpx.HTTPError as e:
            logger.warning("ai_client.transport_error url=%s error=%s", url, e)
            raise UpstreamError(f"API request failed: {e}")
        if not resp.is_success:
            logger.warning("ai_client.upstream_error status=%s body=%s", resp.status_code, resp.text[:500])
            raise UpstreamError(f"API error: {resp.text}")
        try:
            data = resp.json()
        except ValueError:
            raise UpstreamError("API error: response is not valid JSON")
        return self.adapter.extract_text(data)


AIClientFactory = Callable[[AIConfig], AIClient]


def create_ai_client(config: AIConfig, **kwargs: Any) -> AIClient:
    return AIClient(config, **kwargs)

