"""Async chat-completion clients for OpenAI-compatible endpoints.

Two transports share one interface: :class:`AIClient` talks to the
endpoint through the OpenAI SDK, :class:`GatewayClient` posts raw JSON with
httpx, for gateways that authenticate with an API-key header and may answer
in the wrapped ``steps`` envelope. Both yield raw JSON chunks; the
orchestration layer normalizes them.
"""

from __future__ import annotations

import inspect
import json
import logging
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, Iterable, List, Mapping

import httpx
from openai import APIConnectionError, APIError, APIStatusError, AsyncOpenAI, RateLimitError
from openai.types.chat import ChatCompletionToolParam
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential

__all__ = [
    "AIClient",
    "AIClientError",
    "ClientSettings",
    "GatewayClient",
    "TRANSPORT_KINDS",
    "create_chat_client",
]

LOGGER = logging.getLogger(__name__)

TRANSPORT_KINDS: tuple[str, ...] = ("openai", "gateway")
_SSE_DATA_PREFIX = "data:"
_SSE_DONE = "[DONE]"


class AIClientError(RuntimeError):
    """Raised when the upstream LLM endpoint fails or returns no usable data."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


@dataclass(slots=True)
class ClientSettings:
    """Subset of settings required to configure a chat client."""

    base_url: str
    api_key: str
    model: str
    organization: str | None = None
    request_timeout: float | None = 90.0
    max_retries: int = 1
    retry_min_seconds: float = 0.5
    retry_max_seconds: float = 6.0
    default_headers: Mapping[str, str] | None = None
    api_key_header: str = "X-API-Key"
    debug_logging: bool = False


class _ChatClientBase:
    """Payload construction, retry policy and logging shared by both transports."""

    _retry_exceptions: tuple[type[BaseException], ...] = ()

    def __init__(self, settings: ClientSettings) -> None:
        self._settings = settings

    @property
    def settings(self) -> ClientSettings:
        return self._settings

    def build_payload(
        self,
        messages: Iterable[Mapping[str, Any]],
        *,
        tools: Iterable[ChatCompletionToolParam] | None = None,
        tool_choice: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        stream: bool = False,
    ) -> Dict[str, Any]:
        normalized: List[Dict[str, Any]] = [dict(message) for message in messages]
        if not normalized:
            raise ValueError("At least one message is required to start a chat")
        payload: Dict[str, Any] = {"model": self._settings.model, "messages": normalized}
        if tools:
            payload["tools"] = list(tools)
        if tool_choice:
            payload["tool_choice"] = tool_choice
        if temperature is not None:
            payload["temperature"] = temperature
        if max_tokens is not None:
            payload["max_tokens"] = max_tokens
        if stream:
            payload["stream"] = True
        if self._settings.debug_logging:
            self._log_prompt_payload(payload)
        return payload

    def _retrying(self) -> AsyncRetrying:
        return AsyncRetrying(
            reraise=True,
            stop=stop_after_attempt(max(1, self._settings.max_retries)),
            wait=wait_exponential(
                multiplier=self._settings.retry_min_seconds,
                max=self._settings.retry_max_seconds,
            ),
            retry=retry_if_exception_type(self._retry_exceptions),
        )

    def _log_prompt_payload(self, payload: Mapping[str, Any]) -> None:
        try:
            serialized = json.dumps(payload, ensure_ascii=False, indent=2)
        except (TypeError, ValueError):
            LOGGER.debug("LLM request payload (unserializable): %s", payload)
        else:
            LOGGER.debug("LLM request payload:\n%s", serialized)


class AIClient(_ChatClientBase):
    """Chat client backed by the official OpenAI SDK."""

    _retry_exceptions = (APIConnectionError, RateLimitError, httpx.TimeoutException)

    def __init__(self, settings: ClientSettings, *, client: AsyncOpenAI | None = None) -> None:
        super().__init__(settings)
        self._client = client or self._build_client(settings)

    async def stream_chat(self, payload: Mapping[str, Any]) -> AsyncIterator[Mapping[str, Any]]:
        """Yield raw completion chunks as dictionaries."""

        request = {key: value for key, value in payload.items() if key != "stream"}
        LOGGER.debug(
            "Starting streamed chat completion via %s with %s message(s)",
            self._settings.model,
            len(request.get("messages", ())),
        )
        try:
            async for attempt in self._retrying():
                with attempt:
                    stream = await self._client.chat.completions.create(**request, stream=True)
            # Closing the generator early (a cancelled turn) releases the response.
            async with stream:
                async for chunk in stream:
                    yield chunk.model_dump(exclude_none=True)
        except APIStatusError as exc:
            raise AIClientError(f"LLM API error ({exc.status_code}): {exc.message}", status_code=exc.status_code) from exc
        except APIError as exc:
            raise AIClientError(f"LLM API error: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise AIClientError(f"LLM request failed: {exc}") from exc

    async def complete_chat(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        """Return a full, non-streamed completion as a dictionary."""

        request = {key: value for key, value in payload.items() if key != "stream"}
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._client.chat.completions.create(**request)
        except APIStatusError as exc:
            raise AIClientError(f"LLM API error ({exc.status_code}): {exc.message}", status_code=exc.status_code) from exc
        except APIError as exc:
            raise AIClientError(f"LLM API error: {exc.message}") from exc
        except httpx.HTTPError as exc:
            raise AIClientError(f"LLM request failed: {exc}") from exc
        return response.model_dump(exclude_none=True)

    def _build_client(self, settings: ClientSettings) -> AsyncOpenAI:
        headers = dict(settings.default_headers) if settings.default_headers else None
        return AsyncOpenAI(
            api_key=settings.api_key,
            base_url=settings.base_url,
            organization=settings.organization,
            timeout=settings.request_timeout,
            default_headers=headers,
            max_retries=0,
        )

    async def aclose(self) -> None:
        """Close the underlying OpenAI client to release network resources."""

        close = getattr(self._client, "close", None)
        if close is None:
            return
        result = close()
        if inspect.isawaitable(result):
            await result


class GatewayClient(_ChatClientBase):
    """Chat client that posts raw JSON to a gateway URL with httpx.

    The gateway authenticates through ``settings.api_key_header`` and streams
    ``data: <json>`` lines terminated by ``data: [DONE]``.
    """

    _retry_exceptions = (httpx.TransportError,)

    def __init__(self, settings: ClientSettings, *, http_client: httpx.AsyncClient | None = None) -> None:
        super().__init__(settings)
        self._owns_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=settings.request_timeout)

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self._settings.default_headers:
            headers.update(self._settings.default_headers)
        if self._settings.api_key:
            headers[self._settings.api_key_header] = self._settings.api_key
        return headers

    async def stream_chat(self, payload: Mapping[str, Any]) -> AsyncIterator[Mapping[str, Any]]:
        """Yield each JSON chunk of the gateway's SSE response."""

        body = dict(payload)
        body["stream"] = True
        request = self._http.build_request("POST", self._settings.base_url, json=body, headers=self._headers())
        response = await self._send(request, stream=True)
        try:
            if response.status_code >= 400:
                detail = (await response.aread()).decode("utf-8", errors="replace")
                raise AIClientError(
                    f"LLM API error ({response.status_code}): {detail}", status_code=response.status_code
                )
            async for line in response.aiter_lines():
                chunk = _parse_stream_line(line)
                if chunk is not None:
                    yield chunk
        except httpx.HTTPError as exc:
            raise AIClientError(f"LLM stream failed: {exc}") from exc
        finally:
            await response.aclose()

    async def complete_chat(self, payload: Mapping[str, Any]) -> Mapping[str, Any]:
        body = {key: value for key, value in payload.items() if key != "stream"}
        request = self._http.build_request("POST", self._settings.base_url, json=body, headers=self._headers())
        response = await self._send(request, stream=False)
        if response.status_code >= 400:
            raise AIClientError(
                f"LLM API error ({response.status_code}): {response.text}", status_code=response.status_code
            )
        try:
            data = response.json()
        except ValueError as exc:
            raise AIClientError("LLM API returned a non-JSON body") from exc
        if not isinstance(data, Mapping):
            raise AIClientError("LLM API returned an unexpected body")
        return data

    async def _send(self, request: httpx.Request, *, stream: bool) -> httpx.Response:
        try:
            async for attempt in self._retrying():
                with attempt:
                    response = await self._http.send(request, stream=stream)
        except httpx.HTTPError as exc:
            raise AIClientError(f"LLM request failed: {exc}") from exc
        return response

    async def aclose(self) -> None:
        if self._owns_client:
            await self._http.aclose()


def _parse_stream_line(line: str) -> Mapping[str, Any] | None:
    stripped = line.strip()
    if not stripped or stripped.startswith(":") or not stripped.startswith(_SSE_DATA_PREFIX):
        return None
    data = stripped[len(_SSE_DATA_PREFIX) :].strip()
    if not data or data == _SSE_DONE:
        return None
    try:
        chunk = json.loads(data)
    except json.JSONDecodeError:
        LOGGER.warning("Skipping malformed stream chunk: %s", data[:200])
        return None
    return chunk if isinstance(chunk, Mapping) else None


def create_chat_client(settings: ClientSettings, *, kind: str = "openai") -> AIClient | GatewayClient:
    """Build the transport named by ``kind`` (one of :data:`TRANSPORT_KINDS`)."""

    if kind == "gateway":
        return GatewayClient(settings)
    if kind == "openai":
        return AIClient(settings)
    raise ValueError(f"Unknown transport '{kind}'; expected one of {', '.join(TRANSPORT_KINDS)}")
