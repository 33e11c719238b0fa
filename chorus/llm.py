"""LLM client — streaming chat completions from an OpenAI-compatible provider.

The orchestrator talks to any object matching the StreamingLLM protocol:

    def stream_chat(model, messages, api_key, on_token, on_complete) -> UUID
    def cancel_generation(request_id) -> bool

stream_chat() returns a request id immediately. Tokens arrive through
on_token, in order, and the end of the stream through on_complete. Both are
called from a background task on the running event loop.

Three implementations are provided:

    OpenRouterClient — real HTTP client for OpenRouter and other
                       OpenAI-compatible /chat/completions backends.
    MockLLM          — emits canned lines word by word. No network calls.
    ScriptedLLM      — replays fixed token scripts in call order and records
                       every call. Tests use it to drive the orchestrator.

Provider failures (bad key, rate limit, 5xx, timeouts) never raise out of
stream_chat(). They are logged and the stream simply ends, so the caller
observes "no tokens, then completion".
"""

from __future__ import annotations

import asyncio
import json
import logging
import random
import uuid
from collections.abc import AsyncIterator, Callable, Iterable, Mapping, Sequence
from contextlib import aclosing
from typing import Protocol

import httpx

from chorus.models import ChatMessage

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]
CompletionCallback = Callable[[], None]

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DONE_SENTINEL = "[DONE]"


# ---------------------------------------------------------------------------
# Protocol — every streaming client must match these signatures
# ---------------------------------------------------------------------------

class StreamingLLM(Protocol):
    def stream_chat(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        api_key: str,
        on_token: TokenCallback,
        on_complete: CompletionCallback,
    ) -> uuid.UUID: ...

    def cancel_generation(self, request_id: uuid.UUID) -> bool: ...


# ---------------------------------------------------------------------------
# Shared request bookkeeping
# ---------------------------------------------------------------------------

class _StreamingClient:
    """Validation, scheduling and cancellation shared by every client.

    Subclasses implement _iter_tokens(). A request id is tracked only while
    its stream is live; the completion callback fires at most once and never
    after a successful cancel_generation().
    """

    def __init__(self) -> None:
        self._active: dict[uuid.UUID, asyncio.Task[None]] = {}

    @property
    def active_requests(self) -> int:
        return len(self._active)

    def is_active(self, request_id: uuid.UUID) -> bool:
        return request_id in self._active

    def stream_chat(
        self,
        model: str,
        messages: Sequence[ChatMessage],
        api_key: str,
        on_token: TokenCallback,
        on_complete: CompletionCallback,
    ) -> uuid.UUID:
        request_id = uuid.uuid4()
        if not api_key or not api_key.strip():
            logger.error("llm request=%s not sent: API key not provided", request_id)
            on_complete()
            return request_id
        if not messages:
            logger.error("llm request=%s not sent: no messages provided", request_id)
            on_complete()
            return request_id

        logger.debug("llm request=%s model=%s messages=%d", request_id, model, len(messages))
        task = asyncio.get_running_loop().create_task(
            self._run(request_id, model, list(messages), api_key, on_token, on_complete),
            name=f"llm-{request_id}",
        )
        self._active[request_id] = task
        return request_id

    def cancel_generation(self, request_id: uuid.UUID) -> bool:
        task = self._active.pop(request_id, None)
        if task is None:
            return False
        task.cancel()
        logger.debug("llm request=%s cancelled", request_id)
        return True

    async def _run(
        self,
        request_id: uuid.UUID,
        model: str,
        messages: list[ChatMessage],
        api_key: str,
        on_token: TokenCallback,
        on_complete: CompletionCallback,
    ) -> None:
        count = 0
        try:
            async with aclosing(self._iter_tokens(model, messages, api_key)) as tokens:
                async for token in tokens:
                    if request_id not in self._active:
                        return
                    count += 1
                    on_token(token)
        except asyncio.CancelledError:
            self._active.pop(request_id, None)
            raise
        except LLMError as e:
            logger.error("llm request=%s model=%s failed: %s", request_id, model, e)
        except Exception:
            logger.exception("llm request=%s model=%s crashed", request_id, model)

        if self._active.pop(request_id, None) is not None:
            logger.debug("llm request=%s complete tokens=%d", request_id, count)
            on_complete()

    def _iter_tokens(
        self, model: str, messages: list[ChatMessage], api_key: str
    ) -> AsyncIterator[str]:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# OpenRouterClient — connects to a real backend
# ---------------------------------------------------------------------------

class OpenRouterClient(_StreamingClient):
    """Async streaming client for OpenAI-compatible chat completions.

    POST {base_url}/chat/completions
         {"model": ..., "messages": [{"role", "content"}], "stream": true}
    Response: a line stream of `data: {"choices":[{"delta":{"content":"..."}}]}`
    terminated by `data: [DONE]`.

    Args:
        base_url:        Provider API root, e.g. "https://openrouter.ai/api/v1".
        connect_timeout: Seconds allowed to establish the connection.
        read_timeout:    Seconds allowed between streamed chunks.
        max_tokens:      Sent as max_tokens when set.
        transport:       Optional httpx transport (tests pass a MockTransport).
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        connect_timeout: float = 30.0,
        read_timeout: float = 120.0,
        max_tokens: int | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        super().__init__()
        self._base_url = base_url.rstrip("/")
        self._connect_timeout = connect_timeout
        self._read_timeout = read_timeout
        self._max_tokens = max_tokens
        self._transport = transport

    def _headers(self, api_key: str) -> dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Accept": "text/event-stream",
            "Authorization": f"Bearer {api_key}",
        }

    def _build_request(self, model: str, messages: list[ChatMessage]) -> tuple[str, dict]:
        """Return (url, body) for one streamed completion."""
        body: dict = {
            "model": model,
            "messages": [m.model_dump() for m in messages],
            "stream": True,
        }
        if self._max_tokens:
            body["max_tokens"] = self._max_tokens
        return f"{self._base_url}/chat/completions", body

    async def _iter_tokens(
        self, model: str, messages: list[ChatMessage], api_key: str
    ) -> AsyncIterator[str]:
        url, body = self._build_request(model, messages)
        timeout = httpx.Timeout(self._read_timeout, connect=self._connect_timeout)
        try:
            async with httpx.AsyncClient(timeout=timeout, transport=self._transport) as client:
                async with client.stream(
                    "POST", url, json=body, headers=self._headers(api_key)
                ) as resp:
                    if resp.status_code >= 400:
                        detail = (await resp.aread()).decode("utf-8", errors="replace")
                        raise LLMError(_status_message(resp.status_code, detail))
                    async for line in resp.aiter_lines():
                        payload = strip_data_marker(line)
                        if payload is None:
                            continue
                        if payload == DONE_SENTINEL:
                            return
                        token = parse_delta(payload)
                        if token:
                            yield token
        except httpx.ConnectError as e:
            raise LLMError(f"Cannot connect to LLM provider at {self._base_url}") from e
        except httpx.TimeoutException as e:
            raise LLMError(f"LLM provider timed out after {self._read_timeout}s") from e
        except httpx.HTTPError as e:
            raise LLMError(f"LLM provider stream failed: {e}") from e


def _status_message(status: int, detail: str) -> str:
    if status == 401:
        return "Invalid API key"
    if status == 429:
        return "Rate limit exceeded"
    if status < 500:
        return f"Client error: {status} - {detail}"
    return f"Server error: {status} - {detail}"


def strip_data_marker(line: str) -> str | None:
    """Return the payload of one stream line, or None for blanks and comments."""
    line = line.strip()
    if not line or line.startswith(":"):
        return None
    if line.startswith("data:"):
        return line[5:].strip() or None
    return line


def parse_delta(payload: str) -> str | None:
    """Extract the content delta from one streamed chunk.

    Falls back to choices[0].message.content for providers that send whole
    messages. Returns None when the chunk carries no text. Raises LLMError
    when the provider reports an error inside the stream.
    """
    try:
        data = json.loads(payload)
    except json.JSONDecodeError:
        logger.warning("Skipping malformed stream chunk: %r", payload)
        return None
    if not isinstance(data, dict):
        return None

    error = data.get("error")
    if isinstance(error, dict):
        raise LLMError(f"Provider error: {error.get('message', error)}")

    choices = data.get("choices")
    if not isinstance(choices, list) or not choices or not isinstance(choices[0], dict):
        return None
    for key in ("delta", "message"):
        part = choices[0].get(key)
        if isinstance(part, dict) and isinstance(part.get("content"), str):
            return part["content"]
    return None


# ---------------------------------------------------------------------------
# MockLLM — canned responses for running without a provider
# ---------------------------------------------------------------------------

_CANNED_RESPONSES: dict[str, list[str]] = {
    "default": [
        "Hello! I'm happy to discuss this topic with you.",
        "That's an interesting perspective. Let me add my thoughts.",
        "I think we need to consider multiple angles on this issue.",
        "I agree with some points made earlier, but I'd like to add something.",
    ],
    "anthropic/claude-3-opus": [
        "I'd like to offer a nuanced view that considers historical context.",
        "Let me approach this systematically, breaking down the key factors involved.",
    ],
    "openai/gpt-4-turbo": [
        "From my analysis, there are several considerations worth exploring here.",
        "Let's dig deeper into the underlying assumptions of this discussion.",
    ],
}


class MockLLM(_StreamingClient):
    """Streams a canned line per call, one word at a time, with jittered delays.

    Lets you run the whole stack (SSE, persistence, UI) without an API key
    being spent. The key is still required so the validation path matches
    production.
    """

    def __init__(
        self,
        responses: Mapping[str, Sequence[str]] | None = None,
        delay: float = 0.1,
        rng: random.Random | None = None,
    ) -> None:
        super().__init__()
        self._responses = dict(responses or _CANNED_RESPONSES)
        self._delay = delay
        self._rng = rng or random.Random()

    async def _iter_tokens(
        self, model: str, messages: list[ChatMessage], api_key: str
    ) -> AsyncIterator[str]:
        options = (
            self._responses.get(model)
            or self._responses.get("default")
            or _CANNED_RESPONSES["default"]
        )
        text = self._rng.choice(list(options))
        for i, word in enumerate(text.split()):
            await asyncio.sleep(self._delay + self._rng.random() * self._delay)
            yield word if i == 0 else f" {word}"


# ---------------------------------------------------------------------------
# ScriptedLLM — deterministic token scripts
# ---------------------------------------------------------------------------

class ScriptedLLM(_StreamingClient):
    """Replays token scripts in call order.

    Each streamed call consumes the next script. An exception in place of a
    script is raised from inside the stream, which exercises the provider
    failure path (no tokens, then completion). Once the scripts run out every
    call streams nothing. Calls rejected by validation consume no script.

    Every streamed call is recorded in `calls` as (model, messages).
    """

    def __init__(
        self,
        scripts: Iterable[Sequence[str] | BaseException] = (),
        delay: float = 0.0,
    ) -> None:
        super().__init__()
        self._scripts: list[Sequence[str] | BaseException] = list(scripts)
        self._delay = delay
        self.calls: list[tuple[str, list[ChatMessage]]] = []

    async def _iter_tokens(
        self, model: str, messages: list[ChatMessage], api_key: str
    ) -> AsyncIterator[str]:
        self.calls.append((model, list(messages)))
        script = self._scripts.pop(0) if self._scripts else []
        if isinstance(script, BaseException):
            raise script
        for token in script:
            await asyncio.sleep(self._delay)
            yield token


# ---------------------------------------------------------------------------
# LLMError — raised inside the clients for connection and protocol failures
# ---------------------------------------------------------------------------

class LLMError(RuntimeError):
    """Raised when the provider cannot be reached or reports an error."""
