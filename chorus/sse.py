"""Server-Sent Events transport.

EventStream is one long-lived push connection. Frames are queued by the
generation side and drained by frames(), which the web layer hands to
StreamingResponse. The stream ends in exactly one of four ways:

    complete()              normal end (after dialogue-complete)
    complete_with_error()   error end (after an error frame)
    timeout                 no frame for `timeout` seconds
    client disconnect       the response generator is cancelled or closed

SseEventHandler maps generation events onto named SSE frames and owns the
stream's lifecycle. Once the stream is inactive every event is dropped
silently; generation itself carries on.
"""

from __future__ import annotations

import asyncio
import json
import logging
import threading
import uuid
from collections.abc import AsyncIterator, Callable, Iterator, Mapping
from typing import Any

from chorus.events import (
    DialogueComplete,
    DialogueError,
    DialogueEventHandler,
    DialogueStart,
    Token,
    TurnComplete,
    TurnStart,
)
from chorus.models import CharacterConfig

logger = logging.getLogger(__name__)

STREAM_TIMEOUT = 30 * 60.0  # seconds of inactivity before the server gives up

_CLOSE = object()


class StreamClosedError(RuntimeError):
    """Raised when writing to a stream that has already ended."""


class ClientDisconnected(ConnectionError):
    """Recorded as the stream error when the client goes away."""


def format_event(name: str, data: Mapping[str, Any]) -> str:
    return f"event: {name}\ndata: {json.dumps(data, ensure_ascii=False)}\n\n"


def format_comment(text: str = "") -> str:
    return f":{text}\n\n"


# ---------------------------------------------------------------------------
# EventStream — the push connection
# ---------------------------------------------------------------------------

class EventStream:
    def __init__(self, timeout: float = STREAM_TIMEOUT) -> None:
        self._timeout = timeout
        self._queue: asyncio.Queue[object] = asyncio.Queue()
        self._closed = False
        self._error: BaseException | None = None
        self._completion_callbacks: list[Callable[[], None]] = []
        self._timeout_callbacks: list[Callable[[], None]] = []
        self._error_callbacks: list[Callable[[BaseException], None]] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def error(self) -> BaseException | None:
        return self._error

    def on_completion(self, callback: Callable[[], None]) -> None:
        self._completion_callbacks.append(callback)

    def on_timeout(self, callback: Callable[[], None]) -> None:
        self._timeout_callbacks.append(callback)

    def on_error(self, callback: Callable[[BaseException], None]) -> None:
        self._error_callbacks.append(callback)

    # -- writing ---------------------------------------------------------

    def send(self, name: str, data: Mapping[str, Any]) -> None:
        self._put(format_event(name, data))

    def send_comment(self, text: str = "") -> None:
        """Queue a comment frame; an empty one acts as a flush."""
        self._put(format_comment(text))

    def _put(self, frame: str) -> None:
        if self._closed:
            raise StreamClosedError("Event stream is closed")
        self._queue.put_nowait(frame)

    # -- closing ---------------------------------------------------------

    def complete(self) -> None:
        if self._close():
            self._fire(self._completion_callbacks)

    def complete_with_error(self, exc: BaseException) -> None:
        if self._close(exc):
            self._fire(self._error_callbacks, exc)

    def _close(self, error: BaseException | None = None) -> bool:
        if self._closed:
            return False
        self._closed = True
        self._error = error
        self._queue.put_nowait(_CLOSE)
        return True

    def _fire(self, callbacks: list, *args: Any) -> None:
        for callback in list(callbacks):
            try:
                callback(*args)
            except Exception:
                logger.exception("Event stream callback failed")

    def _expire(self) -> None:
        if self._closed:
            return
        self._fire(self._timeout_callbacks)
        self._close()

    def _disconnect(self) -> None:
        exc = ClientDisconnected("Client disconnected")
        if self._close(exc):
            self._fire(self._error_callbacks, exc)

    def _drain(self) -> Iterator[str]:
        while not self._queue.empty():
            frame = self._queue.get_nowait()
            if frame is not _CLOSE:
                yield frame  # type: ignore[misc]

    # -- reading ---------------------------------------------------------

    async def frames(self) -> AsyncIterator[str]:
        """Yield queued frames until the stream ends."""
        try:
            while True:
                try:
                    frame = await asyncio.wait_for(self._queue.get(), self._timeout)
                except asyncio.TimeoutError:
                    self._expire()
                    for leftover in self._drain():
                        yield leftover
                    return
                if frame is _CLOSE:
                    return
                yield frame  # type: ignore[misc]
        finally:
            if not self._closed:
                self._disconnect()


# ---------------------------------------------------------------------------
# Wire payloads — field names are part of the client contract
# ---------------------------------------------------------------------------

def _config_payload(config: CharacterConfig) -> dict[str, Any]:
    return {"character_id": config.character_id, "llm_id": config.llm_id}


def dialogue_start_payload(event: DialogueStart) -> dict[str, Any]:
    return {
        "dialogue_id": event.dialogue_id,
        "character_configs": [_config_payload(c) for c in event.character_configs],
        "turn_count": event.turn_count,
    }


def character_start_payload(event: TurnStart) -> dict[str, Any]:
    return {"character_config": _config_payload(event.character_config), "id": event.event_id}


def token_payload(event: Token) -> dict[str, Any]:
    return {
        "character_id": event.character_config.character_id,
        "token": event.token,
        "id": event.event_id,
    }


def character_complete_payload(event: TurnComplete) -> dict[str, Any]:
    return {
        "character_id": event.character_id,
        "token_count": event.token_count,
        "message_sequence_number": event.turn_number,
        "id": event.event_id,
    }


def dialogue_complete_payload(event: DialogueComplete) -> dict[str, Any]:
    return {"status": event.status, "turn_count": event.turn_count, "id": event.event_id}


def error_payload(message: str, event_id: str | None = None) -> dict[str, Any]:
    return {"message": message, "recoverable": False, "id": event_id or str(uuid.uuid4())}


# ---------------------------------------------------------------------------
# SseEventHandler — generation events onto one EventStream
# ---------------------------------------------------------------------------

class SseEventHandler(DialogueEventHandler):
    """Writes generation events to an EventStream.

    The active flag flips to False exactly once, whichever of completion,
    timeout, error or an explicit close gets there first; only that first
    transition calls `on_inactivate` (which removes the registry entry).
    """

    def __init__(
        self,
        dialogue_id: int,
        stream: EventStream,
        on_inactivate: Callable[[int], None],
    ) -> None:
        self._dialogue_id = dialogue_id
        self._stream = stream
        self._on_inactivate = on_inactivate
        self._active = True
        self._lock = threading.Lock()

        stream.on_completion(self._on_stream_completed)
        stream.on_timeout(self._on_stream_timeout)
        stream.on_error(self._on_stream_error)

    @property
    def active(self) -> bool:
        return self._active

    def set_inactive(self) -> None:
        with self._lock:
            was_active, self._active = self._active, False
        if was_active:
            logger.debug("dialogue=%s SSE handler marked inactive", self._dialogue_id)
            self._on_inactivate(self._dialogue_id)

    # -- stream lifecycle callbacks --------------------------------------

    def _on_stream_completed(self) -> None:
        logger.info("dialogue=%s SSE stream completed", self._dialogue_id)
        self.set_inactive()

    def _on_stream_timeout(self) -> None:
        logger.warning("dialogue=%s SSE stream timed out", self._dialogue_id)
        self.set_inactive()
        try:
            self._stream.send("error", error_payload("Stream timed out on server"))
            self._stream.complete()
        except StreamClosedError as e:
            logger.debug("dialogue=%s could not send timeout error: %s", self._dialogue_id, e)

    def _on_stream_error(self, exc: BaseException) -> None:
        logger.warning("dialogue=%s SSE stream error: %s", self._dialogue_id, exc)
        self.set_inactive()

    # -- writing ---------------------------------------------------------

    def _send(self, name: str, payload: dict[str, Any]) -> None:
        self._stream.send(name, payload)
        self._stream.send_comment()  # flush

    def _send_or_fail(self, name: str, payload: dict[str, Any]) -> bool:
        if not self._active:
            return False
        try:
            self._send(name, payload)
        except StreamClosedError as e:
            logger.error("dialogue=%s failed to send %s: %s", self._dialogue_id, name, e)
            self._complete_with_error(e)
            return False
        return True

    def _complete_with_error(self, exc: BaseException) -> None:
        if not self._active:
            return
        try:
            self._stream.complete_with_error(exc)
            logger.debug("dialogue=%s SSE stream completed with error", self._dialogue_id)
        finally:
            self.set_inactive()

    # -- DialogueEventHandler --------------------------------------------

    def on_dialogue_start(self, event: DialogueStart) -> None:
        if self._send_or_fail("dialogue-start", dialogue_start_payload(event)):
            logger.debug("dialogue=%s sent dialogue-start", self._dialogue_id)

    def on_character_start(self, event: TurnStart) -> None:
        self._send_or_fail("character-start", character_start_payload(event))

    def on_token(self, event: Token) -> None:
        self._send_or_fail("token", token_payload(event))

    def on_character_complete(self, event: TurnComplete) -> None:
        if self._send_or_fail("character-complete", character_complete_payload(event)):
            logger.debug(
                "dialogue=%s sent character-complete for %s (%d tokens)",
                self._dialogue_id, event.character_id, event.token_count,
            )

    def on_dialogue_complete(self, event: DialogueComplete) -> None:
        if not self._send_or_fail("dialogue-complete", dialogue_complete_payload(event)):
            return
        logger.info("dialogue=%s sent dialogue-complete", self._dialogue_id)
        self._stream.complete()
        self.set_inactive()

    def on_error(self, event: DialogueError) -> None:
        if not self._active:
            return
        try:
            self._send(
                "error",
                error_payload(f"Error during dialogue generation: {event.cause}", event.event_id),
            )
        except StreamClosedError as e:
            logger.error("dialogue=%s failed to send error frame: %s", self._dialogue_id, e)
        finally:
            self._complete_with_error(event.cause)
