"""Live SSE connections, keyed by dialogue id.

The registry is the only structure shared between concurrent dialogues.
Each register() is matched by exactly one remove(), driven by the SSE
handler's active-flag transition.
"""

from __future__ import annotations

import logging
import threading

from chorus.sse import EventStream

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    def __init__(self) -> None:
        self._streams: dict[int, EventStream] = {}
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._streams)

    def __contains__(self, dialogue_id: object) -> bool:
        with self._lock:
            return dialogue_id in self._streams

    def register(self, dialogue_id: int, stream: EventStream) -> None:
        with self._lock:
            previous = self._streams.get(dialogue_id)
            self._streams[dialogue_id] = stream
        if previous is not None and previous is not stream:
            logger.warning("dialogue=%s replaced an existing SSE connection", dialogue_id)
        logger.debug("dialogue=%s SSE connection registered", dialogue_id)

    def get(self, dialogue_id: int) -> EventStream | None:
        with self._lock:
            return self._streams.get(dialogue_id)

    def remove(self, dialogue_id: int, stream: EventStream | None = None) -> bool:
        """Drop the entry for `dialogue_id`.

        When `stream` is given the entry is only removed if it is that exact
        stream, so a stale callback cannot evict a newer connection.
        Returns whether anything was removed.
        """
        with self._lock:
            current = self._streams.get(dialogue_id)
            if current is None or (stream is not None and current is not stream):
                return False
            del self._streams[dialogue_id]
        logger.debug("dialogue=%s SSE connection removed", dialogue_id)
        return True

    def close_all(self) -> int:
        """Complete every live stream. Returns how many were open."""
        with self._lock:
            streams = list(self._streams.items())
        for dialogue_id, stream in streams:
            logger.info("dialogue=%s closing SSE connection on shutdown", dialogue_id)
            stream.complete()
        with self._lock:
            for dialogue_id, stream in streams:
                if self._streams.get(dialogue_id) is stream:
                    del self._streams[dialogue_id]
        return len(streams)
