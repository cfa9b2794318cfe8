"""Subtitle chunking and display queue.

Each new conversation message is cut into short display chunks. Chunks are
shown one at a time, in order, each for a duration proportional to its length.
"""

from __future__ import annotations

import logging
from collections import deque

from mock_interview.clock import Clock, TimerHandle
from mock_interview.orchestrator.schemas import ConversationMessage, SubtitleChunk

logger = logging.getLogger(__name__)

MAX_CHUNK_CHARS = 60
MIN_CHUNK_MS = 1500
MS_PER_CHAR = 60
GAP_MS = 200


def _duration_ms(text: str) -> int:
    return max(MIN_CHUNK_MS, len(text) * MS_PER_CHAR)


def chunk_message(message: ConversationMessage) -> list[SubtitleChunk]:
    """
    Split a message into subtitle chunks.

    A chunk closes on the word that takes it past 60 characters, or on a word
    ending in `.`, `?` or `!`.
    """
    chunks: list[SubtitleChunk] = []
    current = ""

    def _close(text: str) -> None:
        chunks.append(
            SubtitleChunk(
                id=f"{message.id}-{len(chunks)}",
                text=text,
                speaker=message.speaker,
                duration_ms=_duration_ms(text),
            )
        )

    for word in message.text.split(" "):
        candidate = f"{current} {word}" if current else word
        if len(candidate) > MAX_CHUNK_CHARS or word.endswith((".", "?", "!")):
            _close(candidate)
            current = ""
        else:
            current = candidate

    if current:
        _close(current)
    return chunks


class SubtitleQueue:
    def __init__(self, clock: Clock, *, gap_ms: int = GAP_MS) -> None:
        self._clock = clock
        self._gap_s = gap_ms / 1000.0
        self._queue: deque[SubtitleChunk] = deque()
        self._current: SubtitleChunk | None = None
        self._timer: TimerHandle | None = None
        self._busy = False

    @property
    def current(self) -> SubtitleChunk | None:
        return self._current

    @property
    def pending(self) -> int:
        return len(self._queue)

    def push_message(self, message: ConversationMessage) -> list[SubtitleChunk]:
        chunks = chunk_message(message)
        self._queue.extend(chunks)
        if not self._busy:
            self._show_next()
        return chunks

    def clear(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._queue.clear()
        self._current = None
        self._busy = False

    def _show_next(self) -> None:
        self._timer = None
        if not self._queue:
            self._busy = False
            return
        self._busy = True
        self._current = self._queue.popleft()
        self._timer = self._clock.call_later(self._current.duration_ms / 1000.0, self._hide)

    def _hide(self) -> None:
        self._current = None
        self._timer = self._clock.call_later(self._gap_s, self._show_next)
