"""Sentence-level TTS playback queue.

Text is buffered, split at sentence boundaries, and each sentence is spoken
as one unit. Units play strictly in enqueue order, one at a time.
"""

from __future__ import annotations

import logging
from collections import deque
from functools import partial
from typing import Callable

from mock_interview.voice.tts import SpeechOptions, SpeechSynthesizer

logger = logging.getLogger(__name__)

BOUNDARY_PUNCTUATION = ".?!:"


def split_sentences(buffer: str) -> tuple[list[str], str]:
    """
    Split complete sentences off the front of `buffer`.

    A boundary is one of `. ? ! :` followed by whitespace, or a newline.

    Returns:
        (trimmed complete sentences, remaining incomplete tail)
    """
    sentences: list[str] = []
    start = 0
    for i, char in enumerate(buffer):
        is_newline = char == "\n"
        ends_sentence = (
            char in BOUNDARY_PUNCTUATION and i + 1 < len(buffer) and buffer[i + 1].isspace()
        )
        if is_newline or ends_sentence:
            sentence = buffer[start : i + 1].strip()
            if sentence:
                sentences.append(sentence)
            start = i + 1
    return sentences, buffer[start:]


class TTSPlaybackQueue:
    def __init__(
        self,
        synthesizer: SpeechSynthesizer,
        *,
        options: SpeechOptions | None = None,
        on_start: Callable[[], None] | None = None,
        on_drained: Callable[[], None] | None = None,
        on_speaking_change: Callable[[bool], None] | None = None,
    ) -> None:
        self._synth = synthesizer
        self._options = options or SpeechOptions()
        self._on_start = on_start
        self._on_drained = on_drained
        self._on_speaking_change = on_speaking_change

        self._buffer = ""
        self._queue: deque[str] = deque()
        self._speaking = False
        self._start_notified = False
        # Token of the unit currently handed to the synthesizer; callbacks
        # carrying any other token are stale.
        self._current: int | None = None
        self._unit_counter = 0

    @property
    def is_speaking(self) -> bool:
        return self._speaking

    @property
    def pending(self) -> list[str]:
        return list(self._queue)

    @property
    def buffer(self) -> str:
        return self._buffer

    @property
    def options(self) -> SpeechOptions:
        return self._options

    def set_options(self, options: SpeechOptions) -> None:
        self._options = options

    def enqueue(self, chunk: str) -> None:
        """Append text; complete sentences become playback units."""
        self._buffer += chunk or ""
        sentences, self._buffer = split_sentences(self._buffer)
        if sentences:
            self._queue.extend(sentences)
            self._play_next()

    def flush(self) -> None:
        """Queue whatever is left in the buffer as a final unit."""
        rest = self._buffer.strip()
        self._buffer = ""
        if rest:
            self._queue.append(rest)
        self._play_next()

    def cancel(self) -> None:
        """Drop buffered and queued text and stop playback."""
        was_speaking = self._speaking
        self._buffer = ""
        self._queue.clear()
        self._current = None
        self._speaking = False
        self._start_notified = False
        self._synth.cancel()
        if was_speaking:
            logger.info("[VOICE][TTS] playback cancelled")
            self._notify_speaking(False)

    def _play_next(self) -> None:
        if self._current is not None or not self._queue:
            return

        text = self._queue.popleft()
        self._unit_counter += 1
        token = self._unit_counter
        self._current = token

        if not self._speaking:
            self._speaking = True
            self._start_notified = False
            self._notify_speaking(True)

        logger.debug(f"[VOICE][TTS] unit #{token} len={len(text)} pending={len(self._queue)}")
        try:
            self._synth.speak(
                text,
                self._options,
                on_start=partial(self._unit_started, token),
                on_end=partial(self._unit_finished, token),
                on_error=partial(self._unit_failed, token),
            )
        except Exception as e:
            logger.exception(f"[VOICE][TTS] synthesizer raised for unit #{token}")
            self._unit_failed(token, e)

    def _unit_started(self, token: int) -> None:
        if token != self._current:
            return
        if not self._start_notified:
            self._start_notified = True
            if self._on_start:
                self._on_start()

    def _unit_finished(self, token: int) -> None:
        if token != self._current:
            return
        self._current = None
        if self._queue:
            self._play_next()
            return

        self._speaking = False
        self._start_notified = False
        self._notify_speaking(False)
        if self._on_drained:
            self._on_drained()

    def _unit_failed(self, token: int, error: Exception) -> None:
        if token != self._current:
            return
        logger.warning(f"[VOICE][TTS] unit #{token} skipped: {error}")
        self._unit_finished(token)

    def _notify_speaking(self, speaking: bool) -> None:
        if self._on_speaking_change:
            self._on_speaking_change(speaking)
