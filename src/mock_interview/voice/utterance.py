"""Utterance aggregation.

Final transcript fragments that arrive close together belong to one answer.
Fragments are joined into the session's utterance buffer and committed once
no new fragment has arrived for the silence window.
"""

from __future__ import annotations

import logging
from typing import Callable

from mock_interview.clock import Clock
from mock_interview.orchestrator.interview_state import InterviewSessionState

logger = logging.getLogger(__name__)


class UtteranceAggregator:
    def __init__(
        self,
        state: InterviewSessionState,
        clock: Clock,
        on_commit: Callable[[str], None],
        *,
        silence_ms: int = 1000,
    ) -> None:
        self._state = state
        self._clock = clock
        self._on_commit = on_commit
        self._silence_s = silence_ms / 1000.0

    @property
    def buffer(self) -> str:
        return self._state.utterance_buffer

    def add_final(self, fragment: str) -> None:
        """Buffer a final fragment and restart the silence window."""
        state = self._state
        if state.is_recruiter_speaking:
            logger.debug("[VOICE][STT] fragment dropped: recruiter speaking")
            return

        text = (fragment or "").strip()
        if not text:
            return

        state.utterance_buffer = f"{state.utterance_buffer} {text}".strip()
        state.cancel_silence_timer()
        state.silence_timer = self._clock.call_later(self._silence_s, self._on_silence)

    def commit_now(self) -> None:
        """Commit the buffer immediately (manual send)."""
        self._state.cancel_silence_timer()
        self._commit()

    def cancel(self) -> None:
        """Drop the buffer without committing."""
        self._state.cancel_silence_timer()
        self._state.utterance_buffer = ""

    def _on_silence(self) -> None:
        self._state.silence_timer = None
        self._commit()

    def _commit(self) -> None:
        text = self._state.utterance_buffer.strip()
        self._state.utterance_buffer = ""
        if not text:
            return
        logger.info(f"[VOICE][STT] utterance committed len={len(text)} words={len(text.split())}")
        self._on_commit(text)
