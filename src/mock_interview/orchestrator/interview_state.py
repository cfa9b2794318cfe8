"""
Interview session state.

Holds the conversation history and the guard state shared by the utterance
aggregator and the turn orchestrator for one interview session. Every mutation
that other components react to is published on the session's event bus.
"""

from __future__ import annotations

import logging
from statistics import fmean

from mock_interview.clock import Clock, TimerHandle
from mock_interview.events import (
    ErrorRaised,
    EventBus,
    InterimChanged,
    MessageAppended,
    RecruiterStateChanged,
    StatusChanged,
)
from mock_interview.orchestrator.schemas import (
    ConversationMessage,
    ErrorBanner,
    InterviewParams,
    InterviewReport,
    InterviewStatus,
    PrivateNote,
    RecruiterState,
    ReportScores,
    Speaker,
)

logger = logging.getLogger(__name__)


class InterviewSessionState:
    """
    Session-scoped store for one interview.

    Created when the interview starts and reset at teardown. The orchestrator
    and aggregator receive this object explicitly; nothing here is global.
    """

    def __init__(
        self,
        session_id: str,
        params: InterviewParams,
        *,
        clock: Clock,
        bus: EventBus | None = None,
    ) -> None:
        """
        Initialize session state.

        Args:
            session_id: Identifier of the session (persistence id or local uuid).
            params: Interview parameters.
            clock: Time source for message timestamps and cooldowns.
            bus: Event bus that receives state changes. Creates one if None.
        """
        self.session_id = session_id
        self.params = params
        self.clock = clock
        self.bus = bus or EventBus()

        self._status = InterviewStatus.IDLE
        self._recruiter_state = RecruiterState.IDLE
        self._messages: list[ConversationMessage] = []
        self._private_notes: list[PrivateNote] = []
        self._live_interim = ""
        self._last_error: ErrorBanner | None = None

        self.has_initialized = False
        self.elapsed_time = 0
        self.started_at_ms: float | None = None
        self.ended_at_ms: float | None = None
        self.is_recruiter_speaking = False

        # Utterance aggregation
        self.utterance_buffer = ""
        self.silence_timer: TimerHandle | None = None

        # Admission control
        self.request_in_flight = False
        self.blocked_until = 0.0
        self.last_sent_normalized_text = ""
        self.last_sent_timestamp = 0.0
        self.request_counter = 0

    @property
    def status(self) -> InterviewStatus:
        return self._status

    @property
    def recruiter_state(self) -> RecruiterState:
        return self._recruiter_state

    @property
    def messages(self) -> list[ConversationMessage]:
        """Conversation history (copy)."""
        return list(self._messages)

    @property
    def private_notes(self) -> list[PrivateNote]:
        return list(self._private_notes)

    @property
    def live_interim(self) -> str:
        return self._live_interim

    @property
    def last_error(self) -> ErrorBanner | None:
        return self._last_error

    @property
    def is_active(self) -> bool:
        """True while the interview has started and not ended."""
        return self._status in (InterviewStatus.INTERVIEWING, InterviewStatus.PAUSED)

    def set_status(self, status: InterviewStatus) -> None:
        previous = self._status
        if previous == status:
            return
        self._status = status
        if status == InterviewStatus.INTERVIEWING and self.started_at_ms is None:
            self.started_at_ms = self.clock.now_ms()
        if status == InterviewStatus.ENDED:
            self.ended_at_ms = self.clock.now_ms()
        logger.info(f"Session {self.session_id} status {previous.value} -> {status.value}")
        self.bus.publish(StatusChanged(self.session_id, previous, status))

    def set_recruiter_state(self, state: RecruiterState) -> None:
        previous = self._recruiter_state
        if previous == state:
            return
        self._recruiter_state = state
        logger.debug(f"Recruiter state {previous.value} -> {state.value}")
        self.bus.publish(RecruiterStateChanged(self.session_id, previous, state))

    def set_recruiter_speaking(self, speaking: bool) -> None:
        self.is_recruiter_speaking = speaking

    def set_live_interim(self, text: str) -> None:
        if text == self._live_interim:
            return
        self._live_interim = text
        self.bus.publish(InterimChanged(self.session_id, text))

    def add_message(self, speaker: Speaker, text: str) -> ConversationMessage:
        """
        Append a message to the history.

        Args:
            speaker: Who said it.
            text: Message text.

        Returns:
            The stored message.
        """
        message = ConversationMessage(
            speaker=speaker,
            text=text,
            timestamp_ms=self.clock.now_ms(),
        )
        self._messages.append(message)
        self.bus.publish(MessageAppended(self.session_id, message, self.elapsed_time))
        return message

    def add_private_note(self, note: PrivateNote) -> None:
        self._private_notes.append(note)

    def set_error(self, banner: ErrorBanner) -> None:
        self._last_error = banner
        self.bus.publish(ErrorRaised(self.session_id, banner))

    def clear_error(self) -> None:
        self._last_error = None

    def cooldown_remaining_ms(self) -> float:
        return max(0.0, self.blocked_until - self.clock.now_ms())

    def tick(self) -> None:
        """Advance the elapsed-time counter by one second."""
        self.elapsed_time += 1

    def cancel_silence_timer(self) -> None:
        if self.silence_timer is not None:
            self.silence_timer.cancel()
            self.silence_timer = None

    def complete(self) -> InterviewReport:
        """
        Build the post-interview report.

        Scores are the mean of the per-turn score hints; signals are
        deduplicated in first-seen order.
        """
        notes = list(self._private_notes)
        scores = ReportScores()
        if notes:
            scores = ReportScores(
                total=round(fmean(n.score_hint.total for n in notes), 2),
                technical=round(fmean(n.score_hint.technical for n in notes), 2),
                communication=round(fmean(n.score_hint.communication for n in notes), 2),
                problem_solving=round(fmean(n.score_hint.problem_solving for n in notes), 2),
            )

        signals: list[str] = []
        for note in notes:
            for signal in note.signals:
                if signal not in signals:
                    signals.append(signal)

        return InterviewReport(
            session_id=self.session_id,
            params=self.params,
            messages=list(self._messages),
            private_notes=notes,
            scores=scores,
            signals=signals,
            duration_sec=self.elapsed_time,
            started_at_ms=self.started_at_ms,
            ended_at_ms=self.ended_at_ms,
        )

    def reset(self) -> None:
        """Drop all session data. Subscribers are detached."""
        self.cancel_silence_timer()
        self._status = InterviewStatus.IDLE
        self._recruiter_state = RecruiterState.IDLE
        self._messages.clear()
        self._private_notes.clear()
        self._live_interim = ""
        self._last_error = None
        self.has_initialized = False
        self.elapsed_time = 0
        self.started_at_ms = None
        self.ended_at_ms = None
        self.is_recruiter_speaking = False
        self.utterance_buffer = ""
        self.request_in_flight = False
        self.blocked_until = 0.0
        self.last_sent_normalized_text = ""
        self.last_sent_timestamp = 0.0
        self.request_counter = 0
        self.bus.clear()
