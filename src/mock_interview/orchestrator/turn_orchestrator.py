"""
Turn orchestrator.

Single path through which initialization and candidate turns reach the turn
backend. Applies admission control, holds the single-flight lock, and turns
the validated result into history, a private note, speech, and recruiter
state transitions.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, Protocol

from mock_interview.clock import Clock
from mock_interview.orchestrator.admission import (
    AdmissionPolicy,
    check_admission,
    normalize_utterance,
)
from mock_interview.orchestrator.interview_state import InterviewSessionState
from mock_interview.orchestrator.schemas import (
    ChatMessage,
    ErrorBanner,
    FailureKind,
    InterviewStatus,
    PrivateNote,
    RecruiterState,
    RecruiterTurn,
    ScoreHint,
    Speaker,
    TurnError,
    TurnFailure,
    TurnOutcome,
    TurnRequest,
    TurnStatus,
)

if TYPE_CHECKING:
    from mock_interview.models.turn_client import TurnClientBase

logger = logging.getLogger(__name__)


class SpeechOutput(Protocol):
    """The part of the TTS playback queue the orchestrator drives."""

    def enqueue(self, chunk: str) -> None: ...

    def flush(self) -> None: ...

    def cancel(self) -> None: ...


class TurnOrchestrator:
    """
    Sends turns to the backend, one at a time.

    Guards run in a fixed order (in flight, cooldown, recruiter speaking,
    minimum content, duplicate). A denied call returns immediately without
    contacting the backend or touching the session state.
    """

    def __init__(
        self,
        state: InterviewSessionState,
        client: TurnClientBase,
        *,
        clock: Clock,
        tts_queue: SpeechOutput | None = None,
        policy: AdmissionPolicy | None = None,
    ) -> None:
        """
        Initialize the orchestrator.

        Args:
            state: Session state (history and guard fields).
            client: Turn backend client.
            clock: Time source for cooldowns and duplicate windows.
            tts_queue: Playback queue for recruiter speech. Text only when None.
            policy: Admission thresholds. Uses defaults if None.
        """
        self._state = state
        self._client = client
        self._clock = clock
        self._tts = tts_queue
        self._policy = policy or AdmissionPolicy()
        self._pending_retry: tuple[bool, str | None] | None = None

    @property
    def state(self) -> InterviewSessionState:
        return self._state

    @property
    def policy(self) -> AdmissionPolicy:
        return self._policy

    @property
    def can_retry(self) -> bool:
        """True when the last admitted request failed and has not been retried successfully."""
        return self._pending_retry is not None

    async def initialize(self) -> TurnOutcome:
        """Request the recruiter's opening line."""
        return await self._run(is_init=True, candidate_text=None)

    async def submit(self, text: str) -> TurnOutcome:
        """
        Submit one committed candidate utterance.

        Args:
            text: The utterance.

        Returns:
            What happened to the request.
        """
        return await self._run(is_init=False, candidate_text=(text or "").strip())

    async def retry(self) -> TurnOutcome | None:
        """
        Re-submit the last failed request.

        The cooldown, in-flight and speaking guards still apply. The duplicate
        window does not, since the failed send never produced a reply.

        Returns:
            The outcome, or None when there is nothing to retry.
        """
        if self._pending_retry is None:
            logger.info("[TURN] retry requested but no failed request is pending")
            return None
        is_init, text = self._pending_retry
        return await self._run(is_init=is_init, candidate_text=text, allow_repeat=True)

    def _build_request(self, is_init: bool, candidate_text: str | None) -> TurnRequest:
        history = [
            ChatMessage(
                role="assistant" if m.speaker == Speaker.RECRUITER else "user",
                content=m.text,
            )
            for m in self._state.messages
        ]
        if not is_init and candidate_text:
            history.append(ChatMessage(role="user", content=candidate_text))
        return TurnRequest(
            session_id=self._state.session_id,
            is_init=is_init,
            interview_params=self._state.params,
            candidate_text=None if is_init else candidate_text,
            messages=history,
        )

    async def _run(
        self,
        *,
        is_init: bool,
        candidate_text: str | None,
        allow_repeat: bool = False,
    ) -> TurnOutcome:
        state = self._state
        now = self._clock.now_ms()

        denial = check_admission(
            state,
            self._policy,
            is_init=is_init,
            candidate_text=candidate_text,
            now_ms=now,
            allow_repeat=allow_repeat,
        )
        if denial is not None:
            logger.info(f"[TURN][GUARD] denied reason={denial.value} init={is_init}")
            return TurnOutcome(status=TurnStatus.DENIED, denial=denial)

        # Lock acquisition and bookkeeping happen before the first await.
        state.request_in_flight = True
        state.request_counter += 1
        request_id = state.request_counter
        if not is_init:
            state.last_sent_normalized_text = normalize_utterance(candidate_text or "")
            state.last_sent_timestamp = now
        state.set_recruiter_state(RecruiterState.THINKING)
        if self._tts is not None:
            self._tts.cancel()

        try:
            request = self._build_request(is_init, candidate_text)
            logger.info(
                f"[TURN] req=#{request_id} sending init={is_init} history={len(request.messages)}"
            )
            result = await self._client.next_turn(request)

            if state.status == InterviewStatus.ENDED:
                logger.info(f"[TURN] req=#{request_id} result discarded: session ended")
                return TurnOutcome(status=TurnStatus.DISCARDED, request_id=request_id)

            if isinstance(result, TurnFailure):
                return self._on_failure(request_id, result, is_init, candidate_text)
            return self._on_success(request_id, result, is_init, candidate_text)

        except Exception as e:
            logger.exception(f"[TURN] req=#{request_id} unexpected error: {e}")
            if state.status == InterviewStatus.ENDED:
                return TurnOutcome(status=TurnStatus.DISCARDED, request_id=request_id)
            failure = TurnFailure(
                error=TurnError(
                    code="UNEXPECTED_ERROR",
                    message=str(e) or type(e).__name__,
                    hint="Something went wrong. Please try again.",
                ),
                kind=FailureKind.UNEXPECTED,
            )
            return self._on_failure(request_id, failure, is_init, candidate_text)

        finally:
            state.request_in_flight = False

    def _on_failure(
        self,
        request_id: int,
        failure: TurnFailure,
        is_init: bool,
        candidate_text: str | None,
    ) -> TurnOutcome:
        state = self._state
        if failure.is_rate_limited:
            cooldown = self._policy.rate_limit_cooldown_ms
        else:
            cooldown = self._policy.failure_cooldown_ms
        state.blocked_until = self._clock.now_ms() + cooldown
        state.set_recruiter_state(RecruiterState.IDLE)
        state.set_error(
            ErrorBanner(
                code=failure.error.code,
                message=failure.error.message,
                hint=failure.error.hint,
                kind=failure.kind,
                blocked_until_ms=state.blocked_until,
            )
        )
        self._pending_retry = (is_init, candidate_text)
        logger.warning(
            f"[TURN] req=#{request_id} failed kind={failure.kind.value} "
            f"code={failure.error.code} status={failure.status_code} cooldown_ms={cooldown:.0f}"
        )
        return TurnOutcome(status=TurnStatus.FAILED, request_id=request_id, failure=failure)

    def _on_success(
        self,
        request_id: int,
        turn: RecruiterTurn,
        is_init: bool,
        candidate_text: str | None,
    ) -> TurnOutcome:
        state = self._state
        if is_init:
            state.has_initialized = True
        else:
            state.add_message(Speaker.CANDIDATE, candidate_text or "")
        state.add_message(Speaker.RECRUITER, turn.say)

        evaluation = turn.evaluation
        state.add_private_note(
            PrivateNote(
                timestamp_ms=self._clock.now_ms(),
                request_id=request_id,
                signals=list(evaluation.signals),
                score_hint=ScoreHint(
                    total=evaluation.total_score,
                    technical=evaluation.technical_score,
                    communication=evaluation.communication_score,
                    problem_solving=evaluation.problem_solving_score,
                ),
            )
        )
        state.clear_error()
        self._pending_retry = None
        logger.info(f"[TURN] req=#{request_id} ok type={turn.type} say_len={len(turn.say)}")

        if state.status == InterviewStatus.PAUSED:
            # Recorded but not spoken; resume() re-arms listening.
            state.set_recruiter_state(RecruiterState.IDLE)
        elif self._tts is None:
            state.set_recruiter_state(RecruiterState.LISTENING)
        else:
            state.set_recruiter_state(RecruiterState.SPEAKING)
            self._tts.enqueue(turn.say)
            self._tts.flush()

        return TurnOutcome(status=TurnStatus.COMPLETED, request_id=request_id, turn=turn)
