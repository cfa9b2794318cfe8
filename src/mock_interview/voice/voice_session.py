"""Interview session loop (glue layer).

This module wires:
speech input -> utterance aggregator -> turn orchestrator -> TTS queue

and keeps speech capture closed while the recruiter is speaking. It does not
re-implement admission control or turn handling; those live in the
orchestrator.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field, replace
from typing import Any, Coroutine

from mock_interview.clock import Clock, LoopClock, TimerHandle
from mock_interview.db.persistence import PersistedMessage, SessionPersistence
from mock_interview.events import EventBus, MessageAppended
from mock_interview.models.turn_client import TurnClientBase
from mock_interview.orchestrator.admission import AdmissionPolicy
from mock_interview.orchestrator.interview_state import InterviewSessionState
from mock_interview.orchestrator.schemas import (
    ErrorBanner,
    InterviewParams,
    InterviewReport,
    InterviewStatus,
    RecruiterState,
    SessionView,
    TurnOutcome,
    new_id,
)
from mock_interview.orchestrator.turn_orchestrator import TurnOrchestrator
from mock_interview.voice.stt import SpeechInputAdapter, SpeechRecognitionError, to_recognition_language
from mock_interview.voice.subtitles import SubtitleQueue
from mock_interview.voice.tts import SpeechOptions, SpeechSynthesizer
from mock_interview.voice.tts_queue import TTSPlaybackQueue
from mock_interview.voice.utterance import UtteranceAggregator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class VoiceSessionConfig:
    silence_timeout_ms: int = 1000
    mic_resume_grace_ms: int = 500
    tick_interval_s: float = 1.0
    tts_enabled: bool = True
    speech_options: SpeechOptions = field(default_factory=SpeechOptions)
    admission: AdmissionPolicy = field(default_factory=AdmissionPolicy)


class VoiceSession:
    def __init__(
        self,
        *,
        client: TurnClientBase,
        speech_input: SpeechInputAdapter,
        synthesizer: SpeechSynthesizer | None = None,
        clock: Clock | None = None,
        persistence: SessionPersistence | None = None,
        config: VoiceSessionConfig | None = None,
        bus: EventBus | None = None,
    ) -> None:
        self._client = client
        self._speech = speech_input
        self._synth = synthesizer
        self._clock = clock or LoopClock()
        self._persistence = persistence
        self._config = config or VoiceSessionConfig()
        self._bus = bus or EventBus()

        self._state: InterviewSessionState | None = None
        self._orchestrator: TurnOrchestrator | None = None
        self._aggregator: UtteranceAggregator | None = None
        self._tts_queue: TTSPlaybackQueue | None = None
        self._subtitles = SubtitleQueue(self._clock)
        self._report: InterviewReport | None = None

        self._ticker: TimerHandle | None = None
        self._resume_timer: TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

        self._speech.on_interim(self._on_interim)
        self._speech.on_final(self._on_final)
        self._speech.on_error(self._on_speech_error)

    @property
    def config(self) -> VoiceSessionConfig:
        return self._config

    @property
    def bus(self) -> EventBus:
        return self._bus

    @property
    def state(self) -> InterviewSessionState | None:
        return self._state

    @property
    def orchestrator(self) -> TurnOrchestrator | None:
        return self._orchestrator

    @property
    def tts_queue(self) -> TTSPlaybackQueue | None:
        return self._tts_queue

    @property
    def subtitles(self) -> SubtitleQueue:
        return self._subtitles

    def _require_state(self) -> InterviewSessionState:
        if self._state is None:
            raise RuntimeError("No interview session. Call start() first.")
        return self._state

    async def start(self, params: InterviewParams) -> TurnOutcome:
        """
        Start the interview and request the opening line.

        Args:
            params: Interview parameters.

        Returns:
            Outcome of the initialization request.
        """
        if self._state is not None and self._state.status != InterviewStatus.IDLE:
            raise RuntimeError("Interview already started")

        session_id = await self._create_session_id(params)
        state = InterviewSessionState(session_id, params, clock=self._clock, bus=self._bus)
        self._state = state
        self._report = None

        if self._synth is not None and self._config.tts_enabled:
            options = replace(self._config.speech_options, lang=to_recognition_language(params.language))
            self._tts_queue = TTSPlaybackQueue(
                self._synth,
                options=options,
                on_start=self._on_tts_start,
                on_drained=self._on_tts_drained,
                on_speaking_change=self._on_speaking_change,
            )
        else:
            self._tts_queue = None

        self._orchestrator = TurnOrchestrator(
            state,
            self._client,
            clock=self._clock,
            tts_queue=self._tts_queue,
            policy=self._config.admission,
        )
        self._aggregator = UtteranceAggregator(
            state,
            self._clock,
            self._on_utterance,
            silence_ms=self._config.silence_timeout_ms,
        )
        self._bus.subscribe(MessageAppended, self._on_message_appended)

        logger.info(
            f"Starting interview session={session_id} role={params.role} level={params.level} "
            f"type={params.interview_type} lang={params.language}"
        )
        state.set_status(InterviewStatus.INTERVIEWING)
        self._start_ticker()
        self._speech.set_language(params.language)
        self._speech.start()

        return await self._orchestrator.initialize()

    async def _create_session_id(self, params: InterviewParams) -> str:
        if self._persistence is not None:
            try:
                return await self._persistence.create_session(params)
            except Exception as e:
                logger.warning(f"[PERSIST] session create failed, continuing without persistence: {e}")
        return new_id()

    def submit_text(self, text: str, *, send_now: bool = True) -> None:
        """
        Manual candidate input.

        Args:
            text: Typed answer.
            send_now: Commit immediately instead of waiting for the silence window.
        """
        state = self._require_state()
        if state.status != InterviewStatus.INTERVIEWING or self._aggregator is None:
            logger.info(f"Manual input ignored: session is {state.status.value}")
            return
        self._aggregator.add_final(text)
        if send_now:
            self._aggregator.commit_now()

    async def retry(self) -> TurnOutcome | None:
        """Re-send the last failed request."""
        state = self._require_state()
        if state.status != InterviewStatus.INTERVIEWING or self._orchestrator is None:
            return None
        return await self._orchestrator.retry()

    def pause(self) -> None:
        state = self._require_state()
        if state.status != InterviewStatus.INTERVIEWING:
            return
        state.set_status(InterviewStatus.PAUSED)
        self._cancel_io()
        self._speech.pause()
        self._stop_ticker()
        if not state.request_in_flight:
            state.set_recruiter_state(RecruiterState.IDLE)

    def resume(self) -> None:
        state = self._require_state()
        if state.status != InterviewStatus.PAUSED:
            return
        state.set_status(InterviewStatus.INTERVIEWING)
        self._start_ticker()
        if not state.request_in_flight:
            state.set_recruiter_state(RecruiterState.LISTENING)
        self._speech.resume()

    async def end(self) -> InterviewReport:
        """
        End the interview and build the report.

        In-flight turn requests are not cancelled; their results are
        discarded when they arrive.
        """
        state = self._require_state()
        if state.status == InterviewStatus.ENDED and self._report is not None:
            return self._report

        state.set_status(InterviewStatus.ENDED)
        self._cancel_io()
        self._speech.stop()
        self._stop_ticker()
        self._subtitles.clear()
        state.set_recruiter_state(RecruiterState.IDLE)

        report = state.complete()
        self._report = report
        logger.info(
            f"Interview ended session={state.session_id} messages={len(report.messages)} "
            f"duration={report.duration_sec}s total={report.scores.total}"
        )

        if self._persistence is not None:
            try:
                await self._persistence.end_session(report)
            except Exception as e:
                logger.error(f"[PERSIST] end session failed: {e}")
        return report

    def view(self) -> SessionView:
        state = self._state
        if state is None:
            return SessionView()
        return SessionView(
            session_id=state.session_id,
            status=state.status,
            recruiter_state=state.recruiter_state,
            is_recruiter_speaking=state.is_recruiter_speaking,
            elapsed_sec=state.elapsed_time,
            message_count=len(state.messages),
            live_interim=state.live_interim,
            subtitle=self._subtitles.current,
            subtitle_queue=self._subtitles.pending,
            error=state.last_error,
            cooldown_remaining_ms=state.cooldown_remaining_ms(),
        )

    async def wait_idle(self) -> None:
        """Wait until every spawned turn task has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Tear down the session and release clients."""
        if self._state is not None and self._state.is_active:
            await self.end()
        self._cancel_io()
        self._stop_ticker()
        await self.wait_idle()
        if self._persistence is not None:
            try:
                await self._persistence.close()
            except Exception as e:
                logger.error(f"[PERSIST] close failed: {e}")
        await self._client.close()
        if self._state is not None:
            self._state.reset()
        self._state = None
        self._orchestrator = None
        self._aggregator = None
        self._tts_queue = None

    # Event handlers

    def _on_interim(self, text: str) -> None:
        state = self._state
        if state is None or state.status != InterviewStatus.INTERVIEWING:
            return
        if state.is_recruiter_speaking:
            return
        state.set_live_interim(text)

    def _on_final(self, text: str) -> None:
        state = self._state
        if state is None or state.status != InterviewStatus.INTERVIEWING or self._aggregator is None:
            return
        state.set_live_interim("")
        self._aggregator.add_final(text)

    def _on_speech_error(self, error: SpeechRecognitionError) -> None:
        state = self._state
        if state is None:
            return
        state.set_error(
            ErrorBanner(
                code="SPEECH_ERROR",
                message=f"Speech recognition error: {error.code}",
                hint="Check the microphone, or type your answer instead.",
            )
        )

    def _on_utterance(self, text: str) -> None:
        if self._orchestrator is None:
            return
        self._spawn(self._orchestrator.submit(text))

    def _on_speaking_change(self, speaking: bool) -> None:
        state = self._state
        if state is None:
            return
        state.set_recruiter_speaking(speaking)
        if speaking:
            self._cancel_resume_timer()
            self._speech.pause()
            state.set_live_interim("")

    def _on_tts_start(self) -> None:
        logger.debug("[VOICE][TTS] recruiter started speaking")

    def _on_tts_drained(self) -> None:
        state = self._state
        if state is None or state.status != InterviewStatus.INTERVIEWING:
            return
        state.set_recruiter_state(RecruiterState.LISTENING)
        self._cancel_resume_timer()
        self._resume_timer = self._clock.call_later(
            self._config.mic_resume_grace_ms / 1000.0,
            self._resume_capture,
        )

    def _resume_capture(self) -> None:
        self._resume_timer = None
        state = self._state
        if state is None or state.status != InterviewStatus.INTERVIEWING:
            return
        if state.is_recruiter_speaking:
            return
        logger.debug("[VOICE][STT] resuming capture")
        self._speech.resume()

    def _on_message_appended(self, event: MessageAppended) -> None:
        message = event.message
        self._subtitles.push_message(message)
        if self._persistence is not None:
            self._persistence.queue_message(
                PersistedMessage(
                    role=message.speaker.value,
                    text=message.text,
                    timestamp_ms=int(message.timestamp_ms),
                    elapsed_sec=event.elapsed_sec,
                )
            )

    # Timers and tasks

    def _cancel_io(self) -> None:
        if self._tts_queue is not None:
            self._tts_queue.cancel()
        if self._aggregator is not None:
            self._aggregator.cancel()
        self._cancel_resume_timer()
        if self._state is not None:
            self._state.set_live_interim("")

    def _cancel_resume_timer(self) -> None:
        if self._resume_timer is not None:
            self._resume_timer.cancel()
            self._resume_timer = None

    def _start_ticker(self) -> None:
        self._stop_ticker()
        self._ticker = self._clock.call_later(self._config.tick_interval_s, self._on_tick)

    def _stop_ticker(self) -> None:
        if self._ticker is not None:
            self._ticker.cancel()
            self._ticker = None

    def _on_tick(self) -> None:
        state = self._state
        if state is None or state.status != InterviewStatus.INTERVIEWING:
            self._ticker = None
            return
        state.tick()
        self._ticker = self._clock.call_later(self._config.tick_interval_s, self._on_tick)

    def _spawn(self, coro: Coroutine[Any, Any, Any]) -> asyncio.Task:
        task = asyncio.get_running_loop().create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._on_task_done)
        return task

    def _on_task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Turn task failed", exc_info=exc)
