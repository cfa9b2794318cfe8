"""
Main entry point for the mock interview coach.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from mock_interview.clock import Clock, LoopClock
from mock_interview.config import Settings, get_settings
from mock_interview.db.persistence import (
    HttpMessageSink,
    MessageSink,
    PersistenceConfig,
    SessionPersistence,
    SqlMessageSink,
)
from mock_interview.io.console import ConsoleInterface
from mock_interview.models.llm_client import OllamaTurnClient
from mock_interview.models.turn_client import HttpTurnClient, TurnClientBase
from mock_interview.orchestrator.admission import AdmissionPolicy
from mock_interview.orchestrator.schemas import InterviewParams
from mock_interview.voice.audio_io import AudioIO, AudioIOConfig
from mock_interview.voice.stt import (
    ManualTextInput,
    SpeechInputAdapter,
    STTConfig,
    WhisperRecognitionBackend,
    create_speech_input,
)
from mock_interview.voice.tts import ConsoleSynthesizer, PiperSynthesizer, SpeechOptions, SpeechSynthesizer, TTSConfig
from mock_interview.voice.voice_session import VoiceSession, VoiceSessionConfig

logger = logging.getLogger(__name__)


def setup_logging() -> None:
    """Configure application logging."""
    settings = get_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        handlers=[logging.StreamHandler(sys.stdout)],
    )


def build_parser(settings: Settings | None = None) -> argparse.ArgumentParser:
    settings = settings or get_settings()
    p = argparse.ArgumentParser(prog="mock-interview", description="Practice a job interview with an AI recruiter")
    p.add_argument("--mode", choices=["text", "voice"], default=settings.speech_mode, help="Run in text or voice mode")
    p.add_argument("--role", default="Backend", help="Role being interviewed for")
    p.add_argument("--level", default="mid", help="Seniority level")
    p.add_argument("--interview-type", default="Mixed", help="Technical, Behavioral or Mixed")
    p.add_argument("--language", choices=["EN", "FR"], default=settings.language)
    p.add_argument("--duration", type=int, default=None, help="Planned duration in minutes")
    p.add_argument(
        "--backend",
        choices=["http", "ollama"],
        default=settings.turn_backend,
        help="Where recruiter turns come from",
    )
    p.add_argument(
        "--persist",
        choices=["none", "sql", "http"],
        default=settings.persistence_backend,
        help="Where the transcript is mirrored",
    )
    p.add_argument("--no-tts", action="store_true", help="Do not speak recruiter turns (voice mode)")
    return p


def build_params(args: argparse.Namespace) -> InterviewParams:
    return InterviewParams(
        role=args.role,
        level=args.level,
        interview_type=args.interview_type,
        language=args.language,
        duration_minutes=args.duration,
    )


def build_turn_client(backend: str, settings: Settings) -> TurnClientBase:
    if backend == "ollama":
        return OllamaTurnClient(
            model=settings.llm_model_name,
            max_retries=settings.llm_max_retries,
            timeout=settings.llm_timeout,
        )
    return HttpTurnClient(base_url=settings.turn_api_url, timeout=settings.turn_api_timeout)


async def build_persistence(backend: str, settings: Settings, clock: Clock) -> SessionPersistence | None:
    sink: MessageSink
    if backend == "sql":
        sql_sink = SqlMessageSink(settings.database_url)
        await sql_sink.init_schema()
        sink = sql_sink
    elif backend == "http":
        sink = HttpMessageSink(settings.persistence_api_url)
    else:
        return None

    config = PersistenceConfig(
        flush_interval_s=settings.persistence_flush_interval_s,
        flush_batch=settings.persistence_flush_batch,
    )
    return SessionPersistence(sink, clock, config)


def build_session_config(settings: Settings, *, tts_enabled: bool) -> VoiceSessionConfig:
    return VoiceSessionConfig(
        silence_timeout_ms=settings.silence_timeout_ms,
        mic_resume_grace_ms=settings.mic_resume_grace_ms,
        tts_enabled=tts_enabled,
        speech_options=SpeechOptions(
            voice=settings.tts_voice,
            rate=settings.tts_rate,
            pitch=settings.tts_pitch,
            volume=settings.tts_volume,
        ),
        admission=AdmissionPolicy(
            min_words=settings.min_utterance_words,
            min_chars=settings.min_utterance_chars,
            duplicate_window_ms=settings.duplicate_window_ms,
            rate_limit_cooldown_ms=settings.rate_limit_cooldown_ms,
            failure_cooldown_ms=settings.failure_cooldown_ms,
        ),
    )


def build_speech_io(
    mode: str, settings: Settings, clock: Clock, language: str
) -> tuple[SpeechInputAdapter, SpeechSynthesizer]:
    """Speech input and output for the chosen mode."""
    if mode != "voice":
        return ManualTextInput(), ConsoleSynthesizer(clock)

    audio = AudioIO(AudioIOConfig())
    backend = WhisperRecognitionBackend(
        audio,
        STTConfig(model_size=settings.stt_model, device=settings.stt_device, window_s=settings.stt_window_s),
    )
    speech_input = create_speech_input(backend, language=language)
    if isinstance(speech_input, ManualTextInput):
        logger.warning("[VOICE] speech recognition unavailable, falling back to typed input")

    synthesizer = PiperSynthesizer(
        TTSConfig(piper_bin=settings.piper_bin, model_path=settings.piper_model, timeout_s=settings.piper_timeout),
        audio,
    )
    ok, reason = synthesizer.is_available()
    if not ok:
        logger.warning(f"[VOICE] Piper unavailable ({reason}), recruiter turns will be text only")
    return speech_input, synthesizer


async def run_interview(argv: list[str] | None = None) -> None:
    """
    Run an interactive interview session.

    This is the main async entry point that initializes all components
    and runs the interview loop.
    """
    settings = get_settings()
    args = build_parser(settings).parse_args(argv)
    params = build_params(args)
    clock = LoopClock()

    logger.info(f"Starting mock interview mode={args.mode} backend={args.backend} persist={args.persist}")

    client = build_turn_client(args.backend, settings)
    persistence = await build_persistence(args.persist, settings, clock)
    speech_input, synthesizer = build_speech_io(args.mode, settings, clock, params.language)
    tts_enabled = settings.tts_enabled and not args.no_tts

    session = VoiceSession(
        client=client,
        speech_input=speech_input,
        synthesizer=synthesizer,
        clock=clock,
        persistence=persistence,
        config=build_session_config(settings, tts_enabled=tts_enabled),
    )
    interface = ConsoleInterface(session, params)
    try:
        await interface.run()
    finally:
        await session.close()


def main() -> None:
    """Main entry point for the application."""
    setup_logging()

    try:
        asyncio.run(run_interview(sys.argv[1:]))
    except KeyboardInterrupt:
        print("\nInterview session terminated by user.")
        sys.exit(0)
    except Exception as e:
        logger.error(f"Application error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
