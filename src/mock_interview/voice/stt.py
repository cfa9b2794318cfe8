"""Speech input.

`SpeechInputAdapter` is the contract the session uses for candidate speech:
interim and final transcript callbacks plus start/stop/pause/resume. Two
implementations exist: `StreamingSpeechInput` wraps a continuous recognition
backend, and `ManualTextInput` is the typed fallback with the same interface.

The default backend records fixed microphone windows and transcribes them
with `faster-whisper` if installed.
"""

from __future__ import annotations

import asyncio
import importlib.util
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Protocol

from mock_interview.voice.audio_io import AudioIO

logger = logging.getLogger(__name__)

LANGUAGE_CODES = {"EN": "en-US", "FR": "fr-FR"}
DEFAULT_LANGUAGE = "en-US"

# Backend error codes that are part of normal operation.
SUPPRESSED_ERRORS = frozenset({"no-speech", "aborted"})


def to_recognition_language(code: str | None) -> str:
    return LANGUAGE_CODES.get((code or "").upper(), DEFAULT_LANGUAGE)


class SpeechRecognitionError(Exception):
    """Recognition error reported by a backend."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(message or f"speech recognition error: {code}")
        self.code = code


class RecognitionStateError(Exception):
    """Raised by a backend asked to start while already running."""


@dataclass(frozen=True)
class RecognitionResult:
    transcript: str
    is_final: bool


ResultsCallback = Callable[[list[RecognitionResult]], None]
ErrorCallback = Callable[[str], None]


class RecognitionBackend(Protocol):
    """Continuous recogniser delivering result batches and error codes."""

    @property
    def is_supported(self) -> bool: ...

    def set_language(self, language: str) -> None: ...

    def start(self, on_results: ResultsCallback, on_error: ErrorCallback) -> None: ...

    def stop(self) -> None: ...


class SpeechInputAdapter(ABC):
    """Candidate speech source."""

    def __init__(self) -> None:
        self._interim_cb: Callable[[str], None] | None = None
        self._final_cb: Callable[[str], None] | None = None
        self._error_cb: Callable[[SpeechRecognitionError], None] | None = None

    @property
    @abstractmethod
    def is_supported(self) -> bool: ...

    @abstractmethod
    def start(self) -> None: ...

    @abstractmethod
    def stop(self) -> None: ...

    @abstractmethod
    def pause(self) -> None:
        """Stop delivering events immediately, including results already in flight."""
        ...

    @abstractmethod
    def resume(self) -> None: ...

    @abstractmethod
    def set_language(self, code: str) -> None: ...

    def on_interim(self, callback: Callable[[str], None]) -> None:
        self._interim_cb = callback

    def on_final(self, callback: Callable[[str], None]) -> None:
        self._final_cb = callback

    def on_error(self, callback: Callable[[SpeechRecognitionError], None]) -> None:
        self._error_cb = callback


class StreamingSpeechInput(SpeechInputAdapter):
    """Adapter over a continuous `RecognitionBackend`."""

    def __init__(self, backend: RecognitionBackend, language: str = "EN") -> None:
        super().__init__()
        self._backend = backend
        self._running = False
        self._paused = False
        self._language = to_recognition_language(language)
        backend.set_language(self._language)

    @property
    def is_supported(self) -> bool:
        return self._backend.is_supported

    @property
    def is_paused(self) -> bool:
        return self._paused

    @property
    def language(self) -> str:
        return self._language

    def start(self) -> None:
        self._running = True
        self._paused = False
        self._start_backend()

    def stop(self) -> None:
        self._running = False
        self._paused = False
        self._backend.stop()

    def pause(self) -> None:
        self._paused = True
        self._backend.stop()

    def resume(self) -> None:
        if not self._running:
            return
        self._paused = False
        self._start_backend()

    def set_language(self, code: str) -> None:
        self._language = to_recognition_language(code)
        self._backend.set_language(self._language)

    def _start_backend(self) -> None:
        try:
            self._backend.start(self._handle_results, self._handle_error)
        except RecognitionStateError:
            logger.debug("[VOICE][STT] backend already started")

    def _handle_results(self, results: list[RecognitionResult]) -> None:
        if self._paused or not self._running:
            return

        interim = "".join(r.transcript for r in results if not r.is_final)
        final = "".join(r.transcript for r in results if r.is_final)

        if interim and self._interim_cb:
            self._interim_cb(interim)
        if final and self._final_cb:
            logger.debug(f"[VOICE][STT] final len={len(final)}")
            self._final_cb(final)

    def _handle_error(self, code: str) -> None:
        if code in SUPPRESSED_ERRORS:
            return
        logger.warning(f"[VOICE][STT] recognition error code={code}")
        if self._error_cb:
            self._error_cb(SpeechRecognitionError(code))


class ManualTextInput(SpeechInputAdapter):
    """Typed input with the speech adapter interface. Always supported."""

    @property
    def is_supported(self) -> bool:
        return True

    def start(self) -> None:
        pass

    def stop(self) -> None:
        pass

    def pause(self) -> None:
        pass

    def resume(self) -> None:
        pass

    def set_language(self, code: str) -> None:
        pass

    def submit_text(self, text: str) -> None:
        if self._final_cb:
            self._final_cb(text)


def create_speech_input(
    backend: RecognitionBackend | None = None,
    *,
    prefer_streaming: bool = True,
    language: str = "EN",
) -> SpeechInputAdapter:
    """Streaming adapter when a supported backend is available, else manual input."""
    if prefer_streaming and backend is not None and backend.is_supported:
        return StreamingSpeechInput(backend, language=language)
    return ManualTextInput()


@dataclass(frozen=True)
class STTConfig:
    model_size: str = "small"
    device: str = "cpu"  # cpu|cuda|auto; cpu works without CUDA/cuDNN
    compute_type: str = "default"  # int8, float16, ...
    vad_filter: bool = True
    window_s: float = 4.0


class WhisperRecognitionBackend:
    """Continuous recogniser: microphone windows transcribed with faster-whisper."""

    def __init__(self, audio: AudioIO | None = None, config: STTConfig | None = None) -> None:
        self._audio = audio or AudioIO()
        self._config = config or STTConfig()
        self._model = None
        self._language: str | None = None
        self._task: asyncio.Task | None = None
        self._on_error: ErrorCallback | None = None

    @property
    def config(self) -> STTConfig:
        return self._config

    @property
    def is_supported(self) -> bool:
        return (
            importlib.util.find_spec("faster_whisper") is not None
            and importlib.util.find_spec("sounddevice") is not None
        )

    def set_language(self, language: str) -> None:
        # Whisper wants the bare ISO code.
        self._language = language.split("-")[0].lower() if language else None

    def start(self, on_results: ResultsCallback, on_error: ErrorCallback) -> None:
        if self._task is not None and not self._task.done():
            raise RecognitionStateError("recognition already started")
        self._on_error = on_error
        self._task = asyncio.get_running_loop().create_task(self._run(on_results, on_error))

    def stop(self) -> None:
        task, self._task = self._task, None
        if task is None or task.done():
            return
        task.cancel()
        if self._on_error:
            self._on_error("aborted")

    def _whisper(self):
        """Load the model on first use; it is large and slow to construct."""
        if self._model is None:
            try:
                from faster_whisper import WhisperModel  # type: ignore
            except ImportError as e:  # pragma: no cover
                raise RuntimeError("faster-whisper is not installed; run: pip install -e '.[voice]'") from e
            logger.info(f"[VOICE][STT] loading whisper {self._config.model_size} on {self._config.device}")
            self._model = WhisperModel(
                self._config.model_size,
                device=self._config.device,
                compute_type=self._config.compute_type,
            )
        return self._model

    async def transcribe(self, samples) -> str:
        """Transcribe mono float32 samples at the capture rate."""

        def _decode() -> str:
            segments, _ = self._whisper().transcribe(
                samples,
                language=self._language,
                vad_filter=self._config.vad_filter,
            )
            return " ".join(seg.text.strip() for seg in segments if seg.text.strip())

        return await asyncio.to_thread(_decode)

    async def _run(self, on_results: ResultsCallback, on_error: ErrorCallback) -> None:
        logger.info(f"[VOICE][STT] listening model={self._config.model_size} window={self._config.window_s}s")
        while True:
            try:
                audio = await self._audio.record_window(self._config.window_s)
            except RuntimeError as e:
                logger.error(f"[VOICE][STT] capture failed: {e}")
                on_error("audio-capture")
                return

            if self._audio.is_silent(audio):
                on_error("no-speech")
                continue

            try:
                text = await self.transcribe(self._audio.to_float32(audio))
            except RuntimeError as e:
                logger.error(f"[VOICE][STT] transcription failed: {e}")
                on_error("service-not-allowed")
                return

            if not text:
                on_error("no-speech")
                continue
            on_results([RecognitionResult(transcript=text, is_final=True)])
