"""Text-to-speech (offline).

`SpeechSynthesizer` is the backend contract used by the playback queue:
`speak()` starts one utterance and reports start/end/error through callbacks,
`cancel()` stops whatever is playing.

Default implementation uses `piper` via subprocess if available.
"""

from __future__ import annotations

import asyncio
import logging
import shutil
import subprocess
import tempfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

from mock_interview.clock import Clock, TimerHandle
from mock_interview.voice.audio_io import AudioIO

logger = logging.getLogger(__name__)


class SynthesisError(Exception):
    """Raised (or reported) when an utterance could not be synthesized or played."""

    def __init__(self, message: str, text: str = "") -> None:
        super().__init__(message)
        self.text = text


@dataclass(frozen=True)
class SpeechOptions:
    voice: str | None = None
    rate: float = 1.0
    pitch: float = 1.0
    volume: float = 1.0
    lang: str = "en-US"


class SpeechSynthesizer(ABC):
    @abstractmethod
    def speak(
        self,
        text: str,
        options: SpeechOptions,
        *,
        on_start: Callable[[], None] | None = None,
        on_end: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        """Start speaking `text`; completion is reported through the callbacks."""
        ...

    @abstractmethod
    def cancel(self) -> None: ...


@dataclass(frozen=True)
class TTSConfig:
    piper_bin: str = "piper"
    model_path: str | None = None  # *.onnx voice
    speaker_id: int | None = None
    timeout_s: float = 60.0


def locate_piper(config: TTSConfig) -> str:
    """
    Resolve the Piper TTS binary and check the voice model is configured.

    Raises RuntimeError with a setup hint. Some distributions ship an
    unrelated GTK app as /usr/bin/piper, so the binary's --help output is
    checked for Piper's flags.
    """
    path = shutil.which(config.piper_bin)
    if not path:
        raise RuntimeError(f"piper CLI '{config.piper_bin}' not found on PATH; set PIPER_BIN to the Piper TTS binary.")
    try:
        probe = subprocess.run(
            [path, "--help"], text=True, stdout=subprocess.PIPE, stderr=subprocess.STDOUT, timeout=5, check=False
        )
    except (OSError, subprocess.SubprocessError) as e:
        raise RuntimeError(f"{path} could not be started: {e}") from e
    usage = (probe.stdout or "").lower()
    if "application options" in usage or not ("--model" in usage or "--output_file" in usage):
        raise RuntimeError(f"{path} is not the Piper TTS CLI; point PIPER_BIN at the Piper TTS binary.")
    if not config.model_path:
        raise RuntimeError("No Piper voice configured; set PIPER_MODEL=/path/to/voice.onnx.")
    return path


class PiperSynthesizer(SpeechSynthesizer):
    """Synthesizes each unit to a temporary WAV with Piper, then plays it."""

    def __init__(self, config: TTSConfig | None = None, audio: AudioIO | None = None) -> None:
        self._config = config or TTSConfig()
        self._audio = audio or AudioIO()
        self._piper: str | None = None
        self._task: asyncio.Task | None = None
        self._playing = False

    @property
    def config(self) -> TTSConfig:
        return self._config

    def is_available(self) -> tuple[bool, str]:
        try:
            self._piper = self._piper or locate_piper(self._config)
        except RuntimeError as e:
            return False, str(e)
        return True, "ok"

    def _command(self, wav_path: Path, options: SpeechOptions) -> list[str]:
        if self._piper is None:
            self._piper = locate_piper(self._config)
        model = options.voice if options.voice and options.voice.endswith(".onnx") else self._config.model_path
        cmd = [self._piper, "--model", str(model), "--output_file", str(wav_path)]
        if self._config.speaker_id is not None:
            cmd += ["--speaker", str(self._config.speaker_id)]
        if options.rate and options.rate != 1.0:
            # length_scale is inverse speed
            cmd += ["--length_scale", f"{1.0 / options.rate:.3f}"]
        return cmd

    async def synthesize_to_wav(self, text: str, wav_path: Path, options: SpeechOptions) -> Path:
        proc = await asyncio.create_subprocess_exec(
            *self._command(wav_path, options),
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        try:
            _, stderr = await asyncio.wait_for(proc.communicate(text.encode()), self._config.timeout_s)
        except asyncio.TimeoutError as e:
            proc.kill()
            raise SynthesisError(f"piper gave no audio within {self._config.timeout_s:.1f}s", text) from e
        except asyncio.CancelledError:
            proc.kill()
            raise
        if proc.returncode != 0:
            detail = stderr.decode(errors="replace").strip() or "<no stderr>"
            raise SynthesisError(f"piper exited with {proc.returncode}: {detail}", text)
        return wav_path

    def speak(
        self,
        text: str,
        options: SpeechOptions,
        *,
        on_start: Callable[[], None] | None = None,
        on_end: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        self._task = asyncio.get_running_loop().create_task(
            self._speak(text, options, on_start, on_end, on_error)
        )

    async def _speak(
        self,
        text: str,
        options: SpeechOptions,
        on_start: Callable[[], None] | None,
        on_end: Callable[[], None] | None,
        on_error: Callable[[Exception], None] | None,
    ) -> None:
        with tempfile.TemporaryDirectory(prefix="mock_interview_tts_") as tmp:
            try:
                wav = await self.synthesize_to_wav(text, Path(tmp) / "unit.wav", options)
                if on_start:
                    on_start()
                self._playing = True
                await self._audio.play_wav(wav, volume=options.volume)
            except Exception as e:
                logger.warning(f"[VOICE][TTS] unit failed: {type(e).__name__}: {e}")
                if on_error:
                    on_error(e)
                return
            finally:
                self._playing = False

        if on_end:
            on_end()

    def cancel(self) -> None:
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()
        if self._playing:
            self._audio.stop_playback()
            self._playing = False


class ConsoleSynthesizer(SpeechSynthesizer):
    """
    Stand-in voice for text mode.

    Optionally writes each unit to the terminal and reports the end after an
    estimated speaking time on the session clock (immediately by default).
    """

    def __init__(
        self,
        clock: Clock,
        *,
        write: Callable[[str], None] | None = None,
        words_per_second: float | None = None,
    ) -> None:
        self._clock = clock
        self._write = write
        self._words_per_second = words_per_second
        self._timer: TimerHandle | None = None

    def _duration_s(self, text: str, options: SpeechOptions) -> float:
        if not self._words_per_second:
            return 0.0
        return len(text.split()) / (self._words_per_second * max(options.rate, 0.1))

    def speak(
        self,
        text: str,
        options: SpeechOptions,
        *,
        on_start: Callable[[], None] | None = None,
        on_end: Callable[[], None] | None = None,
        on_error: Callable[[Exception], None] | None = None,
    ) -> None:
        if on_start:
            on_start()
        if self._write:
            self._write(text)

        def _done() -> None:
            self._timer = None
            if on_end:
                on_end()

        self._timer = self._clock.call_later(self._duration_s(text, options), _done)

    def cancel(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
