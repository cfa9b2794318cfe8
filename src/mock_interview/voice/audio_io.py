"""Microphone windows and speaker playback.

Plain hardware I/O. The recognition backend records fixed windows through
`record_window`. Piper output is played through `play_wav`, which
`stop_playback` interrupts when the recruiter's speech is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import wave
from dataclasses import dataclass
from pathlib import Path

import numpy as np

logger = logging.getLogger(__name__)

_INT16_SCALE = 32768.0

_SOUNDDEVICE_HINT = (
    "sounddevice is required for voice mode. Install it with: pip install -e '.[voice]'. "
    "On 'PortAudio library not found', install PortAudio first (Debian/Ubuntu: sudo apt-get install portaudio19-dev)."
)


@dataclass(frozen=True)
class AudioIOConfig:
    sample_rate: int = 16000
    channels: int = 1
    silence_rms_threshold: float = 0.01


def pcm16_to_mono_float(audio: np.ndarray) -> np.ndarray:
    """int16 frames -> mono float32 in [-1, 1] (faster-whisper's input format)."""
    samples = audio.astype(np.float32) / _INT16_SCALE
    if samples.ndim > 1:
        samples = samples.mean(axis=1)
    return samples


def rms(samples: np.ndarray) -> float:
    if samples.size == 0:
        return 0.0
    return float(np.sqrt(np.mean(np.square(samples, dtype=np.float64))))


class AudioIO:
    def __init__(self, config: AudioIOConfig | None = None) -> None:
        self._config = config or AudioIOConfig()
        self._sd = None

    @property
    def config(self) -> AudioIOConfig:
        return self._config

    def _device(self):
        if self._sd is None:
            try:
                import sounddevice  # type: ignore
            except (ImportError, OSError) as e:  # pragma: no cover
                raise RuntimeError(_SOUNDDEVICE_HINT) from e
            self._sd = sounddevice
        return self._sd

    async def record_window(self, seconds: float) -> np.ndarray:
        """Block a worker thread for `seconds` of int16 input, shaped [frames, channels]."""
        sd = self._device()
        frames = max(1, int(seconds * self._config.sample_rate))

        def _capture() -> np.ndarray:
            window = sd.rec(frames, samplerate=self._config.sample_rate, channels=self._config.channels, dtype="int16")
            sd.wait()
            return window

        return await asyncio.to_thread(_capture)

    def to_float32(self, audio: np.ndarray) -> np.ndarray:
        return pcm16_to_mono_float(audio)

    def is_silent(self, audio: np.ndarray) -> bool:
        return rms(pcm16_to_mono_float(audio)) < self._config.silence_rms_threshold

    def read_wav(self, wav_path: str | Path) -> tuple[np.ndarray, int]:
        """Load a 16-bit PCM WAV as ([frames, channels] int16, sample rate)."""
        with wave.open(str(wav_path), "rb") as wf:
            if wf.getsampwidth() != 2:
                raise ValueError(f"{wav_path}: expected 16-bit PCM, got {8 * wf.getsampwidth()}-bit")
            channels = wf.getnchannels()
            rate = wf.getframerate()
            raw = wf.readframes(wf.getnframes())
        return np.frombuffer(raw, dtype=np.int16).reshape(-1, channels), rate

    async def play_wav(self, wav_path: str | Path, *, volume: float = 1.0) -> None:
        """Play until the clip ends or `stop_playback()` cuts it off."""
        sd = self._device()
        audio, rate = self.read_wav(wav_path)
        samples = np.clip(audio.astype(np.float32) / _INT16_SCALE * float(volume), -1.0, 1.0)
        if samples.shape[1] == 1:
            samples = samples[:, 0]

        logger.debug(f"[VOICE][AUDIO] playing {samples.shape[0] / rate:.2f}s at volume {volume}")
        sd.play(samples, samplerate=rate, blocking=False)
        await asyncio.to_thread(sd.wait)

    def stop_playback(self) -> None:
        if self._sd is not None:
            self._sd.stop()
