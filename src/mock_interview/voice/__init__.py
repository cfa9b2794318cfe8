"""Voice subsystem.

speech input -> utterance aggregator -> turn orchestrator -> TTS queue -> speaker

Audio device access (sounddevice, faster-whisper, Piper) is resolved lazily,
so text mode runs without them.
"""

from mock_interview.voice.stt import (
    ManualTextInput,
    SpeechInputAdapter,
    SpeechRecognitionError,
    STTConfig,
    StreamingSpeechInput,
    WhisperRecognitionBackend,
    create_speech_input,
)
from mock_interview.voice.subtitles import SubtitleQueue, chunk_message
from mock_interview.voice.tts import ConsoleSynthesizer, PiperSynthesizer, SpeechOptions, SpeechSynthesizer, TTSConfig
from mock_interview.voice.tts_queue import TTSPlaybackQueue, split_sentences
from mock_interview.voice.utterance import UtteranceAggregator
from mock_interview.voice.voice_session import VoiceSession, VoiceSessionConfig

__all__ = [
    "ManualTextInput",
    "SpeechInputAdapter",
    "SpeechRecognitionError",
    "STTConfig",
    "StreamingSpeechInput",
    "WhisperRecognitionBackend",
    "create_speech_input",
    "SubtitleQueue",
    "chunk_message",
    "ConsoleSynthesizer",
    "PiperSynthesizer",
    "SpeechOptions",
    "SpeechSynthesizer",
    "TTSConfig",
    "TTSPlaybackQueue",
    "split_sentences",
    "UtteranceAggregator",
    "VoiceSession",
    "VoiceSessionConfig",
]
