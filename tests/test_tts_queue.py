import asyncio
import wave
from pathlib import Path

import pytest

from fakes import ManualClock, ManualSynthesizer
from mock_interview.voice.tts import ConsoleSynthesizer, PiperSynthesizer, SpeechOptions, SpeechSynthesizer
from mock_interview.voice.tts_queue import TTSPlaybackQueue, split_sentences


class _Recorder:
    def __init__(self) -> None:
        self.events: list[object] = []

    def queue(self, synth: SpeechSynthesizer) -> TTSPlaybackQueue:
        return TTSPlaybackQueue(
            synth,
            options=SpeechOptions(lang="fr-FR"),
            on_start=lambda: self.events.append("start"),
            on_drained=lambda: self.events.append("drained"),
            on_speaking_change=self.events.append,
        )


def test_split_sentences() -> None:
    assert split_sentences("Hello there. How are you?") == (["Hello there."], "How are you?")
    assert split_sentences("Note: this\nand that") == (["Note:", "this"], "and that")
    assert split_sentences("It took 3.5 seconds") == ([], "It took 3.5 seconds")
    assert split_sentences("Wow!  Really? ") == (["Wow!", "Really?"], " ")


def test_units_play_in_order_one_at_a_time() -> None:
    synth = ManualSynthesizer()
    recorder = _Recorder()
    queue = recorder.queue(synth)

    queue.enqueue("Hello there. How are you?")
    assert synth.spoken == ["Hello there."]
    assert queue.buffer == "How are you?"

    queue.flush()
    assert synth.spoken == ["Hello there."]
    assert queue.pending == ["How are you?"]
    assert synth.options.lang == "fr-FR"

    synth.finish()
    assert synth.spoken == ["Hello there.", "How are you?"]
    assert queue.is_speaking is True

    synth.finish()
    assert queue.is_speaking is False
    assert recorder.events == [True, "start", False, "drained"]


def test_cancel_stops_playback_and_ignores_stale_callbacks() -> None:
    synth = ManualSynthesizer()
    recorder = _Recorder()
    queue = recorder.queue(synth)

    queue.enqueue("First sentence. Second sentence. Third")
    synth.start()
    queue.cancel()

    assert synth.cancelled == 1
    assert queue.pending == []
    assert queue.buffer == ""
    assert queue.is_speaking is False

    # The cancelled unit reports its end late.
    synth.finish()
    assert synth.spoken == ["First sentence."]
    assert recorder.events == [True, "start", False]


def test_cancel_when_idle_does_not_notify() -> None:
    synth = ManualSynthesizer()
    recorder = _Recorder()
    queue = recorder.queue(synth)

    queue.cancel()

    assert recorder.events == []


def test_failed_unit_is_skipped() -> None:
    synth = ManualSynthesizer()
    recorder = _Recorder()
    queue = recorder.queue(synth)

    queue.enqueue("Broken one. Working one.")
    queue.flush()
    synth.fail()
    assert synth.spoken == ["Broken one.", "Working one."]

    synth.finish()
    assert recorder.events[-2:] == [False, "drained"]


class _RaisingSynthesizer(SpeechSynthesizer):
    def __init__(self) -> None:
        self.calls = 0

    def speak(self, text, options, *, on_start=None, on_end=None, on_error=None) -> None:
        self.calls += 1
        raise RuntimeError("no audio device")

    def cancel(self) -> None:
        pass


def test_synchronous_synthesizer_error_drains_the_queue() -> None:
    synth = _RaisingSynthesizer()
    recorder = _Recorder()
    queue = recorder.queue(synth)

    queue.enqueue("One. Two.")
    queue.flush()

    assert synth.calls == 2
    assert queue.is_speaking is False
    assert recorder.events == [True, False, "drained", True, False, "drained"]


def test_console_synthesizer_reports_end_on_the_clock(clock: ManualClock) -> None:
    written: list[str] = []
    synth = ConsoleSynthesizer(clock, write=written.append, words_per_second=2.0)
    events: list[str] = []

    synth.speak(
        "one two three four",
        SpeechOptions(),
        on_start=lambda: events.append("start"),
        on_end=lambda: events.append("end"),
    )
    assert events == ["start"]
    assert written == ["one two three four"]

    clock.advance(1_999)
    assert events == ["start"]
    clock.advance(1)
    assert events == ["start", "end"]


def test_console_synthesizer_cancel(clock: ManualClock) -> None:
    synth = ConsoleSynthesizer(clock)
    events: list[str] = []

    synth.speak("hello", SpeechOptions(), on_end=lambda: events.append("end"))
    synth.cancel()
    clock.advance(10)

    assert events == []


class _TruncatedWavAudio:
    def __init__(self) -> None:
        self.played: list[Path] = []

    async def play_wav(self, wav_path, *, volume: float = 1.0) -> None:
        self.played.append(Path(wav_path))
        raise wave.Error("unexpected end of data")

    def stop_playback(self) -> None:
        pass


@pytest.mark.asyncio
async def test_playback_error_does_not_jam_the_queue() -> None:
    audio = _TruncatedWavAudio()
    synth = PiperSynthesizer(audio=audio)

    async def fake_synthesize(text: str, wav_path: Path, options: SpeechOptions) -> Path:
        return wav_path

    synth.synthesize_to_wav = fake_synthesize  # type: ignore[assignment]
    recorder = _Recorder()
    queue = recorder.queue(synth)

    queue.enqueue("Hello there. How are you?")
    queue.flush()
    for _ in range(10):
        await asyncio.sleep(0)

    assert len(audio.played) == 2
    assert queue.is_speaking is False
    assert queue.pending == []
    assert recorder.events[-2:] == [False, "drained"]
