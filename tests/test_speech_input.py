import pytest

from fakes import FakeRecognitionBackend
from mock_interview.voice.stt import (
    ManualTextInput,
    RecognitionResult,
    SpeechRecognitionError,
    StreamingSpeechInput,
    create_speech_input,
    to_recognition_language,
)


def _wired(language: str = "EN"):
    backend = FakeRecognitionBackend()
    speech = StreamingSpeechInput(backend, language=language)
    events: list[tuple[str, object]] = []
    speech.on_interim(lambda text: events.append(("interim", text)))
    speech.on_final(lambda text: events.append(("final", text)))
    speech.on_error(lambda err: events.append(("error", err)))
    return backend, speech, events


@pytest.mark.parametrize(
    "code,expected",
    [("EN", "en-US"), ("fr", "fr-FR"), ("DE", "en-US"), (None, "en-US")],
)
def test_language_mapping(code, expected) -> None:
    assert to_recognition_language(code) == expected


def test_interim_is_delivered_before_final() -> None:
    backend, speech, events = _wired("FR")
    speech.start()

    assert backend.language == "fr-FR"
    assert backend.starts == 1

    backend.emit_batch(
        [
            RecognitionResult("j'ai travaillé ", is_final=True),
            RecognitionResult("sur", is_final=False),
        ]
    )

    assert events == [("interim", "sur"), ("final", "j'ai travaillé ")]


def test_pause_suppresses_results_already_in_flight() -> None:
    backend, speech, events = _wired()
    speech.start()

    speech.pause()
    backend.emit("the recruiter's own voice")

    assert speech.is_paused is True
    assert backend.stops == 1
    assert events == []

    speech.resume()
    backend.emit("my real answer")

    assert backend.starts == 2
    assert events == [("final", "my real answer")]


def test_resume_before_start_does_nothing() -> None:
    backend, speech, _ = _wired()

    speech.resume()

    assert backend.starts == 0


def test_starting_twice_is_tolerated() -> None:
    backend, speech, _ = _wired()

    speech.start()
    speech.start()

    assert backend.starts == 1


def test_results_after_stop_are_ignored() -> None:
    backend, speech, events = _wired()
    speech.start()
    speech.stop()

    backend.emit("late result")

    assert events == []


def test_routine_errors_are_suppressed() -> None:
    backend, speech, events = _wired()
    speech.start()

    backend.emit_error("no-speech")
    backend.emit_error("aborted")
    backend.emit_error("not-allowed")

    assert len(events) == 1
    kind, error = events[0]
    assert kind == "error"
    assert isinstance(error, SpeechRecognitionError)
    assert error.code == "not-allowed"


def test_set_language_is_forwarded() -> None:
    backend, speech, _ = _wired()

    speech.set_language("FR")

    assert speech.language == "fr-FR"
    assert backend.language == "fr-FR"


def test_create_speech_input_falls_back_to_manual() -> None:
    assert isinstance(create_speech_input(FakeRecognitionBackend()), StreamingSpeechInput)
    assert isinstance(create_speech_input(FakeRecognitionBackend(supported=False)), ManualTextInput)
    assert isinstance(create_speech_input(None), ManualTextInput)
    assert isinstance(create_speech_input(FakeRecognitionBackend(), prefer_streaming=False), ManualTextInput)


def test_manual_input_delivers_finals() -> None:
    speech = ManualTextInput()
    finals: list[str] = []
    speech.on_final(finals.append)

    speech.start()
    speech.submit_text("typed answer")

    assert speech.is_supported is True
    assert finals == ["typed answer"]
