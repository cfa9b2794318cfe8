import pytest

from fakes import ManualClock, ScriptedTurnClient, make_failure, make_turn
from mock_interview.io.console import ConsoleInterface
from mock_interview.orchestrator.schemas import InterviewParams
from mock_interview.voice.stt import ManualTextInput
from mock_interview.voice.voice_session import VoiceSession, VoiceSessionConfig


def _console(monkeypatch, clock: ManualClock, lines: list[str], results):
    feed = iter(lines)

    def fake_input(prompt: str = "") -> str:
        try:
            return next(feed)
        except StopIteration:
            raise EOFError from None

    monkeypatch.setattr("builtins.input", fake_input)
    client = ScriptedTurnClient(results)
    session = VoiceSession(
        client=client,
        speech_input=ManualTextInput(),
        clock=clock,
        config=VoiceSessionConfig(tts_enabled=False),
    )
    output: list[str] = []
    console = ConsoleInterface(session, InterviewParams(role="Backend"), write=output.append)
    return console, client, output


@pytest.mark.asyncio
async def test_console_runs_an_interview_until_end(monkeypatch, clock: ManualClock) -> None:
    console, client, output = _console(
        monkeypatch,
        clock,
        ["I design REST APIs in Python", "/retry", "/end"],
        [make_turn("Welcome. Tell me about yourself.", score=60), make_turn("Which framework?", score=80)],
    )

    report = await console.run()
    text = "\n".join(output)

    assert "Recruiter: Welcome. Tell me about yourself." in text
    assert "Recruiter: Which framework?" in text
    assert "[nothing to retry]" in text
    assert "Overall:         70.0" in text
    assert len(report.messages) == 3
    assert len(client.requests) == 2


@pytest.mark.asyncio
async def test_console_shows_errors_and_ends_on_eof(monkeypatch, clock: ManualClock) -> None:
    console, _, output = _console(
        monkeypatch,
        clock,
        ["I design REST APIs in Python"],
        [make_turn("Welcome."), make_failure("RATE_LIMITED")],
    )

    report = await console.run()
    text = "\n".join(output)

    assert "[error] RATE_LIMITED" in text
    assert "No scored answers." not in text
    assert [m.text for m in report.messages] == ["Welcome."]
