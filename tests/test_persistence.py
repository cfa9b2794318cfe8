import asyncio
import json
import logging

import httpx
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine

from fakes import ManualClock
from mock_interview.db.persistence import (
    HttpMessageSink,
    MessageSink,
    PersistedMessage,
    PersistenceConfig,
    PersistenceError,
    SessionPersistence,
    SqlMessageSink,
)
from mock_interview.db.repository import SessionRepository
from mock_interview.orchestrator.schemas import (
    ConversationMessage,
    InterviewParams,
    InterviewReport,
    ReportScores,
    Speaker,
)


class FakeSink(MessageSink):
    def __init__(self) -> None:
        self.saved: list[tuple[str, str]] = []
        self.ended: list[str] = []
        self.fail_saves = False
        self.gate: asyncio.Event | None = None

    async def create_session(self, params: InterviewParams) -> str:
        return "sess-1"

    async def save_message(self, session_id: str, message: PersistedMessage) -> None:
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_saves:
            raise PersistenceError("sink down", session_id, 503)
        self.saved.append((session_id, message.text))

    async def end_session(self, session_id: str, report: InterviewReport) -> None:
        self.ended.append(session_id)


def _msg(text: str) -> PersistedMessage:
    return PersistedMessage(role="candidate", text=text, timestamp_ms=1, elapsed_sec=0)


async def _settle() -> None:
    for _ in range(3):
        await asyncio.sleep(0)


async def _persistence(clock: ManualClock, sink: FakeSink | None = None) -> tuple[SessionPersistence, FakeSink]:
    sink = sink or FakeSink()
    persistence = SessionPersistence(sink, clock, PersistenceConfig(flush_interval_s=2.0, flush_batch=5))
    await persistence.create_session(InterviewParams())
    return persistence, sink


@pytest.mark.asyncio
async def test_five_queued_messages_flush_immediately(clock: ManualClock) -> None:
    persistence, sink = await _persistence(clock)

    for i in range(4):
        persistence.queue_message(_msg(f"m{i}"))
    await _settle()
    assert sink.saved == []

    persistence.queue_message(_msg("m4"))
    await _settle()

    assert [text for _, text in sink.saved] == ["m0", "m1", "m2", "m3", "m4"]
    assert {sid for sid, _ in sink.saved} == {"sess-1"}
    assert persistence.queued == 0


@pytest.mark.asyncio
async def test_timer_flushes_every_two_seconds(clock: ManualClock) -> None:
    persistence, sink = await _persistence(clock)

    persistence.queue_message(_msg("a"))
    persistence.queue_message(_msg("b"))
    clock.advance(1_999)
    await _settle()
    assert sink.saved == []

    clock.advance(1)
    await _settle()
    assert [text for _, text in sink.saved] == ["a", "b"]

    persistence.queue_message(_msg("c"))
    clock.advance(2_000)
    await _settle()
    assert [text for _, text in sink.saved] == ["a", "b", "c"]


@pytest.mark.asyncio
async def test_message_without_session_is_ignored(clock: ManualClock, caplog) -> None:
    persistence = SessionPersistence(FakeSink(), clock)

    with caplog.at_level(logging.WARNING):
        persistence.queue_message(_msg("lost"))

    assert persistence.queued == 0
    assert "no active session" in caplog.text


@pytest.mark.asyncio
async def test_failed_flush_is_logged_and_dropped(clock: ManualClock, caplog) -> None:
    persistence, sink = await _persistence(clock)
    sink.fail_saves = True

    with caplog.at_level(logging.ERROR):
        for i in range(5):
            persistence.queue_message(_msg(f"m{i}"))
        await _settle()

    assert persistence.queued == 0
    assert sink.saved == []
    assert "dropped" in caplog.text

    sink.fail_saves = False
    persistence.queue_message(_msg("after"))
    await persistence.flush()
    assert [text for _, text in sink.saved] == ["after"]


@pytest.mark.asyncio
async def test_flushes_are_single_flight(clock: ManualClock) -> None:
    sink = FakeSink()
    sink.gate = asyncio.Event()
    persistence, _ = await _persistence(clock, sink)

    for i in range(5):
        persistence.queue_message(_msg(f"m{i}"))
    await _settle()
    assert persistence.queued == 0

    # First batch is still being written; the second trigger must not start another flush.
    for i in range(5, 10):
        persistence.queue_message(_msg(f"m{i}"))
    await _settle()
    assert persistence.queued == 5
    assert sink.saved == []

    sink.gate.set()
    await _settle()
    await persistence.flush()

    assert [text for _, text in sink.saved] == [f"m{i}" for i in range(10)]


@pytest.mark.asyncio
async def test_end_session_flushes_and_stops_the_timer(clock: ManualClock) -> None:
    persistence, sink = await _persistence(clock)
    persistence.queue_message(_msg("last words"))

    await persistence.end_session(InterviewReport(session_id="sess-1", params=InterviewParams()))

    assert [text for _, text in sink.saved] == ["last words"]
    assert sink.ended == ["sess-1"]
    assert clock.pending == 0


@pytest.mark.asyncio
async def test_end_session_without_session_raises(clock: ManualClock) -> None:
    persistence = SessionPersistence(FakeSink(), clock)

    with pytest.raises(PersistenceError):
        await persistence.end_session(InterviewReport(session_id="x", params=InterviewParams()))


@pytest.mark.asyncio
async def test_sql_sink_round_trip(tmp_path) -> None:
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'interviews.db'}")
    sink = SqlMessageSink(engine=engine)
    await sink.init_schema()

    session_id = await sink.create_session(InterviewParams(role="Cloud", interview_type="Tech"))
    await sink.save_message(session_id, PersistedMessage(role="recruiter", text="Hi!", timestamp_ms=10))
    await sink.save_message(
        session_id, PersistedMessage(role="candidate", text="Hello there", timestamp_ms=20, elapsed_sec=3)
    )
    report = InterviewReport(
        session_id=session_id,
        params=InterviewParams(role="Cloud"),
        scores=ReportScores(total=71.5, technical=70, communication=73, problem_solving=71.5),
    )
    await sink.end_session(session_id, report)

    async with async_sessionmaker(engine)() as session:
        repo = SessionRepository(session)
        model = await repo.get_by_id(session_id)
        messages = await repo.get_messages(session_id)

    assert model.status == "ended"
    assert model.interview_type == "Tech"
    assert model.overall_score == 71.5
    assert model.report["session_id"] == session_id
    assert [(m.sequence, m.role, m.text) for m in messages] == [(0, "recruiter", "Hi!"), (1, "candidate", "Hello there")]
    assert messages[1].elapsed_sec == 3

    with pytest.raises(PersistenceError):
        await sink.end_session("missing", report)
    await sink.close()


@pytest.mark.asyncio
async def test_http_sink_paths_and_bodies() -> None:
    calls: list[tuple[str, dict]] = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        calls.append((request.url.path, body))
        if request.url.path == "/api/sessions/create":
            return httpx.Response(200, json={"sessionId": "remote-7"})
        return httpx.Response(200, json={"ok": True})

    sink = HttpMessageSink("http://sessions.test", transport=httpx.MockTransport(handler))
    session_id = await sink.create_session(InterviewParams(interview_type="HR"))
    await sink.save_message(session_id, PersistedMessage(role="candidate", text="hi", timestamp_ms=5, elapsed_sec=1))
    report = InterviewReport(
        session_id=session_id,
        params=InterviewParams(),
        messages=[ConversationMessage(speaker=Speaker.RECRUITER, text="Bye.", timestamp_ms=9)],
    )
    await sink.end_session(session_id, report)
    await sink.close()

    assert session_id == "remote-7"
    assert calls[0][1]["interviewType"] == "HR"
    assert calls[1] == (
        "/api/sessions/remote-7/message",
        {"role": "candidate", "text": "hi", "timestampMs": 5, "elapsedSec": 1},
    )
    assert calls[2][0] == "/api/sessions/remote-7/end"
    assert calls[2][1]["messages"] == [{"type": "recruiter", "text": "Bye.", "timestamp": 9}]


@pytest.mark.asyncio
async def test_http_sink_error_status_raises() -> None:
    sink = HttpMessageSink(
        "http://sessions.test",
        transport=httpx.MockTransport(lambda request: httpx.Response(500, json={"error": "db down"})),
    )

    with pytest.raises(PersistenceError) as exc_info:
        await sink.save_message("s", PersistedMessage(role="candidate", text="x", timestamp_ms=1))

    assert exc_info.value.status_code == 500
    await sink.close()


class BrokenDriverSink(FakeSink):
    async def save_message(self, session_id: str, message: PersistedMessage) -> None:
        raise ConnectionRefusedError(111, "Connect call failed")


@pytest.mark.asyncio
async def test_driver_errors_are_dropped_like_sink_errors(clock: ManualClock, caplog) -> None:
    persistence, _ = await _persistence(clock, BrokenDriverSink())

    with caplog.at_level(logging.ERROR):
        for i in range(5):
            persistence.queue_message(_msg(f"m{i}"))
        await _settle()
        persistence.queue_message(_msg("late"))
        clock.advance(2_000)
        await _settle()

    assert persistence.queued == 0
    assert caplog.text.count("dropped") == 2
    assert "Connect call failed" in caplog.text
