"""
Session persistence.

Mirrors the transcript to durable storage without ever blocking or failing a
turn. Messages are queued in memory and flushed in the background, either on
a periodic timer or as soon as a small batch has accumulated.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Literal

import httpx
from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine

from mock_interview.clock import Clock, TimerHandle
from mock_interview.config import get_settings
from mock_interview.db.models import Base
from mock_interview.db.repository import SessionRepository
from mock_interview.orchestrator.schemas import InterviewParams, InterviewReport, new_id

logger = logging.getLogger(__name__)


class PersistenceError(Exception):
    """Raised when a sink cannot store session data."""

    def __init__(self, message: str, session_id: str | None = None, status_code: int | None = None) -> None:
        super().__init__(message)
        self.session_id = session_id
        self.status_code = status_code


class PersistedMessage(BaseModel):
    """A transcript message as stored."""

    role: Literal["recruiter", "candidate"] = Field(..., description="Who said it")
    text: str = Field(..., description="Message text")
    timestamp_ms: int = Field(..., description="When the message was recorded (ms)")
    elapsed_sec: int = Field(default=0, description="Interview time when recorded")

    def to_wire(self) -> dict[str, Any]:
        return {
            "role": self.role,
            "text": self.text,
            "timestampMs": self.timestamp_ms,
            "elapsedSec": self.elapsed_sec,
        }


@dataclass(frozen=True)
class PersistenceConfig:
    flush_interval_s: float = 2.0
    flush_batch: int = 5


class MessageSink(ABC):
    """Storage backend for sessions and messages."""

    @abstractmethod
    async def create_session(self, params: InterviewParams) -> str:
        """Create a session and return its id."""
        ...

    @abstractmethod
    async def save_message(self, session_id: str, message: PersistedMessage) -> None: ...

    @abstractmethod
    async def end_session(self, session_id: str, report: InterviewReport) -> None: ...

    async def close(self) -> None:
        return None


class SqlMessageSink(MessageSink):
    """Stores sessions through the SQLAlchemy repository."""

    def __init__(self, database_url: str | None = None, *, engine: AsyncEngine | None = None) -> None:
        """
        Initialize the sink.

        Args:
            database_url: Async SQLAlchemy URL (uses config if not provided).
            engine: Existing engine to use instead of creating one.
        """
        self._engine = engine or create_async_engine(database_url or get_settings().database_url)
        self._sessionmaker = async_sessionmaker(self._engine, expire_on_commit=False)

    async def init_schema(self) -> None:
        """Create the tables if they do not exist."""
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def create_session(self, params: InterviewParams) -> str:
        session_id = new_id()
        try:
            async with self._sessionmaker() as session, session.begin():
                await SessionRepository(session).create_session(session_id, params)
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not create session: {e}") from e
        return session_id

    async def save_message(self, session_id: str, message: PersistedMessage) -> None:
        try:
            async with self._sessionmaker() as session, session.begin():
                await SessionRepository(session).add_message(
                    session_id,
                    role=message.role,
                    text=message.text,
                    timestamp_ms=message.timestamp_ms,
                    elapsed_sec=message.elapsed_sec,
                )
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not save message: {e}", session_id) from e

    async def end_session(self, session_id: str, report: InterviewReport) -> None:
        try:
            async with self._sessionmaker() as session, session.begin():
                model = await SessionRepository(session).end_session(session_id, report)
        except SQLAlchemyError as e:
            raise PersistenceError(f"could not end session: {e}", session_id) from e
        if model is None:
            raise PersistenceError(f"session {session_id} not found", session_id)

    async def close(self) -> None:
        await self._engine.dispose()


class HttpMessageSink(MessageSink):
    """Stores sessions through the sessions HTTP API."""

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float = 10.0,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url or get_settings().persistence_api_url
        self._timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def _post(self, path: str, body: dict[str, Any], session_id: str | None = None) -> httpx.Response:
        client = await self._get_client()
        try:
            response = await client.post(path, json=body)
        except httpx.HTTPError as e:
            raise PersistenceError(f"POST {path} failed: {e!r}", session_id) from e
        if response.is_error:
            raise PersistenceError(
                f"POST {path} returned HTTP {response.status_code}",
                session_id,
                response.status_code,
            )
        return response

    async def create_session(self, params: InterviewParams) -> str:
        response = await self._post("/api/sessions/create", params.model_dump(by_alias=True, exclude_none=True))
        try:
            session_id = response.json().get("sessionId")
        except ValueError as e:
            raise PersistenceError("session create returned a non-JSON body") from e
        if not session_id:
            raise PersistenceError("session create returned no sessionId")
        return str(session_id)

    async def save_message(self, session_id: str, message: PersistedMessage) -> None:
        await self._post(f"/api/sessions/{session_id}/message", message.to_wire(), session_id)

    async def end_session(self, session_id: str, report: InterviewReport) -> None:
        body = {
            "messages": [
                {"type": m.speaker.value, "text": m.text, "timestamp": m.timestamp_ms}
                for m in report.messages
            ],
            "interviewParams": report.params.model_dump(by_alias=True, exclude_none=True),
            "report": report.model_dump(mode="json"),
        }
        await self._post(f"/api/sessions/{session_id}/end", body, session_id)

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


class SessionPersistence:
    """
    Best-effort transcript mirror for one session.

    `queue_message` never awaits. Flushes are single-flight and send messages
    in order; a failed flush is logged and its batch dropped.
    """

    def __init__(self, sink: MessageSink, clock: Clock, config: PersistenceConfig | None = None) -> None:
        self._sink = sink
        self._clock = clock
        self._config = config or PersistenceConfig()
        self._session_id: str | None = None
        self._queue: list[PersistedMessage] = []
        self._flushing = False
        self._timer: TimerHandle | None = None
        self._tasks: set[asyncio.Task] = set()

    @property
    def session_id(self) -> str | None:
        return self._session_id

    @property
    def queued(self) -> int:
        return len(self._queue)

    async def create_session(self, params: InterviewParams) -> str:
        """
        Create the remote session and start the flush timer.

        Raises:
            PersistenceError: If the sink could not create the session.
        """
        session_id = await self._sink.create_session(params)
        self.set_session_id(session_id)
        logger.info(f"[PERSIST] session created id={session_id}")
        return session_id

    def set_session_id(self, session_id: str) -> None:
        self._session_id = session_id
        self._start_timer()

    def queue_message(self, message: PersistedMessage) -> None:
        if not self._session_id:
            logger.warning("[PERSIST] message ignored: no active session")
            return
        self._queue.append(message)
        if len(self._queue) >= self._config.flush_batch:
            self._spawn_flush()

    async def flush(self) -> None:
        if self._flushing or not self._queue or not self._session_id:
            return

        self._flushing = True
        batch, self._queue = self._queue, []
        try:
            for message in batch:
                await self._sink.save_message(self._session_id, message)
            logger.debug(f"[PERSIST] flushed {len(batch)} message(s)")
        except Exception as e:
            logger.error(f"[PERSIST] flush failed, {len(batch)} message(s) dropped: {e}")
        finally:
            self._flushing = False

    async def end_session(self, report: InterviewReport) -> None:
        """
        Flush what is left, stop the timer and hand the report to the sink.

        Raises:
            PersistenceError: If there is no session or the sink failed.
        """
        if not self._session_id:
            raise PersistenceError("no active session id")

        await self._drain()
        self._stop_timer()
        await self._sink.end_session(self._session_id, report)
        logger.info(f"[PERSIST] session ended id={self._session_id}")

    async def close(self) -> None:
        self._stop_timer()
        await self._drain()
        await self._sink.close()

    async def _drain(self) -> None:
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
        await self.flush()

    def _spawn_flush(self) -> None:
        task = asyncio.get_running_loop().create_task(self.flush())
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _start_timer(self) -> None:
        self._stop_timer()
        self._timer = self._clock.call_later(self._config.flush_interval_s, self._on_timer)

    def _stop_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _on_timer(self) -> None:
        self._timer = self._clock.call_later(self._config.flush_interval_s, self._on_timer)
        if self._queue:
            self._spawn_flush()
