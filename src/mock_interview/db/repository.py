"""
Repository layer over the SQLAlchemy session.

Repositories only add and flush. Committing is left to the caller that owns
the session (see `SqlMessageSink`).
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Generic, TypeVar

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from mock_interview.db.models import Base, MessageModel, SessionModel
from mock_interview.orchestrator.schemas import InterviewParams, InterviewReport

T = TypeVar("T", bound=Base)


class BaseRepository(ABC, Generic[T]):
    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    @property
    @abstractmethod
    def _model_class(self) -> type[T]: ...

    async def get_by_id(self, entity_id: Any) -> T | None:
        return await self._session.get(self._model_class, entity_id)

    async def save(self, entity: T) -> T:
        """Add (or re-flush) an entity and reload server-side defaults."""
        self._session.add(entity)
        await self._session.flush()
        await self._session.refresh(entity)
        return entity


class SessionRepository(BaseRepository[SessionModel]):
    """Interview sessions and their ordered transcript."""

    @property
    def _model_class(self) -> type[SessionModel]:
        return SessionModel

    async def create_session(self, session_id: str, params: InterviewParams) -> SessionModel:
        model = SessionModel(
            id=session_id,
            role=params.role,
            level=params.level,
            interview_type=params.interview_type,
            language=params.language,
            duration_minutes=params.duration_minutes,
        )
        return await self.save(model)

    async def next_sequence(self, session_id: str) -> int:
        stmt = select(func.count()).select_from(MessageModel).where(MessageModel.session_id == session_id)
        result = await self._session.execute(stmt)
        return int(result.scalar_one())

    async def add_message(
        self,
        session_id: str,
        *,
        role: str,
        text: str,
        timestamp_ms: int,
        elapsed_sec: int,
    ) -> MessageModel:
        """Append a message; `sequence` is the number of messages already stored."""
        model = MessageModel(
            session_id=session_id,
            sequence=await self.next_sequence(session_id),
            role=role,
            text=text,
            timestamp_ms=timestamp_ms,
            elapsed_sec=elapsed_sec,
        )
        return await self.save(model)

    async def get_messages(self, session_id: str) -> list[MessageModel]:
        stmt = (
            select(MessageModel)
            .where(MessageModel.session_id == session_id)
            .order_by(MessageModel.sequence)
        )
        result = await self._session.execute(stmt)
        return list(result.scalars().all())

    async def end_session(self, session_id: str, report: InterviewReport) -> SessionModel | None:
        """Mark the session ended and store the report. Returns None for an unknown id."""
        model = await self.get_by_id(session_id)
        if model is None:
            return None
        model.status = "ended"
        model.ended_at = datetime.utcnow()
        model.overall_score = report.scores.total
        model.technical_score = report.scores.technical
        model.communication_score = report.scores.communication
        model.problem_solving_score = report.scores.problem_solving
        model.report = report.model_dump(mode="json")
        return await self.save(model)
