"""
Pydantic schemas for the orchestrator module.

Defines data models for interview parameters, conversation messages, turn API
payloads, error banners, and the post-interview report.
"""

from enum import Enum
from typing import Any, Literal
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field


def new_id() -> str:
    """Generate a short unique identifier."""
    return uuid4().hex


class Speaker(str, Enum):
    """Who produced a conversation message."""

    RECRUITER = "recruiter"
    CANDIDATE = "candidate"


class InterviewStatus(str, Enum):
    """Lifecycle of an interview session."""

    IDLE = "idle"
    INTERVIEWING = "interviewing"
    PAUSED = "paused"
    ENDED = "ended"


class RecruiterState(str, Enum):
    """What the simulated recruiter is doing right now."""

    IDLE = "idle"
    LISTENING = "listening"
    THINKING = "thinking"
    SPEAKING = "speaking"


class FailureKind(str, Enum):
    """Classification of a failed turn request."""

    TRANSPORT = "transport"  # network error or non-2xx without an envelope
    APPLICATION = "application"  # explicit ok:false envelope
    SCHEMA = "schema"  # ok:true but the payload failed validation
    UNEXPECTED = "unexpected"  # anything else raised while handling the turn


class AdmissionDenial(str, Enum):
    """Why a turn was not sent."""

    IN_FLIGHT = "in_flight"
    COOLDOWN = "cooldown"
    RECRUITER_SPEAKING = "recruiter_speaking"
    TOO_SHORT = "too_short"
    DUPLICATE = "duplicate"


class TurnStatus(str, Enum):
    """Result of one orchestrator call."""

    COMPLETED = "completed"
    FAILED = "failed"
    DENIED = "denied"
    DISCARDED = "discarded"  # response arrived after the session ended


RATE_LIMIT_CODES = frozenset({"RESOURCE_EXHAUSTED", "RATE_LIMITED", "QUOTA_EXCEEDED"})


class InterviewParams(BaseModel):
    """Configuration of the simulated interview."""

    model_config = ConfigDict(populate_by_name=True)

    role: str = Field(default="Backend", min_length=1, description="Target role (DevOps, Cloud, Backend, ...)")
    level: str = Field(default="mid", min_length=1, description="Seniority (junior, mid, senior)")
    interview_type: str = Field(
        default="Mixed",
        min_length=1,
        alias="interviewType",
        description="HR, Tech or Mixed",
    )
    language: str = Field(default="EN", min_length=1, description="Interview language (EN, FR)")
    duration_minutes: int | None = Field(
        default=None,
        alias="duration",
        description="Planned duration in minutes",
    )


class ConversationMessage(BaseModel):
    """A single message in the interview transcript."""

    id: str = Field(default_factory=new_id, description="Unique message identifier")
    speaker: Speaker = Field(..., description="Who said it")
    text: str = Field(..., description="What was said")
    timestamp_ms: float = Field(..., description="When the message was recorded (ms)")


class ChatMessage(BaseModel):
    """A message in the shape the turn API expects."""

    role: Literal["user", "assistant"] = Field(..., description="user for the candidate, assistant for the recruiter")
    content: str = Field(..., description="Message content")


class TurnRequest(BaseModel):
    """Request body for the turn API."""

    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(..., alias="sessionId", min_length=1)
    is_init: bool = Field(..., alias="isInit")
    interview_params: InterviewParams | None = Field(default=None, alias="interviewParams")
    candidate_text: str | None = Field(default=None, alias="candidateText")
    messages: list[ChatMessage] = Field(default_factory=list)

    def to_wire(self) -> dict[str, Any]:
        """Serialize with the camelCase field names used on the wire."""
        return self.model_dump(by_alias=True, exclude_none=True)


class Evaluation(BaseModel):
    """Per-turn scoring returned alongside the recruiter's line."""

    model_config = ConfigDict(strict=True)

    total_score: float = Field(..., description="Overall score hint")
    technical_score: float = Field(..., description="Technical score hint")
    communication_score: float = Field(..., description="Communication score hint")
    problem_solving_score: float = Field(..., description="Problem solving score hint")
    signals: list[str] = Field(default_factory=list, description="Observed signals")


class RecruiterTurn(BaseModel):
    """A schema-valid recruiter turn."""

    say: str = Field(..., min_length=1, description="Text the recruiter speaks")
    type: str | None = Field(default=None, description="question, followup or closing")
    rubric: str | None = Field(default=None, description="Rubric the turn belongs to")
    evaluation: Evaluation = Field(..., description="Internal scoring for the previous answer")


class TurnError(BaseModel):
    """Error half of the turn API envelope."""

    code: str = Field(default="UNKNOWN_ERROR", description="Machine readable error code")
    message: str = Field(default="", description="Human readable message")
    hint: str = Field(default="", description="What to do about it")


class TurnFailure(BaseModel):
    """A classified failed turn request."""

    error: TurnError = Field(..., description="Error details")
    kind: FailureKind = Field(..., description="Failure classification")
    status_code: int | None = Field(default=None, description="HTTP status when there was one")

    @property
    def is_rate_limited(self) -> bool:
        return self.error.code in RATE_LIMIT_CODES or self.status_code == 429


# Result of a turn request: either a validated turn or a classified failure.
TurnResult = RecruiterTurn | TurnFailure


class ScoreHint(BaseModel):
    total: float
    technical: float
    communication: float
    problem_solving: float


class PrivateNote(BaseModel):
    """Internal scoring note attached to a completed turn; never spoken."""

    timestamp_ms: float = Field(..., description="When the note was recorded")
    request_id: int = Field(..., description="Request counter of the producing turn")
    signals: list[str] = Field(default_factory=list)
    score_hint: ScoreHint


class ErrorBanner(BaseModel):
    """User-facing error state."""

    code: str
    message: str = ""
    hint: str = ""
    kind: FailureKind | None = None
    blocked_until_ms: float = 0.0


class SubtitleChunk(BaseModel):
    """A display unit derived from a conversation message."""

    id: str
    text: str
    speaker: Speaker
    duration_ms: int


class ReportScores(BaseModel):
    total: float | None = None
    technical: float | None = None
    communication: float | None = None
    problem_solving: float | None = None


class InterviewReport(BaseModel):
    """Post-interview report built from the transcript and private notes."""

    session_id: str = Field(..., description="Session identifier")
    params: InterviewParams = Field(..., description="Interview parameters used")
    messages: list[ConversationMessage] = Field(default_factory=list, description="Full transcript")
    private_notes: list[PrivateNote] = Field(default_factory=list, description="Per-turn scoring notes")
    scores: ReportScores = Field(default_factory=ReportScores, description="Mean of the per-turn score hints")
    signals: list[str] = Field(default_factory=list, description="Distinct signals in first-seen order")
    duration_sec: int = Field(default=0, description="Elapsed interview time")
    started_at_ms: float | None = Field(default=None, description="Interview start time")
    ended_at_ms: float | None = Field(default=None, description="Interview end time")


class TurnOutcome(BaseModel):
    """What happened to one orchestrator call."""

    status: TurnStatus
    request_id: int | None = None
    denial: AdmissionDenial | None = None
    turn: RecruiterTurn | None = None
    failure: TurnFailure | None = None


class SessionView(BaseModel):
    """Read-only snapshot of a session for rendering."""

    session_id: str | None = None
    status: InterviewStatus = InterviewStatus.IDLE
    recruiter_state: RecruiterState = RecruiterState.IDLE
    is_recruiter_speaking: bool = False
    elapsed_sec: int = 0
    message_count: int = 0
    live_interim: str = ""
    subtitle: SubtitleChunk | None = None
    subtitle_queue: int = 0
    error: ErrorBanner | None = None
    cooldown_remaining_ms: float = 0.0
