"""
Orchestrator module for managing interview turns and session state.
"""

from mock_interview.orchestrator.admission import AdmissionPolicy, check_admission, normalize_utterance
from mock_interview.orchestrator.interview_state import InterviewSessionState
from mock_interview.orchestrator.schemas import (
    InterviewParams,
    InterviewReport,
    InterviewStatus,
    RecruiterState,
    RecruiterTurn,
    TurnFailure,
    TurnOutcome,
    TurnRequest,
)
from mock_interview.orchestrator.turn_orchestrator import TurnOrchestrator

__all__ = [
    "AdmissionPolicy",
    "check_admission",
    "normalize_utterance",
    "InterviewSessionState",
    "InterviewParams",
    "InterviewReport",
    "InterviewStatus",
    "RecruiterState",
    "RecruiterTurn",
    "TurnFailure",
    "TurnOutcome",
    "TurnRequest",
    "TurnOrchestrator",
]
