"""Admission control for turn requests.

Guards are evaluated in a fixed order before anything is sent to the turn
backend. A denial is an early return: no request, no state mutation.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from mock_interview.orchestrator.interview_state import InterviewSessionState
from mock_interview.orchestrator.schemas import AdmissionDenial

_NON_WORD = re.compile(r"[^\w\s]|_", flags=re.UNICODE)
_WHITESPACE = re.compile(r"\s+")


@dataclass(frozen=True)
class AdmissionPolicy:
    min_words: int = 3
    min_chars: int = 12
    duplicate_window_ms: float = 10_000
    rate_limit_cooldown_ms: float = 30_000
    failure_cooldown_ms: float = 2_000


def normalize_utterance(text: str) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    lowered = (text or "").lower()
    stripped = _NON_WORD.sub("", lowered)
    return _WHITESPACE.sub(" ", stripped).strip()


def is_substantive(text: str, policy: AdmissionPolicy) -> bool:
    t = (text or "").strip()
    if len(t) < policy.min_chars:
        return False
    return len(t.split()) >= policy.min_words


def check_admission(
    state: InterviewSessionState,
    policy: AdmissionPolicy,
    *,
    is_init: bool,
    candidate_text: str | None = None,
    now_ms: float,
    allow_repeat: bool = False,
) -> AdmissionDenial | None:
    """
    Evaluate the pre-send guards in order.

    Args:
        state: Session state holding the guard fields.
        policy: Thresholds and windows.
        is_init: Whether this is the initialization request.
        candidate_text: The committed utterance (turns only).
        now_ms: Current time.
        allow_repeat: Skip the duplicate check (explicit retry of a failed send).

    Returns:
        The first guard that denies the request, or None when admitted.
    """
    if state.request_in_flight:
        return AdmissionDenial.IN_FLIGHT
    if now_ms < state.blocked_until:
        return AdmissionDenial.COOLDOWN
    if state.is_recruiter_speaking:
        return AdmissionDenial.RECRUITER_SPEAKING
    if is_init:
        return None

    if not is_substantive(candidate_text or "", policy):
        return AdmissionDenial.TOO_SHORT

    normalized = normalize_utterance(candidate_text or "")
    if (
        not allow_repeat
        and normalized
        and normalized == state.last_sent_normalized_text
        and now_ms - state.last_sent_timestamp < policy.duplicate_window_ms
    ):
        return AdmissionDenial.DUPLICATE
    return None
