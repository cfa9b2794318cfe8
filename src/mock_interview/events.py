"""
Session event bus.

State mutations in a session are published as typed events so that the
adjacent handlers (mic gating, subtitles, persistence, UI) react in a fixed,
synchronous order instead of through ad-hoc callbacks.
"""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Callable, TypeVar

if TYPE_CHECKING:
    from mock_interview.orchestrator.schemas import (
        ConversationMessage,
        ErrorBanner,
        InterviewStatus,
        RecruiterState,
    )

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SessionEvent:
    """Base class for all session events."""

    session_id: str


@dataclass(frozen=True)
class StatusChanged(SessionEvent):
    previous: "InterviewStatus"
    current: "InterviewStatus"


@dataclass(frozen=True)
class RecruiterStateChanged(SessionEvent):
    previous: "RecruiterState"
    current: "RecruiterState"


@dataclass(frozen=True)
class MessageAppended(SessionEvent):
    message: "ConversationMessage"
    elapsed_sec: int


@dataclass(frozen=True)
class InterimChanged(SessionEvent):
    text: str


@dataclass(frozen=True)
class ErrorRaised(SessionEvent):
    banner: "ErrorBanner"


E = TypeVar("E", bound=SessionEvent)


class EventBus:
    """Synchronous publish/subscribe, dispatched in subscription order."""

    def __init__(self) -> None:
        self._handlers: dict[type[SessionEvent], list[Callable[[Any], None]]] = defaultdict(list)

    def subscribe(self, event_type: type[E], handler: Callable[[E], None]) -> Callable[[], None]:
        """
        Register a handler for one event type.

        Returns:
            A callable that removes the subscription.
        """
        self._handlers[event_type].append(handler)

        def _unsubscribe() -> None:
            try:
                self._handlers[event_type].remove(handler)
            except ValueError:
                pass

        return _unsubscribe

    def publish(self, event: SessionEvent) -> None:
        for handler in list(self._handlers.get(type(event), ())):
            try:
                handler(event)
            except Exception:
                # A broken subscriber must not break the state mutation that published.
                logger.exception(f"Event handler failed for {type(event).__name__}")

    def clear(self) -> None:
        self._handlers.clear()
