"""
Database module for persistence.

Provides SQLAlchemy models, the session repository and the background
transcript persistence layer.
"""

from mock_interview.db.models import Base, MessageModel, SessionModel
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

__all__ = [
    "Base",
    "MessageModel",
    "SessionModel",
    "SessionRepository",
    "HttpMessageSink",
    "MessageSink",
    "PersistedMessage",
    "PersistenceConfig",
    "PersistenceError",
    "SessionPersistence",
    "SqlMessageSink",
]
