"""
Models module for recruiter turn backends.

Provides the HTTP turn API client and a local Ollama-backed client.
"""

from mock_interview.models.llm_client import (
    DEFAULT_OLLAMA_MODEL,
    LLMResponse,
    Message,
    OllamaError,
    OllamaTurnClient,
)
from mock_interview.models.turn_client import HttpTurnClient, TurnClientBase, parse_turn_envelope

__all__ = [
    "DEFAULT_OLLAMA_MODEL",
    "HttpTurnClient",
    "LLMResponse",
    "Message",
    "OllamaError",
    "OllamaTurnClient",
    "TurnClientBase",
    "parse_turn_envelope",
]
