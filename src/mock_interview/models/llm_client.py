"""
Local LLM turn client.

Runs recruiter turns through the Ollama CLI instead of the HTTP turn API.
The model's free-form output is repaired into JSON and validated by the same
envelope parser the HTTP client uses, so callers see identical results.
"""

import asyncio
import ast
import json
import logging
import re
import subprocess
from typing import Any

from pydantic import BaseModel, Field

from mock_interview.config import get_settings
from mock_interview.models.turn_client import TurnClientBase, parse_turn_envelope, schema_failure
from mock_interview.orchestrator.schemas import (
    FailureKind,
    InterviewParams,
    TurnError,
    TurnFailure,
    TurnRequest,
    TurnResult,
)

logger = logging.getLogger(__name__)

DEFAULT_OLLAMA_MODEL = "gpt-oss:20b"

OPENING_INSTRUCTION = "Start the interview with a short greeting and your first question."

_FENCE_OPEN = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_FENCE_CLOSE = re.compile(r"\s*```$")

# Applied in order. Bare keys are only quoted right after "{" or "," so values survive.
_REPAIRS: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r",(\s*[}\]])"), r"\1"),
    (re.compile(r"\bNone\b"), "null"),
    (re.compile(r"\bTrue\b"), "true"),
    (re.compile(r"\bFalse\b"), "false"),
    (re.compile(r"([{,]\s*)([A-Za-z_][\w\-]*)(\s*:)"), r'\1"\2"\3'),
)

_SMART_QUOTES = str.maketrans({"“": '"', "”": '"', "‘": "'", "’": "'"})

_LITERAL_ERRORS = (ValueError, SyntaxError, TypeError, MemoryError, RecursionError)


class Message(BaseModel):
    """A message in a conversation."""

    role: str = Field(..., description="Role of the speaker (system, user, assistant)")
    content: str = Field(..., description="Message content")


class LLMResponse(BaseModel):
    """Response from an LLM."""

    content: str = Field(..., description="Generated text content")
    finish_reason: str = Field(default="stop", description="Reason for completion")
    model: str = Field(default="", description="Model used for generation")
    error: str | None = Field(default=None, description="Error message when finish_reason is error")


class OllamaError(Exception):
    """Raised when the Ollama CLI cannot produce a response."""

    def __init__(self, message: str, return_code: int | None = None, stderr: str = "") -> None:
        super().__init__(message)
        self.return_code = return_code
        self.stderr = stderr


def build_system_prompt(params: InterviewParams | None) -> str:
    """Short functional instruction for the recruiter model."""
    params = params or InterviewParams()
    language = "French" if params.language.upper() == "FR" else "English"
    duration = f" The interview lasts about {params.duration_minutes} minutes." if params.duration_minutes else ""
    return (
        f"You are a recruiter interviewing a {params.level} candidate for a {params.role} position. "
        f"Interview type: {params.interview_type}.{duration} Speak {language}. "
        "Ask one question at a time and follow up on vague answers. "
        "After each answer, score the candidate from 0 to 100.\n"
        "Respond with JSON only, in this shape:\n"
        '{"say": "...", "type": "question|followup|closing", "rubric": "hr|tech|closing", '
        '"evaluation": {"total_score": 0, "technical_score": 0, "communication_score": 0, '
        '"problem_solving_score": 0, "signals": ["..."]}}'
    )


def render_prompt(messages: list[Message]) -> str:
    """Flatten chat messages into the single prompt `ollama run` reads from stdin."""
    blocks = [f"[{m.role.upper()}]\n{m.content.strip()}\n" for m in messages]
    blocks.append("[ASSISTANT]\n")
    return "\n".join(blocks)


def first_object_span(text: str) -> str | None:
    """Return the text of the first balanced {...} block, or the tail if it never closes."""
    start = text.find("{")
    if start == -1:
        return None
    depth = 0
    for pos in range(start, len(text)):
        if text[pos] == "{":
            depth += 1
        elif text[pos] == "}":
            depth -= 1
            if depth == 0:
                return text[start : pos + 1]
    return text[start:]


def repair_json(raw: str) -> str:
    """Rewrite the usual LLM JSON mistakes into something json.loads accepts."""
    text = _FENCE_CLOSE.sub("", _FENCE_OPEN.sub("", raw.strip()))
    text = text.translate(_SMART_QUOTES)
    for pattern, replacement in _REPAIRS:
        text = pattern.sub(replacement, text)
    if "'" in text and '"' not in text:
        text = text.replace("'", '"')
    return text


def _jsonable(value: Any) -> Any:
    if value is ...:
        return None
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set)):
        return [_jsonable(v) for v in value]
    return str(value)


def loads_lenient(raw: str) -> Any:
    """
    Parse model output as JSON, repairing it when needed.

    Tries strict JSON, then repaired JSON, then a Python literal (the model
    sometimes answers with a dict repr). Returns None when nothing parses.
    """
    if not raw:
        return None
    repaired = repair_json(raw)
    for candidate in (raw, repaired):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    for candidate in (raw.strip(), repaired):
        try:
            literal = ast.literal_eval(candidate)
        except _LITERAL_ERRORS:
            continue
        if isinstance(literal, (dict, list, tuple, set)):
            return _jsonable(literal)
        return None
    return None


def extract_json(content: str) -> dict[str, Any] | None:
    """Pull the first JSON object out of model output that may include prose or fences."""
    content = (content or "").strip()
    if not content:
        return None
    for candidate in (first_object_span(content), content):
        if candidate is None:
            continue
        parsed = loads_lenient(candidate)
        if isinstance(parsed, dict):
            return parsed
    return None


class OllamaTurnClient(TurnClientBase):
    """
    Turn client backed by a local model.

    Every turn is one `ollama run <model>` subprocess call with the whole
    conversation on stdin. Failures after the configured retries come back
    as LLM_UNAVAILABLE transport failures.
    """

    def __init__(
        self,
        model: str | None = None,
        max_retries: int | None = None,
        timeout: int | None = None,
    ) -> None:
        settings = get_settings()
        self._model = model or settings.llm_model_name or DEFAULT_OLLAMA_MODEL
        self._max_retries = settings.llm_max_retries if max_retries is None else max_retries
        self._timeout = timeout or settings.llm_timeout

        logger.info(f"[TURN][OLLAMA] using model {self._model}")

    @property
    def model(self) -> str:
        return self._model

    def _build_messages(self, request: TurnRequest) -> list[Message]:
        messages = [Message(role="system", content=build_system_prompt(request.interview_params))]
        messages.extend(Message(role=m.role, content=m.content) for m in request.messages)
        if request.is_init:
            messages.append(Message(role="user", content=OPENING_INSTRUCTION))
        return messages

    def _invoke(self, prompt: str) -> str:
        """Blocking CLI call with retries. Raises OllamaError when every attempt fails."""
        cmd = ["ollama", "run", self._model]
        failure = OllamaError("Ollama failed after all retries")

        for attempt in range(1, self._max_retries + 2):
            try:
                proc = subprocess.run(cmd, input=prompt, capture_output=True, text=True, timeout=self._timeout)
            except subprocess.TimeoutExpired:
                logger.warning(f"[TURN][OLLAMA] attempt {attempt} timed out after {self._timeout}s")
                failure = OllamaError(f"Ollama timed out after {self._timeout} seconds")
                continue
            except FileNotFoundError:
                raise OllamaError("Ollama CLI not found. Install it from https://ollama.ai") from None
            except OSError as e:
                logger.warning(f"[TURN][OLLAMA] attempt {attempt} failed to start: {e}")
                failure = OllamaError(str(e))
                continue

            if proc.returncode == 0:
                logger.debug(f"[TURN][OLLAMA] {len(proc.stdout)} chars on attempt {attempt}")
                return proc.stdout.strip()

            detail = proc.stderr.strip() or f"exit code {proc.returncode}"
            logger.warning(f"[TURN][OLLAMA] attempt {attempt} failed: {detail}")
            failure = OllamaError(
                f"Ollama exited with code {proc.returncode}",
                return_code=proc.returncode,
                stderr=proc.stderr,
            )

        raise failure

    async def chat(self, messages: list[Message]) -> LLMResponse:
        """Run one completion. finish_reason is "error" when Ollama failed."""
        try:
            text = await asyncio.to_thread(self._invoke, render_prompt(messages))
        except OllamaError as e:
            logger.error(f"[TURN][OLLAMA] chat failed: {e}")
            return LLMResponse(content="", finish_reason="error", model=self._model, error=str(e))
        return LLMResponse(content=text, model=self._model)

    async def next_turn(self, request: TurnRequest) -> TurnResult:
        response = await self.chat(self._build_messages(request))

        if response.finish_reason == "error":
            return TurnFailure(
                error=TurnError(
                    code="LLM_UNAVAILABLE",
                    message=response.error or "Local model failed",
                    hint="Check that Ollama is installed and the model is pulled.",
                ),
                kind=FailureKind.TRANSPORT,
            )

        data = extract_json(response.content)
        if data is None:
            logger.warning(f"[TURN] no JSON object in model output: {response.content[:200]!r}")
            return schema_failure("Model output did not contain a JSON object")
        return parse_turn_envelope({"ok": True, "data": data})
