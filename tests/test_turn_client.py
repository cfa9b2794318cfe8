import json

import httpx
import pytest

from mock_interview.models.turn_client import HttpTurnClient, parse_turn_envelope
from mock_interview.orchestrator.schemas import (
    FailureKind,
    InterviewParams,
    RecruiterTurn,
    TurnFailure,
    TurnRequest,
)

VALID_TURN = {
    "say": "Can you walk me through your last deployment?",
    "type": "question",
    "rubric": "tech",
    "evaluation": {
        "total_score": 70,
        "technical_score": 72.5,
        "communication_score": 68,
        "problem_solving_score": 70,
        "signals": ["structured"],
    },
}


def _request() -> TurnRequest:
    return TurnRequest(
        session_id="abc",
        is_init=False,
        interview_params=InterviewParams(language="FR", duration_minutes=20),
        candidate_text="I deploy with Terraform and GitHub Actions",
        messages=[],
    )


def _client(handler) -> HttpTurnClient:
    return HttpTurnClient(base_url="http://turns.test", timeout=5, transport=httpx.MockTransport(handler))


@pytest.mark.asyncio
async def test_posts_camel_case_body_and_parses_turn() -> None:
    seen: dict = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"ok": True, "data": VALID_TURN})

    client = _client(handler)
    result = await client.next_turn(_request())
    await client.close()

    assert isinstance(result, RecruiterTurn)
    assert result.evaluation.technical_score == 72.5
    assert seen["path"] == "/api/interview/next-turn"
    assert seen["body"]["sessionId"] == "abc"
    assert seen["body"]["isInit"] is False
    assert seen["body"]["candidateText"] == "I deploy with Terraform and GitHub Actions"
    assert seen["body"]["interviewParams"]["duration"] == 20


@pytest.mark.asyncio
async def test_application_error_envelope() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            429,
            json={"ok": False, "error": {"code": "RESOURCE_EXHAUSTED", "message": "quota", "hint": "wait"}},
        )

    result = await _client(handler).next_turn(_request())

    assert isinstance(result, TurnFailure)
    assert result.kind == FailureKind.APPLICATION
    assert result.error.code == "RESOURCE_EXHAUSTED"
    assert result.error.hint == "wait"
    assert result.status_code == 429
    assert result.is_rate_limited is True


@pytest.mark.asyncio
async def test_non_json_error_is_a_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502, text="<html>Bad gateway</html>")

    result = await _client(handler).next_turn(_request())

    assert result.kind == FailureKind.TRANSPORT
    assert result.error.code == "HTTP_502"
    assert result.is_rate_limited is False


@pytest.mark.asyncio
async def test_network_error_is_a_transport_failure() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    result = await _client(handler).next_turn(_request())

    assert result.kind == FailureKind.TRANSPORT
    assert result.error.code == "NETWORK_ERROR"


@pytest.mark.parametrize(
    "data",
    [
        {**VALID_TURN, "say": ""},
        {k: v for k, v in VALID_TURN.items() if k != "evaluation"},
        {**VALID_TURN, "evaluation": {**VALID_TURN["evaluation"], "total_score": "high"}},
        None,
    ],
)
def test_schema_violations_are_schema_failures(data) -> None:
    result = parse_turn_envelope({"ok": True, "data": data})

    assert isinstance(result, TurnFailure)
    assert result.kind == FailureKind.SCHEMA
    assert result.error.code == "INVALID_MODEL_JSON"


def test_ok_envelope_with_plain_error_string() -> None:
    result = parse_turn_envelope({"ok": False, "error": "backend exploded"}, 500)

    assert result.kind == FailureKind.APPLICATION
    assert result.error.code == "UNKNOWN_ERROR"
    assert result.error.message == "backend exploded"


def test_2xx_without_envelope() -> None:
    result = parse_turn_envelope(["not", "an", "envelope"], 200)

    assert result.kind == FailureKind.TRANSPORT
    assert result.error.code == "INVALID_RESPONSE"
