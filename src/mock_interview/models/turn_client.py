"""
Turn API client.

Sends a `TurnRequest` to the interview turn endpoint and turns the response
envelope `{ok, data?, error?}` into a validated `RecruiterTurn` or a classified
`TurnFailure`. Remote problems never raise out of `next_turn`.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx
from pydantic import ValidationError

from mock_interview.config import get_settings
from mock_interview.orchestrator.schemas import (
    FailureKind,
    RecruiterTurn,
    TurnError,
    TurnFailure,
    TurnRequest,
    TurnResult,
)

logger = logging.getLogger(__name__)

NEXT_TURN_PATH = "/api/interview/next-turn"


class TurnClientBase(ABC):
    """Abstract base class for turn backends."""

    @abstractmethod
    async def next_turn(self, request: TurnRequest) -> TurnResult:
        """
        Produce the recruiter's next turn.

        Args:
            request: Session id, params, history and the candidate text.

        Returns:
            A validated recruiter turn or a classified failure.
        """
        ...

    async def close(self) -> None:
        """Release resources held by the client."""
        return None


def schema_failure(detail: str, status_code: int | None = None) -> TurnFailure:
    return TurnFailure(
        error=TurnError(
            code="INVALID_MODEL_JSON",
            message="The model returned an invalid response",
            hint=detail[:300],
        ),
        kind=FailureKind.SCHEMA,
        status_code=status_code,
    )


def parse_turn_envelope(payload: Any, status_code: int | None = 200) -> TurnResult:
    """
    Validate a turn API envelope.

    Args:
        payload: Decoded JSON body (or None when the body was not JSON).
        status_code: HTTP status of the response.

    Returns:
        `RecruiterTurn` when ok and schema-valid, otherwise a `TurnFailure`.
    """
    is_2xx = status_code is None or 200 <= status_code < 300

    if not isinstance(payload, dict) or "ok" not in payload:
        if not is_2xx:
            return TurnFailure(
                error=TurnError(
                    code=f"HTTP_{status_code}",
                    message=f"Turn API returned HTTP {status_code}",
                    hint="Check that the interview server is running.",
                ),
                kind=FailureKind.TRANSPORT,
                status_code=status_code,
            )
        return TurnFailure(
            error=TurnError(
                code="INVALID_RESPONSE",
                message="Turn API returned a body without an envelope",
                hint="Check the turn API URL.",
            ),
            kind=FailureKind.TRANSPORT,
            status_code=status_code,
        )

    if payload.get("ok") is not True:
        raw_error = payload.get("error")
        if isinstance(raw_error, dict):
            error = TurnError(
                code=str(raw_error.get("code") or "UNKNOWN_ERROR"),
                message=str(raw_error.get("message") or ""),
                hint=str(raw_error.get("hint") or ""),
            )
        else:
            error = TurnError(message=str(raw_error or "Turn request failed"))
        return TurnFailure(error=error, kind=FailureKind.APPLICATION, status_code=status_code)

    try:
        return RecruiterTurn.model_validate(payload.get("data"))
    except ValidationError as e:
        errors = ", ".join(
            f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
        )
        logger.warning(f"[TURN] invalid turn payload: {errors}")
        return schema_failure(errors, status_code)


class HttpTurnClient(TurnClientBase):
    """
    Turn client for the HTTP interview API.

    POSTs camelCase JSON to `/api/interview/next-turn`.
    """

    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        *,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """
        Initialize the client.

        Args:
            base_url: API base URL (uses config if not provided).
            timeout: Request timeout in seconds (uses config if not provided).
            transport: Optional httpx transport (mock transports in tests).
        """
        settings = get_settings()
        self._base_url = base_url or settings.turn_api_url
        self._timeout = timeout or settings.turn_api_timeout
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

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def next_turn(self, request: TurnRequest) -> TurnResult:
        client = await self._get_client()
        try:
            response = await client.post(NEXT_TURN_PATH, json=request.to_wire())
        except httpx.HTTPError as e:
            logger.warning(f"[TURN] network error: {e!r}")
            return TurnFailure(
                error=TurnError(
                    code="NETWORK_ERROR",
                    message=str(e) or type(e).__name__,
                    hint="Check your connection and that the interview server is running.",
                ),
                kind=FailureKind.TRANSPORT,
            )

        try:
            payload = response.json()
        except ValueError:
            payload = None
        return parse_turn_envelope(payload, response.status_code)
