"""
HTTP client for the board API.

Mirrors the browser API module: one coroutine per endpoint, JSON in and out,
failures raised as ``ApiError`` carrying the status and decoded payload.
"""

import json
import re
from typing import Any
from urllib.parse import quote, urljoin

import httpx

from backend.app.schemas.records import Comment, Topic, User
from backend.app.schemas.session import SessionAggregate
from backend.app.schemas.votes import VOTE_LIMIT_REACHED, VoteCastResult, VoteRetractResult

DEFAULT_FUNCTION_BASE = "/.netlify/functions/airtable"
DEFAULT_BASE_URL = f"http://localhost:8888{DEFAULT_FUNCTION_BASE}"


def resolve_base_url(base_url: str | None = None, origin: str | None = None) -> str:
    """
    Resolve the API base URL.

    Absolute URLs are used as given; relative ones are joined onto ``origin``.
    Without a base URL the function is assumed to be mounted on ``origin``,
    or on the local development server.
    """
    if base_url:
        if re.match(r"^https?://", base_url, re.IGNORECASE):
            return base_url.rstrip("/")
        if origin:
            return urljoin(f"{origin.rstrip('/')}/", base_url).rstrip("/")
    if origin:
        return f"{origin.rstrip('/')}{DEFAULT_FUNCTION_BASE}"
    return DEFAULT_BASE_URL


class ApiError(Exception):
    """Raised when the API answers with a non-success status."""

    def __init__(self, message: str, status: int | None = None, payload: Any = None):
        super().__init__(message)
        self.message = message
        self.status = status
        self.payload = payload

    @property
    def code(self) -> str | None:
        if isinstance(self.payload, dict):
            return self.payload.get("error")
        return None


class VoteLimitReachedError(ApiError):
    """The voter has spent the board's vote budget for this session."""


def _parse_json(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        return {"message": text}


def _raise_for_payload(response: httpx.Response) -> None:
    payload = _parse_json(response)
    details = payload if isinstance(payload, dict) else {}
    if details.get("error") == VOTE_LIMIT_REACHED:
        raise VoteLimitReachedError(
            details.get("message") or VOTE_LIMIT_REACHED,
            response.status_code,
            payload,
        )
    message = details.get("error") or details.get("message") or response.reason_phrase
    raise ApiError(str(message), response.status_code, payload)


class ApiClient:
    """Async client for the board API."""

    def __init__(
        self,
        base_url: str | None = None,
        origin: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 30.0,
    ):
        self.base_url = resolve_base_url(base_url, origin)
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/",
            headers={"Accept": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def request(
        self,
        method: str,
        path: str,
        query: dict[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """
        Send a request and decode the JSON response.

        Empty query values are dropped. Returns None for 204 or empty bodies.

        Raises:
            VoteLimitReachedError: If the payload reports a spent vote budget
            ApiError: On any other non-success status
        """
        params = {
            key: value
            for key, value in (query or {}).items()
            if value is not None and value != ""
        }
        response = await self._client.request(
            method,
            path.lstrip("/"),
            params=params or None,
            json=body,
        )
        if response.is_error:
            _raise_for_payload(response)
        if response.status_code == 204:
            return None
        return _parse_json(response)

    async def get_session(self, session_id: str | None = None, code: str | None = None) -> SessionAggregate:
        if session_id:
            data = await self.request("GET", f"sessions/{quote(session_id, safe='')}")
        else:
            data = await self.request("GET", "sessions", query={"code": code})
        return SessionAggregate.model_validate(data)

    async def create_topic(self, data: dict[str, Any]) -> Topic:
        return Topic.model_validate(await self.request("POST", "topics", body=data))

    async def update_topic(self, topic_id: str, data: dict[str, Any]) -> Topic:
        if not topic_id:
            raise ValueError("topic_id is required to update a topic")
        return Topic.model_validate(
            await self.request("PATCH", f"topics/{quote(topic_id, safe='')}", body=data)
        )

    async def create_vote(self, data: dict[str, Any]) -> VoteCastResult:
        return VoteCastResult.model_validate(await self.request("POST", "votes", body=data))

    async def delete_vote(self, vote_id: str) -> VoteRetractResult:
        if not vote_id:
            raise ValueError("vote_id is required to delete a vote")
        return VoteRetractResult.model_validate(
            await self.request("DELETE", f"votes/{quote(vote_id, safe='')}")
        )

    async def create_user(self, data: dict[str, Any]) -> User:
        return User.model_validate(await self.request("POST", "users", body=data))

    async def create_comment(self, data: dict[str, Any]) -> Comment:
        return Comment.model_validate(await self.request("POST", "comments", body=data))
