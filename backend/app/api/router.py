"""
Function-style request router.

Turns an inbound request (method, path, query, body, headers) into a
resource/id pair, dispatches it to the matching domain operation and wraps the
outcome in a JSON response envelope. The same router serves the FastAPI
gateway and serverless invocations.
"""

import base64
import binascii
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import unquote

from pydantic import BaseModel, Field, ValidationError
from fastapi import status

from backend.app.core.config import Settings, get_settings
from backend.app.core.exception_handlers import JSON_HEADERS, error_body, status_code_for
from backend.app.core.exceptions import InvalidPayloadError, LeanCoffeeException, SessionNotFoundError
from backend.app.schemas.records import dump
from backend.app.schemas.session import SessionCreate
from backend.app.schemas.user import UserRegister
from backend.app.schemas.votes import VoteCreate, VoteLimitReached
from backend.app.services.airtable import AirtableClient
from backend.app.services.sessions import SessionService
from backend.app.services.topics import TopicService
from backend.app.services.users import register_user
from backend.app.services.votes import VoteLedger

logger = logging.getLogger(__name__)

DEFAULT_FUNCTION_PATTERN = r"\.netlify/functions/[^/?#]+"

ORIGINAL_PATH_HEADERS = ("x-nf-original-pathname", "x-nf-original-uri", "x-original-uri")

SUCCESS_HEADERS = {**JSON_HEADERS, "Cache-Control": "no-store"}


class FunctionEvent(BaseModel):
    """An inbound request as seen by the router."""

    method: str
    path: str | None = None
    raw_url: str | None = None
    raw_path: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    query: dict[str, str] = Field(default_factory=dict)
    body: str | None = None
    context_paths: list[str] = Field(default_factory=list)

    @classmethod
    def from_lambda(cls, event: dict[str, Any]) -> "FunctionEvent":
        """Build an event from a Netlify/AWS Lambda-style payload."""
        context = event.get("requestContext") or {}
        http = context.get("http") or {}
        method = event.get("httpMethod") or http.get("method") or "GET"

        body = event.get("body")
        if body and event.get("isBase64Encoded"):
            try:
                body = base64.b64decode(body, validate=True).decode("utf-8")
            except (binascii.Error, UnicodeDecodeError):
                raise InvalidPayloadError("Invalid base64 request body") from None

        return cls(
            method=method,
            path=event.get("path"),
            raw_url=event.get("rawUrl"),
            raw_path=event.get("rawPath"),
            headers=event.get("headers") or {},
            query=event.get("queryStringParameters") or {},
            body=body,
            context_paths=[
                value
                for value in (context.get("path"), http.get("path"), http.get("rawPath"))
                if isinstance(value, str)
            ],
        )


class FunctionResponse(BaseModel):
    """Status, headers and JSON-able body of a routed request."""

    status_code: int
    headers: dict[str, str] = Field(default_factory=lambda: dict(SUCCESS_HEADERS))
    body: Any = None

    def to_lambda(self) -> dict[str, Any]:
        return {
            "statusCode": self.status_code,
            "headers": self.headers,
            "body": json.dumps(self.body if self.body is not None else {}),
        }


def _path_candidates(event: FunctionEvent) -> list[str]:
    headers = {key.lower(): value for key, value in event.headers.items()}
    values = [
        event.raw_url,
        event.raw_path,
        event.path,
        *(headers.get(name) for name in ORIGINAL_PATH_HEADERS),
        *event.context_paths,
    ]
    candidates: list[str] = []
    for value in values:
        if isinstance(value, str) and value and value not in candidates:
            candidates.append(value)
    return candidates


def normalise_path(event: FunctionEvent, pattern: str = DEFAULT_FUNCTION_PATTERN) -> str:
    """
    Extract the path that follows the function mount prefix.

    Every candidate location of the request path is tried in order. Query and
    fragment are stripped, percent-escapes decoded and leading slashes
    collapsed. The first non-empty remainder wins; a bare prefix resolves to
    the empty (root) path; with no prefix anywhere the first candidate is
    returned as is.
    """
    prefix = re.compile(pattern)
    candidates = _path_candidates(event)
    saw_root = False

    for candidate in candidates:
        stripped = re.split(r"[?#]", candidate, maxsplit=1)[0]
        decoded = unquote(stripped)
        match = prefix.search(decoded)
        if match is None:
            continue
        remainder = decoded[match.end():].strip().lstrip("/")
        if not remainder:
            saw_root = True
            continue
        return f"/{remainder}"

    if saw_root:
        return ""
    return candidates[0] if candidates else ""


def parse_body(event: FunctionEvent) -> dict[str, Any]:
    """Decode the JSON body; an empty body is an empty object."""
    if not event.body:
        return {}
    try:
        payload = json.loads(event.body)
    except ValueError:
        raise InvalidPayloadError("Invalid JSON payload") from None
    if not isinstance(payload, dict):
        raise InvalidPayloadError("JSON payload must be an object")
    return payload


def _validate(model: type[BaseModel], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise InvalidPayloadError(
            "Invalid request payload",
            details=json.loads(exc.json(include_url=False)),
        ) from None


def ok(body: Any, status_code: int = status.HTTP_200_OK) -> FunctionResponse:
    return FunctionResponse(status_code=status_code, body=body if body is not None else {})


def not_found() -> FunctionResponse:
    return FunctionResponse(
        status_code=status.HTTP_404_NOT_FOUND,
        headers=dict(JSON_HEADERS),
        body={"error": "Not Found"},
    )


def error_response(exc: Exception) -> FunctionResponse:
    """Wrap any failure in the uniform error envelope."""
    if isinstance(exc, LeanCoffeeException):
        logger.warning(f"[ROUTER] {exc.__class__.__name__}: {exc.message}")
    else:
        logger.exception("[ROUTER] Unhandled error")
    return FunctionResponse(
        status_code=status_code_for(exc),
        headers=dict(JSON_HEADERS),
        body=error_body(exc),
    )


@dataclass
class RouteContext:
    """Everything a route handler needs for one request."""

    event: FunctionEvent
    resource: str | None
    resource_id: str | None
    store: AirtableClient

    def body(self) -> dict[str, Any]:
        return parse_body(self.event)


RouteHandler = Callable[[RouteContext], Awaitable[FunctionResponse]]


async def load_session(ctx: RouteContext) -> FunctionResponse:
    session_id = ctx.resource_id if ctx.resource == "sessions" else None
    code = ctx.event.query.get("code")
    aggregate = await SessionService(ctx.store).load(session_id=session_id, code=code)
    if aggregate is None:
        raise SessionNotFoundError(session_id or code)
    return ok(dump(aggregate))


async def create_session(ctx: RouteContext) -> FunctionResponse:
    request = _validate(SessionCreate, ctx.body())
    session = await SessionService(ctx.store).create_session(request)
    return ok(dump(session), status.HTTP_201_CREATED)


async def update_board(ctx: RouteContext) -> FunctionResponse:
    board = await SessionService(ctx.store).update_board(ctx.resource_id, ctx.body())
    return ok(dump(board))


async def create_topic(ctx: RouteContext) -> FunctionResponse:
    topic = await TopicService(ctx.store).create_topic(ctx.body())
    return ok(dump(topic), status.HTTP_201_CREATED)


async def update_topic(ctx: RouteContext) -> FunctionResponse:
    topic = await TopicService(ctx.store).update_topic(ctx.resource_id, ctx.body())
    return ok(dump(topic))


async def cast_vote(ctx: RouteContext) -> FunctionResponse:
    request = _validate(VoteCreate, ctx.body())
    result = await VoteLedger(ctx.store).cast_vote(request)
    if isinstance(result, VoteLimitReached):
        return FunctionResponse(
            status_code=status.HTTP_400_BAD_REQUEST,
            headers=dict(JSON_HEADERS),
            body=result.model_dump(),
        )
    return ok(dump(result), status.HTTP_201_CREATED)


async def retract_vote(ctx: RouteContext) -> FunctionResponse:
    result = await VoteLedger(ctx.store).retract_vote(ctx.resource_id)
    return ok(dump(result))


async def create_user(ctx: RouteContext) -> FunctionResponse:
    user = await register_user(ctx.store, _validate(UserRegister, ctx.body()))
    return ok(dump(user), status.HTTP_201_CREATED)


async def create_comment(ctx: RouteContext) -> FunctionResponse:
    comment = await TopicService(ctx.store).create_comment(ctx.body())
    return ok(dump(comment), status.HTTP_201_CREATED)


ROUTES: dict[tuple[str | None, str], RouteHandler] = {
    (None, "GET"): load_session,
    (None, "POST"): create_session,
    ("sessions", "GET"): load_session,
    ("sessions", "POST"): create_session,
    ("boards", "PATCH"): update_board,
    ("topics", "POST"): create_topic,
    ("topics", "PATCH"): update_topic,
    ("votes", "POST"): cast_vote,
    ("votes", "DELETE"): retract_vote,
    ("users", "POST"): create_user,
    ("comments", "POST"): create_comment,
}


async def dispatch(
    event: FunctionEvent,
    store: AirtableClient,
    pattern: str = DEFAULT_FUNCTION_PATTERN,
) -> FunctionResponse:
    """
    Route one request.

    Args:
        event: The inbound request
        store: Record store the domain operations run against
        pattern: Regex locating the function mount prefix

    Returns:
        The response; failures are returned as error envelopes, never raised
    """
    try:
        path = normalise_path(event, pattern)
        segments = [segment for segment in path.split("/") if segment]
        resource = segments[0] if segments else None
        resource_id = segments[1] if len(segments) > 1 else None

        handler = ROUTES.get((resource, event.method.upper()))
        if handler is None:
            logger.info(f"[ROUTER] No route for {event.method} {path!r}")
            return not_found()

        return await handler(RouteContext(event, resource, resource_id, store))
    except Exception as exc:
        return error_response(exc)


async def handle_event(
    event: dict[str, Any],
    store: AirtableClient | None = None,
    settings: Settings | None = None,
) -> dict[str, Any]:
    """Serverless entry point: Lambda-style event in, Lambda-style response out."""
    settings = settings or get_settings()
    try:
        function_event = FunctionEvent.from_lambda(event)
    except InvalidPayloadError as exc:
        return error_response(exc).to_lambda()
    if store is not None:
        response = await dispatch(function_event, store, settings.function_path_pattern)
    else:
        async with AirtableClient(settings) as owned_store:
            response = await dispatch(function_event, owned_store, settings.function_path_pattern)
    return response.to_lambda()
