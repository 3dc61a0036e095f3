"""Pytest configuration and fixtures."""

import os

TEST_ENV = {
    "AIRTABLE_API_KEY": "test-key",
    "AIRTABLE_BASE_ID": "appTest",
    "BOARDS_TABLE_ID": "tblBoards",
    "SESSIONS_TABLE_ID": "tblSessions",
    "TOPICS_TABLE_ID": "tblTopics",
    "VOTES_TABLE_ID": "tblVotes",
    "COMMENTS_TABLE_ID": "tblComments",
    "USERS_TABLE_ID": "tblUsers",
}

# The app module reads settings on import
for _key, _value in TEST_ENV.items():
    os.environ.setdefault(_key, _value)

import json
import re
from collections import defaultdict
from typing import AsyncGenerator

import httpx
import pytest
from httpx import AsyncClient, ASGITransport

from backend.app.api.gateway import get_record_store
from backend.app.client.api import ApiClient
from backend.app.core.config import Settings, get_settings
from backend.app.main import app
from backend.app.services.airtable import AirtableClient

FUNCTION_BASE = "http://test/.netlify/functions/airtable"

LINK_RE = re.compile(r"FIND\('((?:\\.|[^'\\])*)', ARRAYJOIN\(\{(\w+)\}\)\) > 0")
EQUALS_RE = re.compile(r"\{(\w+)\}='((?:\\.|[^'\\])*)'")


def _unescape(value: str) -> str:
    return re.sub(r"\\(.)", r"\1", value)


class FakeAirtable:
    """
    In-memory Airtable served through ``httpx.MockTransport``.

    Understands the formulas the adapter builds (link containment, field
    equality, AND), paginates list results and can be primed with canned
    responses that are returned before normal handling.
    """

    def __init__(self, page_size: int = 2):
        self.page_size = page_size
        self.tables: dict[str, dict[str, dict]] = defaultdict(dict)
        self.requests: list[httpx.Request] = []
        self.queued: list[httpx.Response] = []
        self._counter = 0

    def seed(self, table: str, fields: dict) -> str:
        self._counter += 1
        record_id = f"rec{self._counter:04d}"
        self.tables[table][record_id] = dict(fields)
        return record_id

    def queue(self, status_code: int, payload: dict | None = None, headers: dict | None = None) -> None:
        self.queued.append(httpx.Response(status_code, json=payload or {}, headers=headers))

    def records(self, table: str) -> dict[str, dict]:
        return self.tables[table]

    @staticmethod
    def _matches(fields: dict, formula: str | None) -> bool:
        if not formula:
            return True
        for value, field in LINK_RE.findall(formula):
            linked = fields.get(field) or []
            if isinstance(linked, str):
                linked = [linked]
            if _unescape(value) not in ",".join(linked):
                return False
        for field, value in EQUALS_RE.findall(formula):
            if fields.get(field) != _unescape(value):
                return False
        return True

    @staticmethod
    def _record(record_id: str, fields: dict) -> dict:
        return {"id": record_id, "createdTime": "2026-01-01T00:00:00.000Z", "fields": fields}

    @staticmethod
    def _not_found() -> httpx.Response:
        return httpx.Response(
            404,
            json={"error": {"type": "MODEL_ID_NOT_FOUND", "message": "Could not find a record"}},
        )

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.queued:
            return self.queued.pop(0)

        parts = request.url.path.strip("/").split("/")
        table = parts[2]
        record_id = parts[3] if len(parts) > 3 else None
        rows = self.tables[table]
        body = json.loads(request.content) if request.content else {}

        if request.method == "GET" and record_id:
            if record_id not in rows:
                return self._not_found()
            return httpx.Response(200, json=self._record(record_id, rows[record_id]))

        if request.method == "GET":
            params = request.url.params
            matching = [
                self._record(rid, fields)
                for rid, fields in rows.items()
                if self._matches(fields, params.get("filterByFormula"))
            ]
            if params.get("maxRecords"):
                matching = matching[: int(params["maxRecords"])]
            start = int(params.get("offset") or 0)
            page = matching[start:start + self.page_size]
            payload = {"records": page}
            if start + self.page_size < len(matching):
                payload["offset"] = str(start + self.page_size)
            return httpx.Response(200, json=payload)

        if request.method == "POST":
            new_id = self.seed(table, body.get("fields") or {})
            return httpx.Response(200, json=self._record(new_id, rows[new_id]))

        if request.method == "PATCH":
            if record_id not in rows:
                return self._not_found()
            rows[record_id].update(body.get("fields") or {})
            return httpx.Response(200, json=self._record(record_id, rows[record_id]))

        if request.method == "DELETE":
            if record_id not in rows:
                return self._not_found()
            del rows[record_id]
            return httpx.Response(200, json={"id": record_id, "deleted": True})

        return httpx.Response(405, json={"error": "METHOD_NOT_ALLOWED"})


@pytest.fixture
def settings() -> Settings:
    """Settings pointing at the fake tables."""
    return Settings(**{key.lower(): value for key, value in TEST_ENV.items()})


@pytest.fixture
def fake_airtable() -> FakeAirtable:
    return FakeAirtable()


@pytest.fixture
async def record_store(settings: Settings, fake_airtable: FakeAirtable) -> AsyncGenerator[AirtableClient, None]:
    """Airtable adapter wired to the in-memory fake."""
    async with AirtableClient(settings, transport=httpx.MockTransport(fake_airtable.handler)) as store:
        yield store


@pytest.fixture
async def test_client(record_store: AirtableClient, settings: Settings) -> AsyncGenerator[AsyncClient, None]:
    """
    HTTP client for the app, backed by the fake record store.

    Overrides the record store and settings dependencies for the test.
    """
    app.dependency_overrides[get_record_store] = lambda: record_store
    app.dependency_overrides[get_settings] = lambda: settings

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
async def api_client(test_client: AsyncClient) -> AsyncGenerator[ApiClient, None]:
    """Board API client talking to the app in-process."""
    async with ApiClient(base_url=FUNCTION_BASE, transport=ASGITransport(app=app)) as client:
        yield client


@pytest.fixture
def board_with_session(fake_airtable: FakeAirtable) -> dict:
    """A board with a vote limit of 2, a session and two topics."""
    board_id = fake_airtable.seed("tblBoards", {"Name": "Team board", "VoteLimit": 2})
    session_id = fake_airtable.seed("tblSessions", {"Name": "Retro", "Code": "ABC123", "Board": [board_id]})
    topics = [
        fake_airtable.seed("tblTopics", {"Title": title, "Status": "todo", "Session": [session_id]})
        for title in ("Deploy cadence", "On-call load")
    ]
    user_id = fake_airtable.seed("tblUsers", {"Name": "Ada", "ExternalId": "ext-ada", "Sessions": [session_id]})
    return {"board_id": board_id, "session_id": session_id, "topic_ids": topics, "user_id": user_id}
