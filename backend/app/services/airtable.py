"""
Airtable record store adapter.

Wraps the Airtable REST API with entity-aware reads and writes, follows list
pagination cursors and retries rate-limited requests with exponential backoff.
"""

import asyncio
import json
import logging
from typing import Any, Mapping
from urllib.parse import quote

import httpx

from backend.app.core.config import Settings
from backend.app.core.exceptions import RecordNotFoundError, UpstreamError
from backend.app.schemas.records import SCHEMAS, EntityKind, RecordModel

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = 429


def escape_formula_value(value: str) -> str:
    """Escape a value for use inside a single-quoted formula string."""
    return str(value).replace("\\", "\\\\").replace("'", "\\'")


def link_filter(field: str, record_id: str) -> str:
    """Formula matching records whose link field contains ``record_id``."""
    return f"FIND('{escape_formula_value(record_id)}', ARRAYJOIN({{{field}}})) > 0"


def field_equals(field: str, value: str) -> str:
    """Formula matching records whose field equals ``value`` exactly."""
    return f"{{{field}}}='{escape_formula_value(value)}'"


def all_of(*formulas: str) -> str:
    """Combine formulas with AND."""
    if len(formulas) == 1:
        return formulas[0]
    return f"AND({', '.join(formulas)})"


def _safe_json(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"message": text}


class AirtableClient:
    """Async client for the Airtable tables backing the board."""

    def __init__(self, settings: Settings, transport: httpx.AsyncBaseTransport | None = None):
        """
        Initialize the client.

        Args:
            settings: Application settings (credentials, table ids, retry policy)
            transport: Optional httpx transport, used to stub the store in tests
        """
        self.settings = settings
        self.max_retries = settings.airtable_max_retries
        self.retry_backoff = settings.airtable_retry_backoff
        self._client = httpx.AsyncClient(
            base_url=f"{settings.airtable_api_base_url}/{quote(settings.airtable_base_id, safe='')}/",
            headers={
                "Authorization": f"Bearer {settings.airtable_api_key}",
                "Content-Type": "application/json",
            },
            timeout=settings.airtable_timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "AirtableClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    def _path(self, kind: EntityKind, record_id: str | None = None) -> str:
        path = quote(self.settings.table_id(kind), safe="")
        if record_id:
            path = f"{path}/{quote(record_id, safe='')}"
        return path

    def _retry_delay(self, response: httpx.Response, attempt: int) -> float:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return max(0.0, float(retry_after))
            except ValueError:
                pass
        return self.retry_backoff * (2 ** attempt)

    async def _request(
        self,
        method: str,
        kind: EntityKind,
        record_id: str | None = None,
        params: Mapping[str, Any] | None = None,
        body: Any = None,
    ) -> Any:
        """
        Send one request, retrying on 429.

        Raises:
            RecordNotFoundError: If the store answers 404 for a record path
            UpstreamError: On any other non-success status, or when retries run out
            httpx.TransportError: Propagated unchanged
        """
        path = self._path(kind, record_id)
        query = {key: value for key, value in (params or {}).items() if value is not None}
        attempt = 0

        while True:
            response = await self._client.request(
                method,
                path,
                params=query or None,
                json=body,
            )

            if response.status_code == RETRYABLE_STATUS and attempt < self.max_retries:
                delay = self._retry_delay(response, attempt)
                logger.warning(
                    f"[AIRTABLE] Rate limited on {method} {path}, "
                    f"retry {attempt + 1}/{self.max_retries} in {delay:.2f}s"
                )
                await asyncio.sleep(delay)
                attempt += 1
                continue

            payload = _safe_json(response)
            if response.is_error:
                logger.error(f"[AIRTABLE] {method} {path} failed with {response.status_code}")
                if response.status_code == 404 and record_id:
                    raise RecordNotFoundError(kind.value, record_id, payload)
                raise UpstreamError(response.status_code, payload)
            return payload

    async def get(self, kind: EntityKind, record_id: str) -> RecordModel:
        record = await self._request("GET", kind, record_id)
        return SCHEMAS[kind].from_external(record)

    async def list(
        self,
        kind: EntityKind,
        formula: str | None = None,
        max_records: int | None = None,
    ) -> list[RecordModel]:
        """
        List every record matching ``formula``, following pagination cursors.

        Args:
            kind: Entity kind (selects the table)
            formula: Optional Airtable ``filterByFormula`` expression
            max_records: Optional cap passed through as ``maxRecords``

        Returns:
            Entity models in store order
        """
        schema = SCHEMAS[kind]
        records: list[RecordModel] = []
        offset: str | None = None

        while True:
            page = await self._request(
                "GET",
                kind,
                params={
                    "filterByFormula": formula,
                    "maxRecords": max_records,
                    "offset": offset,
                },
            )
            records.extend(schema.from_external(record) for record in page.get("records") or [])
            offset = page.get("offset")
            if not offset:
                break

        logger.debug(f"[AIRTABLE] Listed {len(records)} {kind.value} records")
        return records

    async def create(self, kind: EntityKind, data: Mapping[str, Any]) -> RecordModel:
        schema = SCHEMAS[kind]
        record = await self._request("POST", kind, body={"fields": schema.to_external(data)})
        return schema.from_external(record)

    async def update(self, kind: EntityKind, record_id: str, data: Mapping[str, Any]) -> RecordModel:
        schema = SCHEMAS[kind]
        record = await self._request(
            "PATCH",
            kind,
            record_id,
            body={"fields": schema.to_external(data)},
        )
        return schema.from_external(record)

    async def delete(self, kind: EntityKind, record_id: str) -> dict[str, Any]:
        return await self._request("DELETE", kind, record_id)
