"""
REST Record Store

Talks to the custom ledger API that identifies the caller by an
anonymous client id. The API exposes two endpoints:

    GET  /api/dashboard/{ownerId}   → {"bank_balance": {...} | null, ...}
    POST /api/upsert/{entity}       body {"ownerId": ..., "values": {...}}

There is no change feed, so this store does not support push.
"""

from typing import Any, Mapping, Optional

import httpx
import structlog

from smart_ledger.config import get_settings
from smart_ledger.models.records import (
    EntityName,
    LedgerRecord,
    describe_invalid_row,
    get_schema,
)
from smart_ledger.services.storage.interface import (
    FetchError,
    RecordStoreInterface,
    SaveError,
)


logger = structlog.get_logger(__name__)


def _error_message(response: httpx.Response) -> str:
    """Best human-readable message from an error response (JSON or text)."""
    try:
        body = response.json()
    except ValueError:
        body = None

    if isinstance(body, dict):
        for key in ("error", "message", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
            if isinstance(value, dict) and isinstance(value.get("message"), str):
                return value["message"]

    text = response.text.strip()
    if text:
        return text
    return f"HTTP {response.status_code}"


class RestRecordStore(RecordStoreInterface):
    """
    httpx-based client for the ledger REST API.

    The HTTP client is created lazily and reused; pass `http_client`
    to inject one (tests use httpx.MockTransport).
    """

    supports_push = False
    supports_combined_fetch = True

    def __init__(
        self,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings().rest
        self._base_url = (base_url or settings.base_url).rstrip("/")
        self._timeout = timeout or settings.timeout_seconds
        self._http_client = http_client
        self._owns_client = http_client is None

    def _get_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(timeout=self._timeout)
        return self._http_client

    async def fetch_dashboard(
        self,
        owner_id: str,
    ) -> dict[EntityName, Optional[LedgerRecord]]:
        """Fetch the latest row of every record type in one request."""
        url = f"{self._base_url}/api/dashboard/{owner_id}"
        try:
            response = await self._get_client().get(url)
        except httpx.HTTPError as e:
            raise FetchError(f"Network error: {e}")

        if response.status_code >= 400:
            raise FetchError(_error_message(response))

        try:
            body = response.json()
        except ValueError:
            raise FetchError("Dashboard response was not valid JSON")
        if not isinstance(body, dict):
            raise FetchError("Dashboard response was not an object")

        records: dict[EntityName, Optional[LedgerRecord]] = {}
        for entity in EntityName:
            row = body.get(entity.value)
            if not row:
                records[entity] = None
                continue
            try:
                records[entity] = get_schema(entity).parse_record(
                    {"owner_id": owner_id, **row}
                )
            except ValueError as e:
                raise FetchError(
                    f"Malformed {entity.value} record: {describe_invalid_row(e)}",
                    entity=entity.value,
                )
        return records

    async def fetch_latest(
        self,
        entity: EntityName,
        owner_id: str,
    ) -> Optional[LedgerRecord]:
        entity = EntityName(entity)
        try:
            records = await self.fetch_dashboard(owner_id)
        except FetchError as e:
            e.entity = entity.value
            raise
        return records[entity]

    async def upsert(
        self,
        entity: EntityName,
        owner_id: str,
        values: Mapping[str, Any],
    ) -> LedgerRecord:
        entity = EntityName(entity)
        schema = get_schema(entity)
        url = f"{self._base_url}/api/upsert/{entity.value}"
        payload = {"ownerId": owner_id, "values": dict(values)}

        try:
            response = await self._get_client().post(url, json=payload)
        except httpx.HTTPError as e:
            raise SaveError(f"Network error: {e}", entity=entity.value)

        if response.status_code >= 400:
            message = _error_message(response)
            logger.warning(
                "rest_upsert_rejected",
                entity=entity.value,
                status_code=response.status_code,
                error=message,
            )
            raise SaveError(message, entity=entity.value)

        try:
            body = response.json()
        except ValueError:
            body = None

        row: dict[str, Any] = {**dict(values), "owner_id": owner_id}
        if isinstance(body, dict):
            row.update(body)
        try:
            return schema.parse_record(row)
        except ValueError as e:
            raise SaveError(
                f"Unexpected response for {schema.noun}: {describe_invalid_row(e)}",
                entity=entity.value,
            )

    async def close(self) -> None:
        if self._http_client is not None and self._owns_client:
            await self._http_client.aclose()
            self._http_client = None
