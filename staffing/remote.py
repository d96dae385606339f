"""
Access to the remote record store.

``RecordAccessor`` is the contract the aggregation layer depends on.
``AirtableAccessor`` implements it over the Airtable REST API and
``BoundedAccessor`` wraps any accessor so every call is time-limited and
fails with ``UpstreamUnavailable``.
"""

import asyncio
import logging
import time
from collections.abc import Sequence
from typing import Any, Literal, Protocol
from urllib.parse import quote

import httpx
from pydantic import BaseModel, Field

from staffing.config import Settings
from staffing.errors import StaffingError, UpstreamUnavailable
from staffing.models import RemoteRecord
from staffing.references import split_valid_ids

logger = logging.getLogger(__name__)

# Airtable caps pageSize at 100; formula URLs get long past ~50 ids
AIRTABLE_PAGE_SIZE = 100
ID_BATCH_SIZE = 50


class SortSpec(BaseModel):
    field: str
    direction: Literal["asc", "desc"] = "asc"


class QueryOptions(BaseModel):
    filter_by_formula: str | None = None
    sort: list[SortSpec] = Field(default_factory=list)
    max_records: int | None = None
    page_size: int | None = None
    view: str | None = None


class RecordAccessor(Protocol):
    async def fetch_all(
        self, collection: str, options: QueryOptions | None = None
    ) -> list[RemoteRecord]: ...

    async def fetch_by_ids(
        self, collection: str, ids: Sequence[str]
    ) -> list[RemoteRecord]: ...

    async def fetch_by_id(
        self, collection: str, record_id: str
    ) -> RemoteRecord | None: ...


def _to_record(payload: dict[str, Any]) -> RemoteRecord:
    return RemoteRecord(
        id=payload["id"],
        fields=payload.get("fields") or {},
        created_at=payload.get("createdTime"),
    )


class AirtableAccessor:
    """Reads records from one Airtable base, spacing requests to respect its rate limit."""

    def __init__(
        self, settings: Settings, *, client: httpx.AsyncClient | None = None
    ) -> None:
        self._tables = settings.table_names()
        self._id_pattern = settings.record_id_pattern
        self._min_interval = settings.min_request_interval_seconds
        self._client = client or httpx.AsyncClient(
            base_url=f"{settings.airtable_api_url.rstrip('/')}/{settings.airtable_base_id}",
            headers={"Authorization": f"Bearer {settings.airtable_api_key}"},
            timeout=settings.fetch_timeout_seconds,
        )
        self._throttle = asyncio.Lock()
        self._last_request = 0.0

    async def aclose(self) -> None:
        await self._client.aclose()

    def _table_path(self, collection: str) -> str:
        try:
            table = self._tables[collection]
        except KeyError:
            raise ValueError(f"unknown collection: {collection}") from None
        return "/" + quote(table, safe="")

    async def _wait_turn(self) -> None:
        async with self._throttle:
            elapsed = time.monotonic() - self._last_request
            if elapsed < self._min_interval:
                wait = self._min_interval - elapsed
                logger.debug("rate limiting: waiting %.2fs", wait)
                await asyncio.sleep(wait)
            self._last_request = time.monotonic()

    async def _get(
        self,
        collection: str,
        path: str,
        params: list[tuple[str, Any]] | None = None,
        *,
        allow_404: bool = False,
    ) -> dict[str, Any] | None:
        await self._wait_turn()
        try:
            response = await self._client.get(path, params=params)
        except httpx.TimeoutException as exc:
            logger.error("Airtable request timed out for %s", collection)
            raise UpstreamUnavailable(
                f"timed out reading {collection}", collection=collection
            ) from exc
        except httpx.HTTPError as exc:
            logger.error("Airtable request failed for %s: %s", collection, exc)
            raise UpstreamUnavailable(
                f"could not read {collection}", collection=collection
            ) from exc

        if allow_404 and response.status_code == 404:
            return None
        if response.status_code >= 400:
            logger.error(
                "Airtable returned %s for %s", response.status_code, collection
            )
            raise UpstreamUnavailable(
                f"store returned {response.status_code} reading {collection}",
                collection=collection,
            )
        return response.json()

    async def fetch_all(
        self, collection: str, options: QueryOptions | None = None
    ) -> list[RemoteRecord]:
        options = options or QueryOptions()
        path = self._table_path(collection)

        base_params: list[tuple[str, Any]] = [
            ("pageSize", min(options.page_size or AIRTABLE_PAGE_SIZE, AIRTABLE_PAGE_SIZE))
        ]
        if options.max_records:
            base_params.append(("maxRecords", options.max_records))
        if options.filter_by_formula:
            base_params.append(("filterByFormula", options.filter_by_formula))
        if options.view:
            base_params.append(("view", options.view))
        for i, order in enumerate(options.sort):
            base_params.append((f"sort[{i}][field]", order.field))
            base_params.append((f"sort[{i}][direction]", order.direction))

        records: list[RemoteRecord] = []
        offset: str | None = None
        while True:
            params = list(base_params)
            if offset:
                params.append(("offset", offset))
            page = await self._get(collection, path, params)
            records.extend(_to_record(item) for item in page.get("records", []))
            offset = page.get("offset")
            if not offset:
                break
            if options.max_records and len(records) >= options.max_records:
                break

        if options.max_records:
            records = records[: options.max_records]
        logger.info("retrieved %d records from %s", len(records), collection)
        return records

    async def fetch_by_ids(
        self, collection: str, ids: Sequence[str]
    ) -> list[RemoteRecord]:
        valid, _ = split_valid_ids(
            ids, self._id_pattern, context=f"{collection} lookup"
        )
        wanted = list(dict.fromkeys(valid))
        if not wanted:
            return []

        found: dict[str, RemoteRecord] = {}
        for start in range(0, len(wanted), ID_BATCH_SIZE):
            batch = wanted[start : start + ID_BATCH_SIZE]
            formula = "OR(" + ",".join(f"RECORD_ID()='{i}'" for i in batch) + ")"
            for record in await self.fetch_all(
                collection, QueryOptions(filter_by_formula=formula)
            ):
                found[record.id] = record

        missing = len(wanted) - len(found)
        if missing:
            logger.info("%d of %d %s ids no longer exist", missing, len(wanted), collection)
        return [found[i] for i in wanted if i in found]

    async def fetch_by_id(
        self, collection: str, record_id: str
    ) -> RemoteRecord | None:
        valid, _ = split_valid_ids(
            [record_id], self._id_pattern, context=f"{collection} lookup"
        )
        if not valid:
            return None
        path = f"{self._table_path(collection)}/{quote(record_id, safe='')}"
        payload = await self._get(collection, path, allow_404=True)
        if payload is None:
            logger.warning("record %s not found in %s", record_id, collection)
            return None
        return _to_record(payload)


class BoundedAccessor:
    """
    Time-limits every call to the wrapped accessor. Any failure other than our
    own errors surfaces as ``UpstreamUnavailable``.
    """

    def __init__(self, inner: RecordAccessor, *, timeout: float) -> None:
        self.inner = inner
        self.timeout = timeout

    async def _call(self, collection: str, operation: str, coro):
        try:
            async with asyncio.timeout(self.timeout):
                return await coro
        except TimeoutError as exc:
            logger.error(
                "%s on %s exceeded %.1fs", operation, collection, self.timeout
            )
            raise UpstreamUnavailable(
                f"{operation} on {collection} timed out", collection=collection
            ) from exc
        except StaffingError:
            raise
        except Exception as exc:
            logger.error("%s on %s failed: %s", operation, collection, exc)
            raise UpstreamUnavailable(
                f"{operation} on {collection} failed", collection=collection
            ) from exc

    async def fetch_all(
        self, collection: str, options: QueryOptions | None = None
    ) -> list[RemoteRecord]:
        return await self._call(
            collection, "fetch_all", self.inner.fetch_all(collection, options)
        )

    async def fetch_by_ids(
        self, collection: str, ids: Sequence[str]
    ) -> list[RemoteRecord]:
        if not ids:
            return []
        return await self._call(
            collection, "fetch_by_ids", self.inner.fetch_by_ids(collection, ids)
        )

    async def fetch_by_id(
        self, collection: str, record_id: str
    ) -> RemoteRecord | None:
        return await self._call(
            collection, "fetch_by_id", self.inner.fetch_by_id(collection, record_id)
        )
