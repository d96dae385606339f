import asyncio
from collections import Counter, defaultdict
from collections.abc import MutableMapping, Sequence
from typing import Any

from staffing.models import RemoteRecord
from staffing.remote import QueryOptions


class InMemoryRecordStore:
    """
    Simple in-memory record store, keyed by collection then record id.

    Implements the accessor protocol, so it can stand in for the remote store
    in tests and local runs. ``calls`` counts fetches per (operation, collection).
    """

    def __init__(self, *, delay: float = 0.0) -> None:
        self._store: MutableMapping[str, dict[str, RemoteRecord]] = defaultdict(
            dict
        )
        self.delay = delay
        self.calls: Counter[tuple[str, str]] = Counter()

    def put(
        self, collection: str, record_id: str, fields: dict[str, Any]
    ) -> RemoteRecord:
        record = RemoteRecord(id=record_id, fields=dict(fields))
        self._store[collection][record_id] = record
        return record

    def delete(self, collection: str, record_id: str) -> None:
        self._store[collection].pop(record_id, None)

    def all(self, collection: str) -> list[RemoteRecord]:
        return list(self._store[collection].values())

    async def _pause(self) -> None:
        # every fetch is a suspension point, like a real network call
        await asyncio.sleep(self.delay)

    async def fetch_all(
        self, collection: str, options: QueryOptions | None = None
    ) -> list[RemoteRecord]:
        self.calls["fetch_all", collection] += 1
        await self._pause()
        options = options or QueryOptions()
        if options.filter_by_formula:
            raise ValueError("formula filters are not supported in memory")

        records = self.all(collection)
        for order in reversed(options.sort):
            records.sort(
                key=lambda r: (
                    r.fields.get(order.field) is None,
                    str(r.fields.get(order.field, "")),
                ),
                reverse=order.direction == "desc",
            )
        if options.max_records:
            records = records[: options.max_records]
        return [r.model_copy(deep=True) for r in records]

    async def fetch_by_ids(
        self, collection: str, ids: Sequence[str]
    ) -> list[RemoteRecord]:
        self.calls["fetch_by_ids", collection] += 1
        await self._pause()
        table = self._store[collection]
        return [
            table[i].model_copy(deep=True)
            for i in dict.fromkeys(ids)
            if i in table
        ]

    async def fetch_by_id(
        self, collection: str, record_id: str
    ) -> RemoteRecord | None:
        self.calls["fetch_by_id", collection] += 1
        await self._pause()
        record = self._store[collection].get(record_id)
        return record.model_copy(deep=True) if record else None
