"""
Query entry points of the aggregation layer.

Every query goes: result cache -> coalescer -> bulk snapshot and/or targeted
fetches -> joins -> enrichment -> result cache. Writes made elsewhere are
reported through ``invalidate`` / ``invalidate_all``.
"""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from datetime import UTC, datetime
from typing import Any

from staffing.bulk import BulkDatasetCache
from staffing.cache import CacheStore, collection_tag, make_cache_key
from staffing.coalescer import RequestCoalescer
from staffing.config import Settings, get_settings
from staffing.enrichment import sector_stats, volunteer_summary
from staffing.errors import InvalidReference, NotFound
from staffing.joins import (
    find_volunteer_by_email,
    listing_sector_ids,
    missions_view,
    sector_centric_view,
    sector_ids_to_fetch,
    volunteer_centric_view,
    volunteer_timeslot_listing,
)
from staffing.models import (
    Assignment,
    Collection,
    Mission,
    Sector,
    Timeslot,
    Volunteer,
)
from staffing.references import check_record_id, split_valid_ids
from staffing.remote import BoundedAccessor, RecordAccessor
from staffing.views import (
    AggregateStats,
    CacheDiagnostics,
    SectorView,
    VolunteerMissionsView,
    VolunteerTimeslotsView,
    VolunteerView,
)

logger = logging.getLogger(__name__)

NowFn = Callable[[], datetime]
Computation = Callable[[], Awaitable[tuple[Any, set[str], bool]]]

BULK_COLLECTIONS = frozenset(
    {Collection.VOLUNTEERS, Collection.TIMESLOTS, Collection.ASSIGNMENTS}
)


def _ordered_union(groups: Iterable[Iterable[str]]) -> list[str]:
    return list(dict.fromkeys(i for group in groups for i in group))


class StaffingAggregator:
    def __init__(
        self,
        accessor: RecordAccessor,
        *,
        settings: Settings | None = None,
        now_fn: NowFn | None = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.settings = settings or get_settings()
        self.accessor = BoundedAccessor(
            accessor, timeout=self.settings.fetch_timeout_seconds
        )
        self.now_fn = now_fn or (lambda: datetime.now(UTC))
        self.coalescer = RequestCoalescer()
        self.cache = CacheStore(
            clock=clock,
            default_ttl=self.settings.result_ttl_seconds,
            max_entries=self.settings.max_cache_entries,
            coalescer=self.coalescer,
        )
        self.bulk = BulkDatasetCache(
            self.accessor,
            ttl=self.settings.bulk_ttl_seconds,
            max_staleness=self.settings.max_staleness_seconds,
            clock=clock,
        )

    async def aclose(self) -> None:
        close = getattr(self.accessor.inner, "aclose", None)
        if close is not None:
            await close()

    async def _cached(
        self, key: str, compute: Computation, *, reads: Iterable[str]
    ) -> Any:
        """
        ``reads`` are the tags the computation depends on before it has run;
        an invalidation matching them detaches it from later callers.
        """
        value, found = self.cache.get(key)
        if found:
            logger.debug("result cache hit: %s", key)
            return value

        async def run() -> Any:
            since = self.cache.checkpoint()
            value, tags, empty = await compute()
            ttl = (
                self.settings.empty_result_ttl_seconds
                if empty
                else self.settings.result_ttl_seconds
            )
            self.cache.set(key, value, ttl, tags=tags, since=since)
            return value

        logger.debug("result cache miss: %s", key)
        return await self.coalescer.run_coalesced(key, run, tags=reads)

    def _require_id(self, collection: str, record_id: str) -> str:
        try:
            return check_record_id(record_id, self.settings.record_id_pattern)
        except InvalidReference:
            raise NotFound(collection, record_id) from None

    async def _fetch_volunteer(self, volunteer_id: str) -> Volunteer:
        self._require_id(Collection.VOLUNTEERS, volunteer_id)
        record = await self.accessor.fetch_by_id(Collection.VOLUNTEERS, volunteer_id)
        if record is None:
            raise NotFound(Collection.VOLUNTEERS, volunteer_id)
        return Volunteer.from_record(record)

    async def get_volunteer_centric_view(self, volunteer_id: str) -> VolunteerView:
        async def compute():
            volunteer = await self._fetch_volunteer(volunteer_id)
            valid, invalid = split_valid_ids(
                volunteer.assignment_ids,
                self.settings.record_id_pattern,
                context=f"volunteer {volunteer.id} assignments",
            )
            tags = {volunteer.id, collection_tag(Collection.ASSIGNMENTS)}
            now = self.now_fn()
            if not valid:
                view = volunteer_centric_view(
                    volunteer, [], {}, {}, {}, now, dropped_references=len(invalid)
                )
                return view, tags, True

            assignment_records, dataset = await asyncio.gather(
                self.accessor.fetch_by_ids(Collection.ASSIGNMENTS, valid),
                self.bulk.get_bulk_dataset(),
            )
            assignments = [Assignment.from_record(r) for r in assignment_records]

            timeslot_ids = _ordered_union(a.timeslot_ids for a in assignments)
            timeslots_by_id = {
                r.id: Timeslot.from_record(r)
                for r in await self.accessor.fetch_by_ids(
                    Collection.TIMESLOTS, timeslot_ids
                )
            }
            sector_ids = sector_ids_to_fetch(assignments, timeslots_by_id)
            sectors_by_id = {
                r.id: Sector.from_record(r)
                for r in await self.accessor.fetch_by_ids(
                    Collection.SECTORS, sector_ids
                )
            }

            view = volunteer_centric_view(
                volunteer,
                assignments,
                timeslots_by_id,
                sectors_by_id,
                dataset.team_sizes,
                now,
                dropped_references=len(invalid),
            )
            tags.update(valid, timeslot_ids, sector_ids)
            return view, tags, not view.assignments

        reads = {
            volunteer_id,
            collection_tag(Collection.ASSIGNMENTS),
            collection_tag(Collection.TIMESLOTS),
            collection_tag(Collection.SECTORS),
        }
        return await self._cached(
            make_cache_key("volunteer", volunteer_id), compute, reads=reads
        )

    async def get_sector_centric_view(self, sector_id: str) -> SectorView:
        async def compute():
            self._require_id(Collection.SECTORS, sector_id)
            record, dataset = await asyncio.gather(
                self.accessor.fetch_by_id(Collection.SECTORS, sector_id),
                self.bulk.get_bulk_dataset(),
            )
            if record is None:
                raise NotFound(Collection.SECTORS, sector_id)

            view = sector_centric_view(Sector.from_record(record), dataset)
            return view, set(tags), not view.volunteers

        tags = {
            sector_id,
            collection_tag(Collection.TIMESLOTS),
            collection_tag(Collection.ASSIGNMENTS),
            collection_tag(Collection.VOLUNTEERS),
        }
        return await self._cached(
            make_cache_key("sector", sector_id), compute, reads=tags
        )

    async def get_aggregate_stats(
        self, sector_ids: Iterable[str] | None = None
    ) -> AggregateStats:
        wanted = sorted(set(sector_ids)) if sector_ids is not None else None

        async def compute():
            if wanted is None:
                records = await self.accessor.fetch_all(Collection.SECTORS)
                tags = {collection_tag(Collection.SECTORS)}
            else:
                valid, _ = split_valid_ids(
                    wanted, self.settings.record_id_pattern, context="sector stats"
                )
                records = await self.accessor.fetch_by_ids(Collection.SECTORS, valid)
                tags = set(valid)
            stats = sector_stats(Sector.from_record(r) for r in records)
            return stats, tags, stats.total_sectors == 0

        if wanted is None:
            key = make_cache_key("stats", None, sectors="all")
            reads = {collection_tag(Collection.SECTORS)}
        else:
            key = make_cache_key("stats", None, sectors=wanted)
            reads = set(wanted)
        return await self._cached(key, compute, reads=reads)

    async def get_volunteer_missions(
        self, volunteer_id: str
    ) -> VolunteerMissionsView:
        async def compute():
            volunteer = await self._fetch_volunteer(volunteer_id)
            valid, invalid = split_valid_ids(
                volunteer.mission_ids,
                self.settings.record_id_pattern,
                context=f"volunteer {volunteer.id} missions",
            )
            records = await self.accessor.fetch_by_ids(Collection.MISSIONS, valid)
            view = missions_view(
                volunteer_summary(volunteer),
                (Mission.from_record(r) for r in records),
                self.now_fn(),
                dropped_references=len(invalid),
            )
            return view, {volunteer.id, *valid}, not view.missions

        return await self._cached(
            make_cache_key("missions", volunteer_id),
            compute,
            reads={volunteer_id, collection_tag(Collection.MISSIONS)},
        )

    async def get_volunteer_timeslots(self, email: str) -> VolunteerTimeslotsView:
        normalized = email.strip().casefold()

        async def compute():
            dataset = await self.bulk.get_bulk_dataset()
            volunteer = find_volunteer_by_email(dataset, normalized)
            if volunteer is None:
                raise NotFound(Collection.VOLUNTEERS, normalized)

            sector_ids = listing_sector_ids(volunteer, dataset)
            sectors_by_id = {
                r.id: Sector.from_record(r)
                for r in await self.accessor.fetch_by_ids(
                    Collection.SECTORS, sector_ids
                )
            }
            view = volunteer_timeslot_listing(volunteer, dataset, sectors_by_id)
            tags = {
                volunteer.id,
                *sector_ids,
                collection_tag(Collection.VOLUNTEERS),
                collection_tag(Collection.TIMESLOTS),
                collection_tag(Collection.ASSIGNMENTS),
            }
            return view, tags, not view.timeslots

        key = make_cache_key("volunteer-timeslots", None, email=normalized)
        reads = {
            collection_tag(Collection.VOLUNTEERS),
            collection_tag(Collection.TIMESLOTS),
            collection_tag(Collection.ASSIGNMENTS),
            collection_tag(Collection.SECTORS),
        }
        return await self._cached(key, compute, reads=reads)

    def invalidate(self, collection: str, record_id: str) -> int:
        """
        Called after a write to ``collection``/``record_id``. Purges the cached
        payloads built from that record or from the whole collection.
        """
        purged = self.cache.invalidate({record_id, collection_tag(collection)})
        if collection in BULK_COLLECTIONS:
            self.bulk.expire()
        logger.info(
            "invalidated %s %s (%d cached results purged)",
            collection,
            record_id,
            purged,
        )
        return purged

    def invalidate_all(self) -> None:
        self.cache.purge_all()
        self.bulk.expire()
        logger.info("all caches cleared")

    def diagnostics(self) -> CacheDiagnostics:
        return CacheDiagnostics(
            result_cache_size=len(self.cache),
            in_flight=self.coalescer.active_requests,
            bulk_age_seconds=self.bulk.age(),
            bulk_refreshing=self.bulk.refreshing,
        )
