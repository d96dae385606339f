"""
Shared snapshot of the collections the cross-entity joins need in full.

Sectors are not part of the snapshot; callers need only a few and fetch them
by id.
"""

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from functools import cached_property

from staffing.errors import StaleDataExceeded, UpstreamUnavailable
from staffing.models import Assignment, Collection, Timeslot, Volunteer
from staffing.remote import RecordAccessor

logger = logging.getLogger(__name__)


@dataclass
class BulkDataset:
    timeslots: list[Timeslot]
    assignments: list[Assignment]
    volunteers: list[Volunteer]
    fetched_at: float = field(default=0.0, compare=False)

    @cached_property
    def timeslots_by_id(self) -> dict[str, Timeslot]:
        return {t.id: t for t in self.timeslots}

    @cached_property
    def volunteers_by_id(self) -> dict[str, Volunteer]:
        return {v.id: v for v in self.volunteers}

    @cached_property
    def team_sizes(self) -> dict[str, int]:
        """Distinct assignments per timeslot id, over every assignment."""
        counts: dict[str, int] = {}
        for assignment in self.assignments:
            for timeslot_id in assignment.timeslot_ids:
                counts[timeslot_id] = counts.get(timeslot_id, 0) + 1
        return counts


class BulkDatasetCache:
    def __init__(
        self,
        accessor: RecordAccessor,
        *,
        ttl: float = 120.0,
        max_staleness: float = 1200.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._accessor = accessor
        self.ttl = ttl
        self.max_staleness = max_staleness
        self._clock = clock
        self._snapshot: BulkDataset | None = None
        self._refresh: asyncio.Task | None = None
        self._generation = 0
        self._refresh_generation = 0

    def age(self) -> float | None:
        if self._snapshot is None:
            return None
        return self._clock() - self._snapshot.fetched_at

    @property
    def refreshing(self) -> bool:
        return self._refresh is not None

    def expire(self) -> None:
        """
        Forget the snapshot; the next read refetches. A refresh already running
        stays registered but its result is not stored, and the next read waits
        for it to settle before starting its own.
        """
        self._snapshot = None
        self._generation += 1

    async def get_bulk_dataset(self) -> BulkDataset:
        while True:
            snapshot = self._snapshot
            age = self.age()
            if snapshot is not None and age < self.ttl:
                return snapshot

            task = self._refresh
            if task is None:
                break
            if self._refresh_generation != self._generation:
                logger.debug("waiting for an expired bulk refresh to settle")
                await asyncio.wait({task})
                continue
            # someone else is refreshing; an old-but-tolerable snapshot will do
            if snapshot is not None and age < self.max_staleness:
                logger.debug("serving %.0fs old bulk snapshot during refresh", age)
                return snapshot
            return await self._await_refresh(task, snapshot)

        logger.info("refreshing bulk dataset (age=%s)", None if age is None else f"{age:.0f}s")
        task = asyncio.ensure_future(self._load(self._generation))
        self._refresh = task
        self._refresh_generation = self._generation

        def _cleanup(t: asyncio.Task) -> None:
            if self._refresh is t:
                self._refresh = None
            if not t.cancelled():
                t.exception()

        task.add_done_callback(_cleanup)
        return await self._await_refresh(task, snapshot)

    async def _await_refresh(
        self, task: asyncio.Task, previous: BulkDataset | None
    ) -> BulkDataset:
        try:
            return await asyncio.shield(task)
        except UpstreamUnavailable as exc:
            if previous is not None:
                age = self._clock() - previous.fetched_at
                if age >= self.max_staleness:
                    raise StaleDataExceeded(age, self.max_staleness) from exc
            raise

    async def _load(self, generation: int) -> BulkDataset:
        timeslots, assignments, volunteers = await asyncio.gather(
            self._accessor.fetch_all(Collection.TIMESLOTS),
            self._accessor.fetch_all(Collection.ASSIGNMENTS),
            self._accessor.fetch_all(Collection.VOLUNTEERS),
        )
        snapshot = BulkDataset(
            timeslots=[Timeslot.from_record(r) for r in timeslots],
            assignments=[Assignment.from_record(r) for r in assignments],
            volunteers=[Volunteer.from_record(r) for r in volunteers],
            fetched_at=self._clock(),
        )
        if generation == self._generation:
            self._snapshot = snapshot
        else:
            logger.debug("bulk snapshot expired during refresh; not storing it")
        logger.info(
            "bulk dataset loaded: %d timeslots, %d assignments, %d volunteers",
            len(snapshot.timeslots),
            len(snapshot.assignments),
            len(snapshot.volunteers),
        )
        return snapshot
