"""
Request coalescing: concurrent callers asking for the same key share one
computation instead of each hitting the store.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable
from typing import Any

logger = logging.getLogger(__name__)

ComputeFn = Callable[[], Awaitable[Any]]


class RequestCoalescer:
    """
    Runs at most one computation per key at a time.

    The first caller for a key starts the computation as its own task; later
    callers await the same task. The task is shielded, so a caller that gets
    cancelled leaves the computation running for the others. The key is
    unregistered from the task's done-callback, which runs before any waiter
    resumes, so a failure never leaves a stuck key.

    A computation is registered with the tags of the data it reads, so a write
    only detaches the computations that depend on it.
    """

    def __init__(self) -> None:
        self._in_flight: dict[str, asyncio.Task] = {}
        self._tags: dict[str, frozenset[str]] = {}

    async def run_coalesced(
        self, key: str, compute_fn: ComputeFn, *, tags: Iterable[str] = ()
    ) -> Any:
        task = self._in_flight.get(key)
        if task is not None:
            logger.debug("joining in-flight computation for %s", key)
        else:
            logger.debug("starting computation for %s", key)
            task = asyncio.ensure_future(compute_fn())
            self._in_flight[key] = task
            self._tags[key] = frozenset(tags)

            def _cleanup(t: asyncio.Task, key: str = key) -> None:
                if self._in_flight.get(key) is t:
                    del self._in_flight[key]
                    self._tags.pop(key, None)
                # mark the exception retrieved even if every waiter went away
                if not t.cancelled():
                    t.exception()

            task.add_done_callback(_cleanup)

        return await asyncio.shield(task)

    def forget(self, key: str) -> None:
        """Detach the in-flight computation for ``key``; later callers start afresh."""
        self._tags.pop(key, None)
        if self._in_flight.pop(key, None) is not None:
            logger.debug("detached in-flight computation for %s", key)

    def forget_tagged(self, tags: Iterable[str]) -> int:
        """Detach every in-flight computation registered with any of ``tags``."""
        tags = frozenset(tags)
        doomed = [k for k, registered in self._tags.items() if registered & tags]
        for key in doomed:
            self.forget(key)
        return len(doomed)

    def forget_all(self) -> None:
        if self._in_flight:
            logger.debug("detached %d in-flight computations", len(self._in_flight))
        self._in_flight.clear()
        self._tags.clear()

    @property
    def active_requests(self) -> int:
        """Number of currently in-flight computations."""
        return len(self._in_flight)
