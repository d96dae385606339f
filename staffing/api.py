import logging
from collections.abc import AsyncIterator, Callable
from contextlib import asynccontextmanager
from datetime import UTC, datetime

from fastapi import APIRouter, FastAPI, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from staffing.config import Settings, get_settings
from staffing.database import InMemoryRecordStore
from staffing.errors import NotFound, UpstreamUnavailable
from staffing.log import configure_logging
from staffing.models import Collection
from staffing.remote import AirtableAccessor, RecordAccessor
from staffing.service import StaffingAggregator
from staffing.views import (
    AggregateStats,
    CacheDiagnostics,
    SectorView,
    VolunteerMissionsView,
    VolunteerTimeslotsView,
    VolunteerView,
)

logger = logging.getLogger(__name__)

router = APIRouter()

NowFn = Callable[[], datetime]

RETRY_AFTER_SECONDS = 5


class InvalidateRequest(BaseModel):
    collection: Collection
    id: str


def _aggregator(request: Request) -> StaffingAggregator:
    return request.app.state.aggregator


@router.get("/health")
async def health_check(request: Request) -> dict:
    diagnostics = _aggregator(request).diagnostics()
    return {"status": "ok", "cache": diagnostics.model_dump(by_alias=True)}


@router.get("/volunteers/timeslots", response_model=VolunteerTimeslotsView)
async def volunteer_timeslots(
    request: Request, email: str = Query(min_length=3)
) -> VolunteerTimeslotsView:
    return await _aggregator(request).get_volunteer_timeslots(email)


@router.get("/volunteers/{volunteer_id}/assignments", response_model=VolunteerView)
async def volunteer_assignments(volunteer_id: str, request: Request) -> VolunteerView:
    return await _aggregator(request).get_volunteer_centric_view(volunteer_id)


@router.get(
    "/volunteers/{volunteer_id}/missions", response_model=VolunteerMissionsView
)
async def volunteer_missions(
    volunteer_id: str, request: Request
) -> VolunteerMissionsView:
    return await _aggregator(request).get_volunteer_missions(volunteer_id)


@router.get("/sectors/{sector_id}/volunteers", response_model=SectorView)
async def sector_volunteers(sector_id: str, request: Request) -> SectorView:
    return await _aggregator(request).get_sector_centric_view(sector_id)


@router.get("/stats", response_model=AggregateStats)
async def aggregate_stats(
    request: Request, sector_id: list[str] | None = Query(default=None)
) -> AggregateStats:
    return await _aggregator(request).get_aggregate_stats(sector_id)


@router.post("/cache/invalidate")
async def invalidate(body: InvalidateRequest, request: Request) -> dict:
    purged = _aggregator(request).invalidate(body.collection, body.id)
    return {"status": "invalidated", "purged": purged}


@router.post("/cache/invalidate-all")
async def invalidate_all(request: Request) -> dict[str, str]:
    _aggregator(request).invalidate_all()
    return {"status": "cleared"}


@router.get("/cache/diagnostics", response_model=CacheDiagnostics)
async def cache_diagnostics(request: Request) -> CacheDiagnostics:
    return _aggregator(request).diagnostics()


async def not_found_handler(request: Request, exc: NotFound) -> JSONResponse:
    label = "Volunteer" if exc.collection == Collection.VOLUNTEERS else "Sector"
    return JSONResponse(status_code=404, content={"detail": f"{label} not found"})


async def upstream_handler(
    request: Request, exc: UpstreamUnavailable
) -> JSONResponse:
    logger.warning("upstream unavailable while serving %s: %s", request.url.path, exc)
    return JSONResponse(
        status_code=503,
        content={"detail": "Staffing data is temporarily unavailable"},
        headers={"Retry-After": str(RETRY_AFTER_SECONDS)},
    )


def _default_accessor(settings: Settings) -> RecordAccessor:
    if settings.backend == "memory":
        return InMemoryRecordStore()
    return AirtableAccessor(settings)


def create_app(
    settings: Settings | None = None,
    *,
    accessor: RecordAccessor | None = None,
    now_fn: NowFn | None = None,
    clock: Callable[[], float] | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    configure_logging(settings.log_level)

    accessor = accessor if accessor is not None else _default_accessor(settings)
    aggregator_kwargs = {"clock": clock} if clock is not None else {}
    aggregator = StaffingAggregator(
        accessor,
        settings=settings,
        now_fn=now_fn or (lambda: datetime.now(UTC)),
        **aggregator_kwargs,
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        yield
        await aggregator.aclose()

    app = FastAPI(lifespan=lifespan)
    app.state.settings = settings
    app.state.accessor = accessor
    app.state.aggregator = aggregator

    app.add_exception_handler(NotFound, not_found_handler)
    app.add_exception_handler(UpstreamUnavailable, upstream_handler)
    app.include_router(router)
    return app
