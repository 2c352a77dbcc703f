"""GET /health — daemon health and scheduler status."""

from __future__ import annotations

import time

from fastapi import APIRouter

from promptwatch import __version__
from promptwatch.api.dependencies import SchedulerDep, SinkDep, StoreDep
from promptwatch.api.schemas import HealthResponse
from promptwatch.exceptions import StorageError
from promptwatch.logging import get_logger

log = get_logger(__name__)

router = APIRouter(tags=["health"])

_start_time = time.time()


@router.get("/health", response_model=HealthResponse, summary="Daemon health check")
async def health(
    store: StoreDep,
    scheduler: SchedulerDep,
    sink: SinkDep,
) -> HealthResponse:
    try:
        counts = await store.count_by_status()
        status = "ok"
    except StorageError as exc:
        log.warning("health_store_unavailable", error=exc.message)
        counts = {}
        status = "degraded"

    return HealthResponse(
        status=status if scheduler.running else "stopped",
        version=__version__,
        uptime_seconds=round(time.time() - _start_time, 2),
        scheduler_running=scheduler.running,
        in_flight_polls=len(scheduler.in_flight),
        active_watches=counts.get("active", 0),
        pending_results=len(sink.pending()),
    )
