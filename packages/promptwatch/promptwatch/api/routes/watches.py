"""API routes for watch registration, status and cancellation.

REST endpoints::

    POST   /watches                 — register a new watch
    GET    /watches?status=         — list watches (active|fired|expired|cancelled|error|all)
    GET    /watches/{watch_id}      — full watch record
    PUT    /watches/{watch_id}/cancel — cancel an active watch
    DELETE /watches/{watch_id}      — delete a terminal watch

Errors are raised as PromptWatchError subclasses and rendered by the global
handler in ``promptwatch.api.middleware``.
"""

from __future__ import annotations

from fastapi import APIRouter

from promptwatch.api.dependencies import ServiceDep
from promptwatch.api.schemas import (
    RegisterWatchRequest,
    RegisterWatchResponse,
    WatchDetail,
    WatchSummary,
)
from promptwatch.watches.durations import format_duration
from promptwatch.watches.models import format_watch, to_iso

router = APIRouter(prefix="/watches", tags=["watches"])


@router.post("", status_code=201, response_model=RegisterWatchResponse)
async def register_watch(body: RegisterWatchRequest, service: ServiceDep) -> RegisterWatchResponse:
    """Register a watch.  The daemon starts polling it on its next tick."""
    watch = await service.register(
        trigger=body.trigger,
        params=body.params,
        prompt=body.action.prompt,
        cwd=body.action.cwd,
        ttl=body.ttl,
        interval=body.interval,
    )
    return RegisterWatchResponse(
        watch_id=watch.watch_id,
        expires_at=to_iso(watch.expires_at) or "",
        interval_seconds=watch.interval_seconds,
        message=(
            f'Watch registered. The daemon will poll "{watch.trigger}" '
            f"every {format_duration(watch.interval_seconds)}."
        ),
    )


@router.get("", response_model=list[WatchSummary])
async def list_watches(service: ServiceDep, status: str | None = None) -> list[WatchSummary]:
    """List watches, newest first."""
    watches = await service.list(status)
    return [
        WatchSummary(
            watch_id=w.watch_id,
            trigger=w.trigger,
            params=w.params,
            status=w.status.value,
            created_at=to_iso(w.created_at) or "",
            expires_at=to_iso(w.expires_at) or "",
            last_polled_at=to_iso(w.last_polled_at),
            summary=format_watch(w),
        )
        for w in watches
    ]


@router.get("/{watch_id}", response_model=WatchDetail)
async def get_watch(watch_id: str, service: ServiceDep) -> WatchDetail:
    return WatchDetail.from_watch(await service.get(watch_id))


@router.put("/{watch_id}/cancel", response_model=WatchDetail)
async def cancel_watch(watch_id: str, service: ServiceDep) -> WatchDetail:
    """Cancel an active watch.  An in-flight poll finishes but cannot fire."""
    return WatchDetail.from_watch(await service.cancel(watch_id))


@router.delete("/{watch_id}", status_code=204, response_model=None)
async def delete_watch(watch_id: str, service: ServiceDep) -> None:
    """Permanently remove a terminal watch."""
    await service.delete(watch_id)
