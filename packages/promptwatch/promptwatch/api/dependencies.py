"""API layer — FastAPI dependency injection.

The store, service and scheduler are created once at startup and injected
via FastAPI's dependency system.
"""

from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request

from promptwatch.results.sink import ResultSink
from promptwatch.scheduler import WatchScheduler
from promptwatch.service import WatchService
from promptwatch.watches.store import WatchStore


def _state(request: Request, name: str) -> object:
    value = getattr(request.app.state, name, None)
    if value is None:
        raise HTTPException(status_code=503, detail="Daemon is still starting up.")
    return value


def get_watch_service(request: Request) -> WatchService:
    return _state(request, "watch_service")  # type: ignore[return-value]


def get_watch_store(request: Request) -> WatchStore:
    return _state(request, "watch_store")  # type: ignore[return-value]


def get_scheduler(request: Request) -> WatchScheduler:
    return _state(request, "scheduler")  # type: ignore[return-value]


def get_result_sink(request: Request) -> ResultSink:
    return _state(request, "result_sink")  # type: ignore[return-value]


# Shorthand type aliases for route signatures.
ServiceDep = Annotated[WatchService, Depends(get_watch_service)]
StoreDep = Annotated[WatchStore, Depends(get_watch_store)]
SchedulerDep = Annotated[WatchScheduler, Depends(get_scheduler)]
SinkDep = Annotated[ResultSink, Depends(get_result_sink)]
