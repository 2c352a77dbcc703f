"""API layer — FastAPI application factory.

``create_app()`` is the single entry point for building the FastAPI app.
All components are wired here so that tests can build an isolated daemon by
calling ``create_app()`` with custom settings.

Startup order::

    WatchStore.init()           (fatal on failure)
    ResultSink.init()
    TriggerExecutor / ActionExecutor / TriggerCatalog
    WatchScheduler.start()      (reconcile, then tick loop)

Shutdown stops the scheduler (graceful drain) and then closes the store.
"""

from __future__ import annotations

from fastapi import FastAPI

from promptwatch import __version__
from promptwatch.actions.executor import ActionExecutor
from promptwatch.api.middleware import (
    AccessLogMiddleware,
    RequestIDMiddleware,
    build_error_handler,
)
from promptwatch.api.routes import health, triggers, watches
from promptwatch.config import Settings, get_settings
from promptwatch.exceptions import PromptWatchError
from promptwatch.logging import configure_logging, get_logger
from promptwatch.results.sink import ResultSink
from promptwatch.scheduler import WatchScheduler
from promptwatch.service import WatchService
from promptwatch.triggers.catalog import TriggerCatalog
from promptwatch.triggers.executor import TriggerExecutor
from promptwatch.watches.store import WatchStore

log = get_logger(__name__)


def create_app(settings: Settings | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        settings: Optional settings override (used in tests).

    Returns:
        A fully configured FastAPI application instance.
    """
    if settings is None:
        settings = get_settings()

    configure_logging(
        level=settings.logging.level,
        format=settings.logging.format,
        log_file=str(settings.logging.file) if settings.logging.file else None,
    )

    app = FastAPI(
        title="PromptWatch",
        description="Daemon that runs a prompt once an external trigger condition becomes true.",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.settings = settings

    # Middleware (order matters: outermost applied last)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Exception handlers
    app.add_exception_handler(PromptWatchError, build_error_handler())  # type: ignore[arg-type]

    # Routers
    app.include_router(health.router)
    app.include_router(watches.router)
    app.include_router(triggers.router)

    # Startup / shutdown lifecycle
    @app.on_event("startup")
    async def startup() -> None:
        log.info("daemon_starting", version=__version__)
        storage = settings.storage

        # The store is the only component whose failure is fatal.
        store = WatchStore(storage.db_path)
        await store.init()

        sink = ResultSink(storage.results_dir, storage.archive_dir)
        sink.init()
        storage.logs_dir.mkdir(parents=True, exist_ok=True)
        storage.triggers_dir.mkdir(parents=True, exist_ok=True)

        trigger_executor = TriggerExecutor(storage.triggers_dir, timeout=settings.triggers.timeout_seconds)
        action_executor = ActionExecutor(
            command=settings.actions.command,
            login_shell=settings.actions.login_shell,
            timeout=settings.actions.timeout_seconds,
            logs_dir=storage.logs_dir,
        )
        scheduler = WatchScheduler(
            store=store,
            trigger_executor=trigger_executor,
            action_executor=action_executor,
            result_sink=sink,
            tick_seconds=settings.scheduler.tick_seconds,
            shutdown_timeout=settings.scheduler.shutdown_timeout_seconds,
            error_alert_threshold=settings.scheduler.error_alert_threshold,
            retention_seconds=settings.scheduler.retention_hours * 3600.0,
            retention_sweep_seconds=settings.scheduler.retention_sweep_seconds,
        )

        app.state.watch_store = store
        app.state.result_sink = sink
        app.state.scheduler = scheduler
        app.state.watch_service = WatchService(store, TriggerCatalog(storage.triggers_dir), settings)

        await scheduler.start()
        log.info(
            "daemon_started",
            host=settings.server.host,
            port=settings.server.port,
            db_path=str(storage.db_path),
            triggers_dir=str(storage.triggers_dir),
        )

    @app.on_event("shutdown")
    async def shutdown() -> None:
        log.info("daemon_stopping")
        if getattr(app.state, "scheduler", None) is not None:
            await app.state.scheduler.stop()
        if getattr(app.state, "watch_store", None) is not None:
            await app.state.watch_store.close()
        log.info("daemon_stopped")

    return app
