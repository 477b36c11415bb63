"""leaseworker admin API application."""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI

from leaseworker import __version__
from leaseworker.api import router
from leaseworker.bootstrap import Runtime, build_runtime
from leaseworker.config import LifecycleMode, Settings, settings
from leaseworker.db import init_db
from leaseworker.observability import configure_logging
from leaseworker.tasks import WorkerPool

logger = logging.getLogger("leaseworker")

POOL_SHUTDOWN_TIMEOUT_SECONDS = 30.0


async def start_worker_pool(app: FastAPI, runtime: Runtime) -> None:
    pool = runtime.build_pool(mode=LifecycleMode.CONTINUOUS)
    app.state.pool = pool
    app.state.pool_task = asyncio.create_task(pool.run(runtime.settings.pool_size))
    logger.info(f"Worker pool started ({runtime.settings.pool_size} workers)")


async def stop_worker_pool(app: FastAPI) -> None:
    pool: Optional[WorkerPool] = getattr(app.state, "pool", None)
    task: Optional[asyncio.Task] = getattr(app.state, "pool_task", None)
    if pool is None or task is None:
        return

    pool.stop()
    try:
        await asyncio.wait_for(task, timeout=POOL_SHUTDOWN_TIMEOUT_SECONDS)
    except asyncio.TimeoutError:
        logger.warning("Worker pool did not stop gracefully, cancelling")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
    app.state.pool = None
    app.state.pool_task = None


def create_app(config: Settings = settings, runtime: Optional[Runtime] = None) -> FastAPI:
    """
    Build the FastAPI app.

    With ``runtime`` given the app uses it as is and the lifespan neither
    builds nor closes one; otherwise the lifespan owns the runtime.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(config.log_level)
        logger.info("Starting leaseworker API...")
        logger.info(f"Environment: {config.env.value}")

        owns_runtime = app.state.runtime is None
        if owns_runtime:
            app.state.runtime = build_runtime(config)
        active: Runtime = app.state.runtime

        await init_db(active.engine)
        logger.info("Database initialized")

        if config.run_workers_in_api:
            await start_worker_pool(app, active)

        yield

        logger.info("Shutting down leaseworker API...")
        await stop_worker_pool(app)
        if owns_runtime:
            await active.aclose()
            app.state.runtime = None
        logger.info("Shutdown complete")

    app = FastAPI(
        title="leaseworker",
        description="Lease-based batch generation worker: queue administration API",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.runtime = runtime
    app.include_router(router)
    return app


app = create_app()


def main():
    """Entry point for the application."""
    uvicorn.run(
        "leaseworker.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.debug,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
