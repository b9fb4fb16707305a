import asyncio
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from deployctl.api.v1 import deploy, health, rollback, status, webhook
from deployctl.config import settings
from deployctl.dependencies import get_monitor, get_pipeline
from deployctl.middleware import ErrorHandlingMiddleware, LoggingMiddleware

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    stop = asyncio.Event()
    tasks = []

    if settings.POLL_ENABLED:
        tasks.append(asyncio.create_task(get_pipeline().run_forever(stop)))
    if settings.MONITOR_ENABLED:
        tasks.append(asyncio.create_task(get_monitor().run(stop)))

    logger.info(
        f"🚀 {settings.APP_NAME} started (branch={settings.TRACKED_BRANCH}, "
        f"polling={'on' if settings.POLL_ENABLED else 'off'}, "
        f"monitor={'on' if settings.MONITOR_ENABLED else 'off'})"
    )
    try:
        yield
    finally:
        stop.set()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"👋 {settings.APP_NAME} stopped")


def create_app() -> FastAPI:
    app = FastAPI(
        title="deployctl",
        description="Continuous-deployment controller with health-checked cutover and rollback",
        version="0.1.0",
        lifespan=lifespan,
    )

    # CORS
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    # Order matters - last added is first executed
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(ErrorHandlingMiddleware, enable_error_logging=True)

    # Mount routers
    app.include_router(health.router, prefix="/api/v1")
    app.include_router(webhook.router, prefix="/api/v1")
    app.include_router(deploy.router, prefix="/api/v1")
    app.include_router(rollback.router, prefix="/api/v1")
    app.include_router(status.router, prefix="/api/v1")

    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("deployctl.main:app", host="0.0.0.0", port=8080, log_level=settings.LOG_LEVEL.lower())
