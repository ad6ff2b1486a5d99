import asyncio
import os

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from omnigate.config import settings
from omnigate.dependencies import build_container, close_container
from omnigate.logging_config import get_logger, setup_logging
from omnigate.routers import conversations, health, hooks, internal, media
from omnigate.services.forward_service import run_forward_pass

setup_logging(settings.log_level)

logger = get_logger("main")

app = FastAPI(
    title="Omnigate",
    description="Multi-channel messaging gateway with human handoff",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(hooks.router)
app.include_router(internal.router)
app.include_router(conversations.router)
app.include_router(media.router)
app.include_router(health.router)

forward_logger = get_logger("forward_worker")
_forward_worker_task: asyncio.Task | None = None


def _is_forward_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.forward_worker_enabled


async def _forward_worker_loop() -> None:
    interval_seconds = max(settings.forward_worker_interval_seconds, 0.1)
    while True:
        try:
            await asyncio.sleep(interval_seconds)
            container = app.state.container
            await run_forward_pass(
                container.forwarder,
                container.session_factory,
                limit=settings.forward_batch_limit,
            )
        except asyncio.CancelledError:
            break
        except Exception as exc:
            forward_logger.error(
                "Forward worker loop failed",
                extra={"context": {"error": str(exc)}},
            )


@app.exception_handler(Exception)
async def unhandled_exception(request: Request, exc: Exception):
    logger.error(
        "Unhandled error",
        exc_info=exc,
        extra={"context": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


@app.on_event("startup")
async def startup() -> None:
    global _forward_worker_task
    if getattr(app.state, "container", None) is None:
        app.state.container = build_container(settings)
    if not _is_forward_worker_enabled():
        return
    if _forward_worker_task is None or _forward_worker_task.done():
        _forward_worker_task = asyncio.create_task(_forward_worker_loop())
        forward_logger.info("Forward worker started")


@app.on_event("shutdown")
async def shutdown() -> None:
    global _forward_worker_task
    if _forward_worker_task is not None:
        _forward_worker_task.cancel()
        try:
            await _forward_worker_task
        except asyncio.CancelledError:
            pass
        _forward_worker_task = None

    container = getattr(app.state, "container", None)
    if container is not None:
        await close_container(container)
        app.state.container = None
