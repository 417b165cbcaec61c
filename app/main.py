import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from app.config import settings
from app.db import create_schema
from app.logging_config import configure_logging
from app.scheduler.events import EventBus
from app.scheduler.exceptions import SchedulerError
from app.scheduler.router import router as scheduler_router

configure_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.auto_create_schema:
        await create_schema()
        logger.info("Document tables ensured")
    yield


app = FastAPI(title="DreamTrack Scheduler", version="0.1.0", lifespan=lifespan)
app.state.bus = EventBus()
app.include_router(scheduler_router)


@app.exception_handler(SchedulerError)
async def scheduler_error_handler(request: Request, exc: SchedulerError) -> JSONResponse:
    logger.warning(
        "Scheduler error %s on %s: %s",
        exc.code,
        request.url.path,
        exc.message,
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.code, "detail": exc.message},
    )


@app.get("/")
async def root() -> dict:
    return {
        "status": "ok",
        "docs": "/docs",
        "health": "/health",
        "scheduler": {
            "week": "/scheduler/users/{user_id}/week",
            "toggle": "/scheduler/users/{user_id}/instances/{instance_id}/toggle",
            "increment": "/scheduler/users/{user_id}/instances/{instance_id}/increment",
            "decrement": "/scheduler/users/{user_id}/instances/{instance_id}/decrement",
            "skip": "/scheduler/users/{user_id}/instances/{instance_id}/skip",
            "goals": "/scheduler/users/{user_id}/goals",
            "rollover": "/scheduler/users/{user_id}/rollover",
            "repair_templates": "/scheduler/users/{user_id}/repair/templates",
        },
    }


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}
