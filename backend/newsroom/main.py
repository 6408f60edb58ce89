from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import logging

from newsroom.core.config import settings
from newsroom.core.context import build_context
from newsroom.core.exceptions import (
    DuplicateEmailError,
    EditorNotConfiguredError,
    GenerationError,
    NewsroomError,
    NoArticlesInWindowError,
    NoEditionsInWindowError,
    NotFoundError,
)
from newsroom.core.logging_config import CorrelationIdMiddleware, log_job_event, setup_logging
from newsroom.api.endpoints import cron, editions, jobs
from newsroom.services.scheduler import PeriodicRunner

# Configure structured JSON logging
setup_logging(logging.DEBUG if settings.DEBUG else logging.INFO)
logger = logging.getLogger(__name__)

ERROR_STATUS_CODES = {
    NotFoundError: 404,
    DuplicateEmailError: 409,
    EditorNotConfiguredError: 409,
    NoArticlesInWindowError: 409,
    NoEditionsInWindowError: 409,
    GenerationError: 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logger.info("Starting newsroom application...")

    context = getattr(app.state, "context", None) or build_context(settings)
    app.state.context = context

    runner = None
    if settings.SCHEDULER_ENABLED:
        runner = PeriodicRunner(context.jobs, settings.SCHEDULER_TICK_MINUTES)
        runner.start()
        log_job_event(
            "scheduler.started",
            f"Periodic jobs every {settings.SCHEDULER_TICK_MINUTES} minutes",
        )

    yield

    logger.info("Shutting down newsroom application...")
    if runner:
        runner.shutdown()
    await context.close()


app = FastAPI(
    title="Newsroom",
    description="Multi-tenant AI reporters and editors",
    version="1.0.0",
    lifespan=lifespan,
)

# Add correlation ID middleware (first, so all logs have correlation IDs)
app.add_middleware(CorrelationIdMiddleware)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(NewsroomError)
async def newsroom_error_handler(request: Request, exc: NewsroomError):
    status_code = next(
        (code for error_type, code in ERROR_STATUS_CODES.items() if isinstance(exc, error_type)),
        400,
    )
    if status_code >= 500:
        logger.error(f"{request.url.path} failed: {str(exc)}")
    return JSONResponse(status_code=status_code, content={"detail": str(exc)})


# Include routers
app.include_router(cron.router, prefix="/api/cron", tags=["cron"])
app.include_router(jobs.router, prefix="/api/editor/jobs", tags=["jobs"])
app.include_router(editions.router, prefix="/api", tags=["editions"])


@app.get("/")
def root():
    return {
        "name": "Newsroom",
        "version": "1.0.0",
        "description": "Multi-tenant AI reporters and editors",
    }


@app.get("/health")
def health_check():
    return {"status": "healthy"}
