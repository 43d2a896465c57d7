"""
Lessonbook Backend API Server

FastAPI application for teacher availability, lesson booking and
recurring slot billing. Background jobs run in-process on APScheduler.
"""
import logging
import time
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import text

from lessonbook.api.routes import admin, billing, scheduling
from lessonbook.config import LOG_LEVEL, SCHEDULER_ENABLED
from lessonbook.database import AsyncSessionLocal
from lessonbook.errors import DomainError, RetryExhaustedError
from lessonbook.services.scheduler import scheduler, start_scheduler, stop_scheduler
from lessonbook.services.time_utils import utcnow

API_VERSION = "1.0.0"

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def _error_body(code: str, message: str, details=None) -> dict:
    return {"error": {"code": code, "message": message, "details": details}}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the job scheduler with the app and stop it on shutdown."""
    logger.info(f"Starting Lessonbook API {API_VERSION}")
    if SCHEDULER_ENABLED:
        start_scheduler()
    else:
        logger.info("SCHEDULER_ENABLED is off; background jobs only run via the admin API")

    yield

    if SCHEDULER_ENABLED:
        stop_scheduler()
    logger.info("Lessonbook API stopped")


app = FastAPI(
    title="Lessonbook API",
    description="Lesson booking, recurring slots and monthly billing",
    version=API_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs",
    redoc_url="/api/redoc",
    openapi_url="/api/openapi.json"
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, specify exact origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration of every request"""
    started = time.perf_counter()
    response = await call_next(request)
    elapsed_ms = (time.perf_counter() - started) * 1000
    logger.info(f"{request.method} {request.url.path} -> {response.status_code} ({elapsed_ms:.1f}ms)")
    return response


@app.exception_handler(DomainError)
async def domain_exception_handler(request: Request, exc: DomainError):
    """Validation 400, not found 404, conflict 409, retries exhausted 503"""
    if isinstance(exc, RetryExhaustedError):
        logger.error(f"{request.method} {request.url.path} failed after retries: {exc}")
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body("SERVICE_UNAVAILABLE", "The service is temporarily unavailable, please try again"),
        )

    logger.info(f"{request.method} {request.url.path} rejected: {exc.code} {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.to_dict()})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content=_error_body("VALIDATION_ERROR", "Request validation failed", exc.errors()),
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {exc}", exc_info=True)
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content=_error_body(
            "INTERNAL_ERROR", "An internal server error occurred", str(exc) if app.debug else None
        ),
    )


@app.get("/health", tags=["Health"])
async def health_check():
    """
    Liveness and dependency check.

    Reports database reachability and whether the job scheduler is running;
    the status is "degraded" when the database cannot be reached.
    """
    database_ok = True
    try:
        async with AsyncSessionLocal() as session:
            await session.execute(text("SELECT 1"))
    except Exception as e:
        logger.warning(f"Health check could not reach the database: {e}")
        database_ok = False

    return {
        "status": "ok" if database_ok else "degraded",
        "timestamp": utcnow().isoformat(),
        "version": API_VERSION,
        "service": "lessonbook-api",
        "database": database_ok,
        "scheduler_running": scheduler.running,
    }


app.include_router(scheduling.router)
app.include_router(billing.router)
app.include_router(admin.router)


@app.get("/", tags=["Root"])
async def root():
    return {
        "name": "Lessonbook API",
        "version": API_VERSION,
        "description": "Lesson booking, recurring slots and monthly billing",
        "docs": "/api/docs",
        "health": "/health"
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True, log_level="info")
