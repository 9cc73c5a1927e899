"""
FastAPI application entry point.

One process runs one accountability session. Startup creates the tables,
loads the session (which arms the reminder timer) and shutdown cancels the
timers again.
"""
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from routers import buddy
from core.config import settings
from core.database import check_db_connection, init_db
from core.exceptions import StorageUnavailable
from core.logging import setup_logging
from services.accountability_session import AccountabilitySession
from services.storage import AccountabilityStore
import logging
import time

# Setup logging first
setup_logging()
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Workout Buddy API",
    description="Workout accountability: streaks, reminders, and a buddy that talks back",
    version="1.0.0",
    docs_url="/docs" if settings.DEBUG else None,
    redoc_url="/redoc" if settings.DEBUG else None,
)


@app.on_event("startup")
async def start_session():
    session = AccountabilitySession(AccountabilityStore())
    app.state.session = session
    try:
        init_db()
        snapshot = await session.load()
        logger.info(
            f"Session loaded: streak={snapshot.streak} next={snapshot.next_workout_label}",
            extra={"extra_fields": {"tone": snapshot.tone.value, "phase": snapshot.phase.value}},
        )
    except StorageUnavailable as e:
        # Endpoints answer 503 until storage comes back
        logger.error(f"Session load failed: {e.detail}")


@app.on_event("shutdown")
async def stop_session():
    session = getattr(app.state, "session", None)
    if session:
        session.close()


# DEBUG=True allows all origins; otherwise CORS_ORIGINS (comma-separated)
# or the local web UI.
if settings.DEBUG:
    allowed_origins = ["*"]
elif settings.CORS_ORIGINS:
    allowed_origins = [origin.strip() for origin in settings.CORS_ORIGINS.split(",")]
else:
    allowed_origins = ["http://localhost:3000", "http://127.0.0.1:3000"]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=False,
    allow_methods=["GET", "POST", "PUT", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log each /v1 call with its timing."""
    start_time = time.time()
    response = await call_next(request)
    elapsed_ms = round((time.time() - start_time) * 1000, 2)

    if request.url.path.startswith("/v1"):
        logger.info(
            f"{request.method} {request.url.path} -> {response.status_code}",
            extra={
                "extra_fields": {
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "process_time_ms": elapsed_ms,
                }
            },
        )
    response.headers["X-Process-Time"] = str(elapsed_ms)
    return response


@app.exception_handler(StorageUnavailable)
async def storage_unavailable_handler(request: Request, exc: StorageUnavailable):
    """Persistence is down. No retry here; the client decides."""
    return JSONResponse(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        content={"detail": exc.detail, "error_code": exc.error_code},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    logger.error(
        f"Unhandled exception: {exc}",
        exc_info=True,
        extra={"extra_fields": {"method": request.method, "path": request.url.path}},
    )
    return JSONResponse(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        content={"detail": "Internal server error"},
    )


@app.get("/health")
async def health():
    """
    Liveness plus storage check.

    Returns:
        - 200: storage reachable
        - 503: database unavailable
    """
    if not check_db_connection():
        return JSONResponse(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            content={"status": "unhealthy", "database": "unavailable"},
        )

    session = getattr(app.state, "session", None)
    return {
        "status": "healthy",
        "phase": session.phase.value if session else None,
        "timestamp": time.time(),
    }


app.include_router(buddy.router)
