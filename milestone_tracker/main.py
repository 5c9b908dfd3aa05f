import asyncio
from fastapi import FastAPI, Depends, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from milestone_tracker.core.database import session_manager, aget_db
from sqlalchemy.ext.asyncio import AsyncSession

from milestone_tracker.api.v1.endpoints.milestones import router as milestones_router
from milestone_tracker.api.v1.endpoints.releases import router as releases_router
from milestone_tracker.api.v1.endpoints.dependents import router as dependents_router
from milestone_tracker.api.v1.endpoints.operations import router as operations_router
from milestone_tracker.utils.schedulers.closurecascadeworker import closure_cascade_worker

from slowapi import Limiter, _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from slowapi.util import get_remote_address
from sqlalchemy import text
import logging
from contextlib import asynccontextmanager
from milestone_tracker.core.config import settings
from milestone_tracker.core.exceptions import MilestoneTrackerError

logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)
limiter = Limiter(key_func=get_remote_address, default_limits=[settings.RATE_LIMIT_DEFAULT])

scheduler_tasks = []

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Async context manager for app lifespan events"""

    try:
        logger.info("🚀 Starting milestone tracker...")

        logger.info("🔌 Initializing database connection pool...")
        await session_manager.init()
        logger.info("✅ Database connection pool ready")

        if settings.CASCADE_WORKER_ENABLED:
            logger.info("📅 Starting closure cascade worker...")
            task = asyncio.create_task(closure_cascade_worker())
            scheduler_tasks.append(task)
            logger.info("✅ Closure cascade worker started")

    except Exception as e:
        logger.critical(f"🔥 Application startup failed: {str(e)}")
        raise

    try:
        logger.info("🏁 Milestone tracker startup complete")
        yield
    finally:
        try:
            logger.info("🛑 Beginning application shutdown...")

            for task in scheduler_tasks:
                if not task.done():
                    logger.info("⏹️ Stopping worker...")
                    task.cancel()
                    try:
                        await task
                    except asyncio.CancelledError:
                        logger.info("✅ Worker stopped")
            scheduler_tasks.clear()

            logger.info("🔌 Closing database connections...")
            await session_manager.close()
            logger.info("✅ Database connections closed cleanly")
        finally:
            logger.info("👋 Application shutdown complete")


app = FastAPI(
    title="Milestone Tracker API",
    description="Milestone lifecycle, release association and progress tracking",
    version="1.0.0",
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_middleware(SlowAPIMiddleware)

@app.middleware("http")
async def log_requests(request: Request, call_next):
    logger.info(f"Request: {request.method} {request.url}")
    response = await call_next(request)
    logger.info(f"Response status: {response.status_code}")
    return response


# CORS Configuration
if settings.ENVIRONMENT == "production":
    allowed_origins = []
else:
    allowed_origins = [
        "http://localhost:3000",
        "http://localhost:3001",
    ]

app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.error(f"Validation Error: {exc.errors()}")
    return JSONResponse(
        status_code=422,
        content={"detail": exc.errors()},
    )

@app.exception_handler(MilestoneTrackerError)
async def milestone_tracker_exception_handler(request: Request, exc: MilestoneTrackerError):
    if exc.status_code >= 500:
        logger.error(f"{exc.error}: {exc.detail}")
    else:
        logger.info(f"{exc.error}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail, "error": exc.error},
    )

@app.get("/", tags=["Health Check"])
async def health_check(db: AsyncSession = Depends(aget_db)):
    try:
        await db.execute(text("SELECT 1"))
        return {
            "status": "healthy",
            "service": "Milestone Tracker API",
            "database": "connected",
            "workers_running": len([t for t in scheduler_tasks if not t.done()])
        }
    except Exception as e:
        logger.error(f"Health check failed: {str(e)}")
        return {
            "status": "unhealthy",
            "service": "Milestone Tracker API",
            "database": "disconnected",
            "error": str(e)
        }


app.include_router(milestones_router, prefix="/api/v1", tags=["Milestones"])
app.include_router(releases_router, prefix="/api/v1", tags=["Releases"])
app.include_router(dependents_router, prefix="/api/v1", tags=["Sync"])
app.include_router(operations_router, prefix="/api/v1", tags=["Operations"])

logger.info(f"✅ Loaded {len(app.routes)} routes")
