# campusreads/main.py
from contextlib import asynccontextmanager

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from fastapi import FastAPI, Request, status as fastapi_status, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from loguru import logger
from pydantic import ValidationError
from pymongo.errors import PyMongoError
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from campusreads.core.config import (
    setup_logging,
    CORS_ORIGINS,
    MEDIA_BASE_URL,
    MEDIA_ROOT,
    ORPHAN_PURGE_INTERVAL_HOURS,
    SCHEDULER_TIMEZONE,
)
from campusreads.core.rate_limiter import get_rate_limiter, rate_limit_exception_handler
from campusreads.middleware.logging import RequestLoggingMiddleware
from campusreads.middleware.authentication import AuthMiddleware
from campusreads.db.database import init_db, ping_db
from campusreads.api.v1.api import api_router_v1
from campusreads.scheduler.jobs import purge_orphaned_media

# --- Scheduler Instance ---
scheduler = AsyncIOScheduler(timezone=SCHEDULER_TIMEZONE)


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    logger.info("Application startup...")
    await init_db()
    logger.info("Database initialized.")

    MEDIA_ROOT.mkdir(parents=True, exist_ok=True)

    logger.info("Adding scheduler jobs...")
    scheduler.add_job(
        purge_orphaned_media,
        trigger=IntervalTrigger(hours=ORPHAN_PURGE_INTERVAL_HOURS),
        id="purge_orphaned_media_job",
        name="Purge Orphaned Media",
        replace_existing=True,
        misfire_grace_time=60 * 30,
    )
    scheduler.start()
    logger.info(f"Scheduler started with timezone: {scheduler.timezone}")
    yield
    logger.info("Application shutdown...")
    if scheduler.running: scheduler.shutdown()


app = FastAPI(
    title="CampusReads API",
    description="Peer-to-peer book lending for a single campus.",
    version="1.0.0",
    lifespan=lifespan,
)

# --- MIDDLEWARE ---

# 1. Error Handling
app.add_exception_handler(RateLimitExceeded, rate_limit_exception_handler)


@app.exception_handler(RequestValidationError)
@app.exception_handler(ValidationError)
async def validation_exception_handler(request: Request, exc: ValidationError):
    logger.error(f"Validation Error on {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=fastapi_status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={"detail": "Validation Error", "errors": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    logger.warning(f"HTTP Exception: Status={exc.status_code}, Detail={exc.detail}")
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail}, headers=getattr(exc, "headers", None))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled Exception: {exc}", exc_info=True)
    return JSONResponse(status_code=fastapi_status.HTTP_500_INTERNAL_SERVER_ERROR, content={"detail": "An internal server error occurred."})


# Added middleware wraps the ones added before it; request logging must run
# outside auth so rejected requests still get a request id.
# 2. Authentication Middleware
app.add_middleware(AuthMiddleware)

# 3. Request Logging Middleware
app.add_middleware(RequestLoggingMiddleware)

# 4. Rate Limiter State (for @limiter.limit)
app.state.limiter = get_rate_limiter()

# 5. GZip Middleware
app.add_middleware(GZipMiddleware, minimum_size=500)

# 6. CORS for the web client
app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# --- END MIDDLEWARE ---

app.include_router(api_router_v1)

# Uploaded images are served straight from disk
app.mount(MEDIA_BASE_URL, StaticFiles(directory=str(MEDIA_ROOT), check_dir=False), name="media")


@app.get("/")
async def read_root():
    return {"message": "Welcome to CampusReads!"}


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/health/db")
async def health_db():
    try:
        await ping_db()
        return {"status": "success", "message": "MongoDB connection is healthy."}
    except PyMongoError as e:
        logger.error(f"MongoDB ping failed: {e}")
        raise HTTPException(status_code=503, detail="MongoDB connection failed.") from e
