import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from . import models  # noqa: F401
from .config import STATUS_TICK_INTERVAL_SECONDS, STATUS_TICKER_ENABLED
from .database import Base, engine
from .domain.directory.router import router as directory_router
from .domain.scheduling.router import router as scheduling_router
from .exceptions import SchedulingError
from .routes.status_automation import router as status_router
from .routes.subscriptions import router as subscriptions_router
from .services.status_automation import StatusTicker
from .shared.clock import format_timestamp, utc_now

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("urllib3").setLevel(logging.WARNING)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Application starting up...")
    try:
        Base.metadata.create_all(bind=engine, checkfirst=True)
        logger.info("Database tables created successfully")
    except Exception as e:
        # Ignore "already exists" errors from race conditions between workers
        error_msg = str(e)
        if "already exists" in error_msg or "duplicate key" in error_msg:
            logger.info("Database tables already exist (created by another worker)")
        else:
            logger.error(f"Failed to create database tables: {e}")
            raise

    ticker = StatusTicker(STATUS_TICK_INTERVAL_SECONDS) if STATUS_TICKER_ENABLED else None
    if ticker:
        ticker.start()
    else:
        logger.info("In-process status ticker disabled; run the arq worker instead")

    yield

    if ticker:
        await ticker.stop()
    logger.info("Application shutting down...")


app = FastAPI(title="TrimQueue API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(SchedulingError)
async def scheduling_exception_handler(request: Request, exc: SchedulingError):
    """Render scheduling errors with their category so clients can tell them apart"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.category}: {exc.detail}")
    else:
        logger.warning(f"{request.method} {request.url.path} - {exc.category}: {exc.detail}")
    return JSONResponse(
        status_code=exc.status_code, content={"detail": exc.detail, "error": exc.category}
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400, content={"detail": jsonable_errors(exc.errors()), "error": "validation_error"}
    )


@app.exception_handler(PydanticValidationError)
async def model_validation_exception_handler(request: Request, exc: PydanticValidationError):
    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"detail": jsonable_errors(exc.errors()), "error": "validation_error"},
    )


def jsonable_errors(errors: list) -> list:
    # ctx may hold the raw exception object
    return [{k: v for k, v in error.items() if k != "ctx"} for error in errors]


@app.middleware("http")
async def log_requests(request: Request, call_next):
    try:
        response = await call_next(request)
        return response
    except Exception as e:
        logger.error(f"{request.method} {request.url.path} - Error: {str(e)}")
        raise


# CORS Configuration
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:5173,http://localhost:3000",
).split(",")

logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

# Routes
app.include_router(scheduling_router)
app.include_router(directory_router)
app.include_router(subscriptions_router)
app.include_router(status_router)


@app.get("/health")
def health():
    return {"status": "healthy", "timestamp": format_timestamp(utc_now())}
