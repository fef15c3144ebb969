import logging
import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

# Import all models to ensure they're registered with SQLAlchemy Base
from . import (
    models,  # noqa: F401
    models_billing,  # noqa: F401
    models_notification,  # noqa: F401
)
from .database import Base, engine
from .domain.billing.router import router as billing_router
from .domain.consultations.router import router as consultations_router
from .domain.notifications.router import router as notifications_router
from .domain.scheduling.router import public_router as public_booking_router
from .domain.scheduling.router import router as appointments_router
from .errors import BookingEngineError
from .routes.cron import router as cron_router

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

# Reduce verbosity of third-party libraries
logging.getLogger("httpx").setLevel(logging.WARNING)
logging.getLogger("httpcore").setLevel(logging.WARNING)


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
    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Consultorio API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(BookingEngineError)
async def booking_engine_exception_handler(request: Request, exc: BookingEngineError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {type(exc).__name__}: {exc.message}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.status_code}: {exc.message}")
    return JSONResponse(status_code=exc.status_code, content={"error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Body and query validation failures are client input errors: report them
    as 400, except a missing Authorization header which is a 401
    """
    for error in exc.errors():
        if error.get("loc") and "authorization" in str(error.get("loc")).lower():
            logger.warning(
                f"Authentication failed for {request.url.path}: Missing or invalid Authorization header"
            )
            return JSONResponse(
                status_code=401,
                content={"error": "Not authenticated. Please provide a valid Bearer token."},
            )

    logger.warning(f"Validation error for {request.url.path}: {exc.errors()}")
    return JSONResponse(
        status_code=400,
        content={"error": "Datos inválidos", "detail": jsonable_errors(exc)},
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", [])), "msg": error.get("msg"), "type": error.get("type")}
        for error in exc.errors()
    ]


# CORS Configuration
ALLOWED_ORIGINS = os.getenv("ALLOWED_ORIGINS", "http://localhost:3000").split(",")
logger.info(f"CORS allowed origins: {ALLOWED_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(appointments_router)
app.include_router(public_booking_router)
app.include_router(billing_router)
app.include_router(consultations_router)
app.include_router(notifications_router)
app.include_router(cron_router)


@app.get("/")
def root():
    return {"message": "Consultorio API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
