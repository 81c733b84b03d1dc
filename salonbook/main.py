import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import CORS_ORIGINS
from .database import Base, engine
from .domain.scheduling.exceptions import BookingError
from .domain.scheduling.router import router as booking_router

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
            raise

    try:
        from .redis_client import get_redis_client

        get_redis_client()  # Connection test
        logger.info("Redis connection established")
    except Exception as e:
        logger.warning(
            f"Redis connection failed - availability cache and change signals will fail open: {e}"
        )

    yield
    logger.info("Application shutting down...")


app = FastAPI(title="Salonbook API", version="1.0.0", lifespan=lifespan)


@app.exception_handler(BookingError)
async def booking_exception_handler(request: Request, exc: BookingError):
    """Render booking errors as actionable messages; internal detail stays in the logs"""
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} - {exc.code}: {exc}")
    else:
        logger.info(f"{request.method} {request.url.path} - {exc.code}: {exc}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.user_message, "code": exc.code},
    )


logger.info(f"CORS allowed origins: {CORS_ORIGINS}")

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS", "PATCH"],
    allow_headers=["*"],
)

# Routes
app.include_router(booking_router)


@app.get("/")
def root():
    return {"message": "Salonbook API is running"}


@app.get("/health")
def health():
    return {"status": "healthy"}
