"""Main FastAPI application"""
import os
import logging
import logging.config
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from contextlib import asynccontextmanager
from motor.motor_asyncio import AsyncIOMotorClient
from dotenv import load_dotenv
from routes import router as api_router
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

from services.ledger import LedgerSession
from utils.errors import ExpenseTrackerError
from utils.error_handlers import (
    error_response,
    expense_error_handler,
    http_exception_handler,
    validation_exception_handler,
)
from utils.image_encoder import MAX_IMAGE_BYTES
from utils.rate_limit import limiter

# Load environment variables from .env (searches current dir and parents)
load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# --- Unified Logging Configuration with Rich ---
LOGGING_CONFIG = {
    "version": 1,
    "disable_existing_loggers": False,
    "formatters": {
        "default": {
            # RichHandler adds its own timestamp and level columns
            "format": "%(name)s - %(message)s",
            "datefmt": "%Y-%m-%d %H:%M:%S",
        },
    },
    "handlers": {
        "default": {
            "class": "rich.logging.RichHandler",
            "formatter": "default",
            "level": "DEBUG",
            "rich_tracebacks": True,
            "show_time": True,
            "show_path": False,
            "log_time_format": "%Y-%m-%d %H:%M:%S",
            # Raw model replies are logged, square brackets in them are not markup
            "markup": False
        },
    },
    "loggers": {
        "uvicorn": {
             "handlers": ["default"],
             "level": "INFO",
             "propagate": False,
        },
        "uvicorn.error": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "uvicorn.access": {
            "handlers": ["default"],
            "level": "INFO",
            "propagate": False,
        },
        "": { # Root logger for our application
            "handlers": ["default"],
            "level": LOG_LEVEL,
            "propagate": False,
        },
    },
}

logging.config.dictConfig(LOGGING_CONFIG)
logger = logging.getLogger(__name__)

MONGODB_URI = os.getenv("MONGODB_URI")
DB_NAME = os.getenv("DB_NAME", "finance_db") # Default DB name if not set
COLLECTION_NAME = "expenses"
UPLOAD_ENDPOINT_PATH = "/api/process-image"
# Multipart boundaries and headers come on top of the image itself
MAX_UPLOAD_SIZE = MAX_IMAGE_BYTES + 64 * 1024
SAVE_AT_FRONT = os.getenv("SAVE_AT_FRONT", "false").lower() == "true" # Keep expenses in memory only

if not MONGODB_URI and not SAVE_AT_FRONT:
    logger.warning("MONGODB_URI environment variable not set! Expenses will be kept in memory only.")

# Application state holding the database client and the ledger session
app_state = {}

# --- Middleware for Upload Size Limit ---
class LimitUploadSizeMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        if request.url.path == UPLOAD_ENDPOINT_PATH:
            content_length_header = request.headers.get("content-length")
            if content_length_header:
                try:
                    content_length = int(content_length_header)
                except ValueError:
                    logger.warning("Upload rejected: Invalid Content-Length header.")
                    return error_response(400, "Invalid Content-Length header.")
                if content_length > MAX_UPLOAD_SIZE:
                    logger.warning(f"Upload rejected: Request size {content_length} exceeds limit {MAX_UPLOAD_SIZE}.")
                    return error_response(400, f"Maximum image size ({MAX_IMAGE_BYTES / (1024*1024):.1f} MB) exceeded.")
            # Chunked uploads carry no Content-Length; the image encoder still enforces the limit.

        return await call_next(request)

async def connect_ledger_session() -> LedgerSession:
    """Store-backed session when MongoDB is configured and reachable, in-memory otherwise."""
    if SAVE_AT_FRONT or not MONGODB_URI:
        logger.info(f"Configuration: SAVE_AT_FRONT = {SAVE_AT_FRONT}, MONGODB_URI set = {bool(MONGODB_URI)}. Using in-memory ledger.")
        return LedgerSession()

    logger.info(f"Connecting to MongoDB database '{DB_NAME}'...")
    try:
        app_state["db_client"] = AsyncIOMotorClient(MONGODB_URI)
        await app_state["db_client"].admin.command('ping')
        logger.info("MongoDB ping successful.")
    except Exception as e:
        logger.error(f"Failed to connect to MongoDB: {e}. Falling back to in-memory ledger.")
        if app_state.get("db_client"):
            app_state["db_client"].close()
        app_state["db_client"] = None
        return LedgerSession()

    collection = app_state["db_client"][DB_NAME].get_collection(COLLECTION_NAME)
    logger.info(f"Successfully connected to MongoDB database: {DB_NAME}")
    return LedgerSession(collection=collection)

@asynccontextmanager
async def lifespan(app: FastAPI):
    app_state["ledger_session"] = await connect_ledger_session()

    yield # Application runs here

    if app_state.get("db_client"):
        logger.info("Closing MongoDB connection...")
        app_state["db_client"].close()
        logger.info("MongoDB connection closed.")
    app_state.clear()

app = FastAPI(
    title="Receipt Expense Tracker API",
    description="API for extracting expenses from receipt images and managing the expense ledger.",
    version="0.1.0",
    lifespan=lifespan
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
app.add_exception_handler(ExpenseTrackerError, expense_error_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"], # Adjust in production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(LimitUploadSizeMiddleware)

app.include_router(
    api_router,
    prefix="/api",
    tags=["api"],
)

# Make app state accessible to the routes
@app.middleware("http")
async def add_app_state_to_request(request: Request, call_next):
    """Adds the ledger session to the request state."""
    request.state.ledger_session = app_state.get("ledger_session")
    response = await call_next(request)
    return response

if __name__ == "__main__":
    import uvicorn
    # Uvicorn will use its default logging for its own messages (with colors)
    # Our application logs will use the RichHandler configured above
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=True
    )
