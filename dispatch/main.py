from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from dispatch.config import settings
from dispatch.database import init_db
from dispatch.events import EventBus
from dispatch.exceptions import error_code_for
from dispatch.utils.logging_config import setup_logging
from dispatch.api.v1 import delivery, drivers, driver_location, orders, notifications, sse
import logging

# Configure logging
if not settings.DEBUG:
    setup_logging()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if settings.AUTO_CREATE_TABLES:
        init_db()
    logger.info("%s %s started (%s)", settings.APP_NAME, settings.APP_VERSION, settings.ENVIRONMENT)
    yield
    # Drop any listener an unfinished stream left behind
    app.state.event_bus.remove_all_listeners()


# Determine docs URLs based on environment
docs_url = "/docs" if settings.DEBUG else None
redoc_url = "/redoc" if settings.DEBUG else None

app = FastAPI(
    title=settings.APP_NAME,
    description="Order dispatch, driver assignment and live delivery events",
    version=settings.APP_VERSION,
    docs_url=docs_url,
    redoc_url=redoc_url,
    openapi_url="/openapi.json" if settings.DEBUG else None,
    lifespan=lifespan
)

# One bus per process, shared by publishers and live channels
app.state.event_bus = EventBus()

# CORS Middleware
if settings.ENVIRONMENT == "production":
    # In production, use specific origins
    origins = settings.ALLOWED_ORIGINS.split(",") if settings.ALLOWED_ORIGINS else []
    if not origins:
        logger.warning("No ALLOWED_ORIGINS set in production!")
else:
    # In development, allow all
    origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)


def error_response(status_code: int, code: str, message: str, headers=None, **extra) -> JSONResponse:
    error = {"code": code, "message": message}
    error.update(extra)
    return JSONResponse(
        status_code=status_code,
        content={"success": False, "message": message, "error": error},
        headers=headers
    )


# Exception Handlers
@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    """Wrap every HTTP error, ours and the framework's, in the response envelope"""
    message = exc.detail if isinstance(exc.detail, str) else str(exc.detail)
    return error_response(exc.status_code, error_code_for(exc), message, headers=exc.headers)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Handle validation errors"""
    # Convert errors to JSON-serializable format
    def sanitize_error(error):
        """Convert error dict to JSON-serializable format"""
        if isinstance(error, dict):
            return {k: sanitize_error(v) for k, v in error.items()}
        elif isinstance(error, (list, tuple)):
            return [sanitize_error(item) for item in error]
        elif isinstance(error, bytes):
            return error.decode('utf-8', errors='replace')
        elif isinstance(error, (str, int, float, bool, type(None))):
            return error
        else:
            return str(error)

    return error_response(
        status.HTTP_400_BAD_REQUEST,
        "VALIDATION_ERROR",
        "Validation error",
        details=sanitize_error(exc.errors())
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Handle general exceptions"""
    logger.error(f"Unhandled exception: {exc}", exc_info=True)

    return error_response(
        status.HTTP_500_INTERNAL_SERVER_ERROR,
        "INTERNAL_SERVER_ERROR",
        str(exc) if settings.DEBUG else "Internal server error"
    )


# Include Routers
prefix = settings.API_PREFIX
app.include_router(orders.router, prefix=f"{prefix}/orders", tags=["Orders"])
app.include_router(delivery.router, prefix=f"{prefix}/delivery", tags=["Delivery"])
app.include_router(drivers.router, prefix=f"{prefix}/drivers", tags=["Driver Deliveries"])
app.include_router(driver_location.router, prefix=f"{prefix}/driver", tags=["Driver Location"])
app.include_router(notifications.router, prefix=f"{prefix}/notifications", tags=["Notifications"])
app.include_router(sse.router, prefix=f"{prefix}/sse", tags=["Live Tracking"])


@app.get("/")
def root():
    """Root endpoint"""
    return {
        "message": f"{settings.APP_NAME} is running",
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "redoc": "/redoc"
    }


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {
        "status": "healthy",
        "service": settings.APP_NAME
    }
