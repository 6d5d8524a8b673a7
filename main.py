import asyncio
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from loguru import logger
from sqlalchemy.exc import SQLAlchemyError

from deeplink_app.config import settings
from deeplink_app.database.connection import engine, Base
from deeplink_app.errors import DeeplinkError, TransientStorageError, ValidationError
from deeplink_app.logging_config import configure_logging
from deeplink_app.api import app_info, deferred, referral, landing
from deeplink_app.sweeper.expiry_sweeper import ExpirySweeper

# Import models to ensure they're registered with Base
from deeplink_app.models import App, Route, DeferredLink, Referral

configure_logging()

# Create database tables
Base.metadata.create_all(bind=engine)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Start the expiry sweeper with the app and stop it on shutdown"""
    sweeper_task = None
    if settings.sweeper_enabled:
        sweeper = ExpirySweeper()
        app.state.sweeper = sweeper
        sweeper_task = asyncio.create_task(sweeper.start())

    yield

    if sweeper_task is not None:
        app.state.sweeper.stop()
        sweeper_task.cancel()
        try:
            await sweeper_task
        except asyncio.CancelledError:
            pass


# Create FastAPI app
app = FastAPI(
    title=settings.app_name,
    version=settings.app_version,
    description="Universal/App Link resolver with deferred deep linking and referrals",
    debug=settings.debug,
    lifespan=lifespan
)


@app.middleware("http")
async def log_requests(request: Request, call_next):
    """Log method, path, status and duration (health checks skipped)"""
    if request.url.path.startswith("/health"):
        return await call_next(request)

    started = time.perf_counter()
    response = await call_next(request)
    logger.info(
        "{} {} {} {:.1f}ms",
        request.method,
        request.url.path,
        response.status_code,
        (time.perf_counter() - started) * 1000,
    )
    return response


######## Error handlers: every failure renders as {"success": false, "error": ...}

@app.exception_handler(DeeplinkError)
async def deeplink_error_handler(request: Request, exc: DeeplinkError):
    return JSONResponse(status_code=exc.status_code, content={"success": False, "error": exc.message})


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()
    first = errors[0] if errors else {}
    field = first.get("loc", ["request"])[-1]
    if first.get("type") in ("missing", "string_too_short"):
        error = ValidationError(f"{field} is required")
    else:
        error = ValidationError(f"{field}: {first.get('msg', 'invalid value')}")
    return JSONResponse(status_code=error.status_code, content={"success": False, "error": error.message})


@app.exception_handler(SQLAlchemyError)
async def storage_error_handler(request: Request, exc: SQLAlchemyError):
    logger.opt(exception=exc).error("Storage error on {} {}", request.method, request.url.path)
    error = TransientStorageError()
    return JSONResponse(status_code=error.status_code, content={"success": False, "error": error.message})


@app.get("/health")
def health_check():
    """Health check endpoint"""
    return {"status": "healthy", "environment": settings.environment}


######## Include routers (landing last: /{prefix}/{token} is a catch-all)
app.include_router(deferred.router, prefix="/api")
app.include_router(referral.router, prefix="/api")
app.include_router(app_info.router, prefix="/api")
app.include_router(landing.router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host=settings.host, port=settings.port, reload=settings.debug, log_config=None)
