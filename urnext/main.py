from contextlib import asynccontextmanager
from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
import logging

from urnext.config import settings
from urnext.database import init_db
from urnext.errors import WatchlistError
from urnext.logging import setup_logging
from urnext.routers import api_router, stream_router
from urnext.scheduler import get_next_run_time, start_scheduler, stop_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    setup_logging(settings)
    await init_db()
    start_scheduler()
    yield
    # Shutdown
    stop_scheduler()


app = FastAPI(title="urNext", lifespan=lifespan)

# Include routers
app.include_router(api_router, prefix="/api", tags=["api"])
app.include_router(stream_router, prefix="/api", tags=["stream"])


@app.exception_handler(WatchlistError)
async def watchlist_error_handler(request: Request, exc: WatchlistError):
    """Render operation failures with their kind so clients can tell them apart."""
    if exc.retryable:
        logger.warning(f"{request.method} {request.url.path} failed: {exc.detail}")
    return JSONResponse(exc.to_dict(), status_code=exc.status_code)


@app.get("/health")
async def health():
    next_run = get_next_run_time()
    return {
        "status": "ok",
        "next_invite_sweep": next_run.isoformat() if next_run else None
    }
