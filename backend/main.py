"""FastAPI application entry point."""

from __future__ import annotations

import logging
import sys
from contextlib import asynccontextmanager
from pathlib import Path

# Ensure backend/ is on sys.path for absolute imports
_backend_dir = str(Path(__file__).resolve().parent)
if _backend_dir not in sys.path:  # pragma: no cover
    sys.path.insert(0, _backend_dir)

try:
    __version__ = (Path(__file__).resolve().parent.parent / "VERSION").read_text().strip()
except OSError:  # pragma: no cover
    __version__ = "0.0.0-dev"

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api import api_router
from config import settings
from database import Base, engine
from errors import ProviderUnavailableError, QueryValidationError
from ws import ws_router

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Configure unified logging before anything else
    from logging_config import setup_logging
    setup_logging("Server")

    # Startup: create tables if they don't exist
    Base.metadata.create_all(bind=engine)

    # Fail any queries left "running" by a worker that died while we were down
    try:
        from services.query_recovery import recover_zombie_queries
        recovered = recover_zombie_queries()
        if recovered:
            logger.info("Recovered %d zombie queries", recovered)
    except Exception:
        logger.exception("Failed to recover zombie queries on startup")

    yield


app = FastAPI(title="LLM Query Relay", version=__version__, lifespan=lifespan)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.CORS_ALLOW_ALL_ORIGINS else [],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(QueryValidationError)
async def query_validation_error_handler(request: Request, exc: QueryValidationError):
    return JSONResponse(status_code=422, content={"detail": str(exc), "field": exc.field})


@app.exception_handler(ProviderUnavailableError)
async def provider_unavailable_handler(request: Request, exc: ProviderUnavailableError):
    return JSONResponse(status_code=503, content={"detail": str(exc), "provider": exc.provider})


# API routes
app.include_router(api_router)

# WebSocket endpoints
app.include_router(ws_router)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True, log_config=None)
