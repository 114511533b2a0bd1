from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import get_settings
from .database import close_database, init_database
from .dependencies import close_queue, connect_queue
from .errors import (
    AuthorizationError,
    ConcurrencyConflictError,
    InvalidStateError,
    NotFoundError,
    TradeError,
    ValidationError,
)
from .routes import scheduler, trades

settings = get_settings()
logger = logging.getLogger(__name__)

_ERROR_STATUS: list[tuple[type[TradeError], int]] = [
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (InvalidStateError, status.HTTP_409_CONFLICT),
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (ConcurrencyConflictError, status.HTTP_503_SERVICE_UNAVAILABLE),
]


def status_for_error(exc: TradeError) -> int:
    for error_type, status_code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return status_code
    return status.HTTP_400_BAD_REQUEST


@asynccontextmanager
async def lifespan(_: FastAPI):
    await init_database()
    await connect_queue()
    try:
        yield
    finally:
        await close_queue()
        await close_database()


app = FastAPI(
    title=settings.api_title,
    version=settings.api_version,
    debug=settings.api_debug,
    docs_url=settings.api_docs_url,
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(trades.router)
app.include_router(scheduler.router)


@app.exception_handler(TradeError)
async def trade_error_handler(request: Request, exc: TradeError) -> JSONResponse:
    status_code = status_for_error(exc)
    if isinstance(exc, ConcurrencyConflictError):
        logger.warning("Giving up on %s %s: %s", request.method, request.url.path, exc.message)
    return JSONResponse(
        status_code=status_code,
        content={"detail": exc.message, "code": exc.code},
    )


@app.get("/api/health", tags=["health"])
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "skillswap-trades"}
