"""FastAPI application entry point."""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import redis.asyncio as aioredis
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from escrow_api.config import settings
from escrow_api.database import engine
from escrow_api.errors import EscrowError
from escrow_api.middleware import (
    BodySizeLimitMiddleware,
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
)
from escrow_api.redis import get_redis, redis_available
from escrow_api.routers import contracts, disputes, profiles, transactions

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: startup and shutdown."""
    logger.info("Escrow API starting (env=%s)", settings.env)
    yield
    await engine.dispose()
    logger.info("Escrow API stopped")


app = FastAPI(
    title="Audit Escrow API",
    description="Escrow engine for security audit engagements: contracts, milestones, multisig and disputes",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(EscrowError)
async def escrow_error_handler(request: Request, exc: EscrowError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.detail)
    else:
        logger.info(
            "%s %s rejected (%s): %s",
            request.method, request.url.path, exc.code, exc.detail,
        )
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_allowed_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Last added runs first
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(BodySizeLimitMiddleware, max_bytes=settings.max_request_body_bytes)
app.add_middleware(RequestLoggingMiddleware)

app.include_router(profiles.router)
app.include_router(contracts.router)
app.include_router(transactions.router)
app.include_router(disputes.router)


@app.get("/health")
async def health(redis: aioredis.Redis = Depends(get_redis)) -> dict[str, str]:
    """Health check. Reports degraded when Redis is unreachable."""
    if not await redis_available(redis):
        return {"status": "degraded", "redis": "unavailable"}
    return {"status": "ok", "redis": "ok"}
