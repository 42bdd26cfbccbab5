"""
BaseProofs - Promise Ledger

Main application entry point.

A promise is a piece of text whose digest lives on a public ledger.
This service reads that ledger, merges it with the local cache and
answers one question for anyone: does this text match what was anchored?
"""

import os
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from baseproofs.observability import (
    setup_logging,
    get_logger,
    RequestContextMiddleware,
    check_health,
    get_metrics,
)
from baseproofs.runtime import create_runtime

# Setup logging at import time
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup: tests may pre-install a runtime
    runtime = getattr(app.state, "runtime", None) or create_runtime()
    app.state.runtime = runtime

    # Starts background thread if enabled
    runtime.scheduler.start()

    logger.info(
        "Application startup complete",
        cache=type(runtime.cache).__name__,
        source=type(runtime.source).__name__,
        contract=runtime.sync.contract_address,
        sync_enabled=runtime.scheduler.config.enabled,
    )

    yield

    runtime.close()
    logger.info("Application shutdown complete")


app = FastAPI(
    title="BaseProofs",
    description="""
## Promise Ledger

Promises are anchored as keccak-256 digests on an append-only ledger
contract. Content travels in the same transaction's call data.

### Core Principles

- **Digest is identity**: same text, same digest; one byte off, no match
- **Chain is authoritative**: creator and time come from the transaction
- **Cache first**: local records win over chain-derived ones for the same digest
- **Owner-only updates**: status changes from any other sender are ignored

### Promise Lifecycle

```
active → fulfilled
active → voided
```

### Storage Backends

- **InMemoryPromiseCache**: Development/testing (default)
- **JsonFilePromiseCache**: Set `BASEPROOFS_CACHE_PATH`
- **PostgresPromiseCache**: Set `DATABASE_URL` or `DATABASE_HOST`
    """,
    version="0.1.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)

# Add request context middleware for logging
app.add_middleware(RequestContextMiddleware)

# CORS configuration for the wallet frontend
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv(
        "BASEPROOFS_CORS_ORIGINS",
        "http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000,http://127.0.0.1:3000",
    ).split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

from baseproofs.api.routes_public import router as public_api_router
app.include_router(public_api_router)


@app.get("/health", tags=["System"])
async def health():
    """
    Basic health check endpoint.

    Returns 200 if the service is running.
    For detailed health, use /health/detailed
    """
    return {"status": "healthy", "service": "baseproofs"}


@app.get("/health/detailed", tags=["System"])
async def health_detailed(request: Request):
    """
    Detailed health check.

    Checks:
    - Service liveness
    - Cache readability
    - Chain sync freshness (stale is "degraded", not unhealthy)

    Returns 200 if healthy, 503 if unhealthy.
    """
    runtime = request.app.state.runtime
    health_status = check_health(cache=runtime.cache, sync=runtime.sync)

    status_code = 200 if health_status.healthy else 503

    return JSONResponse(
        status_code=status_code,
        content={
            "status": "healthy" if health_status.healthy else "unhealthy",
            "checks": health_status.checks,
            "duration_ms": health_status.duration_ms,
        },
    )


@app.get("/metrics", tags=["System"])
async def metrics():
    """
    Get application metrics.

    Returns counters and latency percentiles.
    """
    return get_metrics().get_summary()


@app.get("/api", tags=["System"])
async def api_info(request: Request):
    """
    API info for the frontend.
    """
    runtime = request.app.state.runtime
    network = runtime.chain_config.network
    return {
        "name": "BaseProofs API",
        "version": "0.1.0",
        "cache_backend": type(runtime.cache).__name__,
        "chain": {
            "chain_id": runtime.chain_config.chain_id,
            "network": network.name if network else None,
            "contract_address": runtime.sync.contract_address,
        },
        "endpoints": {
            "promises": "/api/promises",
            "promise_detail": "/api/promises/{id}",
            "by_digest": "/api/promises/by-digest/{digest}",
            "stats": "/api/stats",
            "verify": "/api/verify",
            "payloads": "/api/payloads",
            "status": "/api/promises/{id}/status",
            "reveal": "/api/promises/{id}/reveal",
            "sync": "/api/sync",
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "baseproofs.main:app",
        host=os.getenv("BASEPROOFS_HOST", "127.0.0.1"),
        port=int(os.getenv("BASEPROOFS_PORT", "8000")),
    )
