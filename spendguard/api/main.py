"""FastAPI application factory"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from spendguard.api.middleware import MetricsMiddleware, RequestIDMiddleware
from spendguard.api.v1 import escrows, intents, reputation, summary, transactions, wallets
from spendguard.config import settings
from spendguard.infrastructure.database.models import Base
from spendguard.infrastructure.database.session import engine
from spendguard.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)


@asynccontextmanager
async def lifespan(app: FastAPI):
    Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="SpendGuard",
        description="Purpose-bound fund enforcement: intents, payment validation, escrow and reputation",
        version="0.1.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        return {"status": "ok", "service": settings.service_name}

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(wallets.router, prefix="/v1", tags=["wallets"])
    app.include_router(intents.router, prefix="/v1", tags=["intents"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])
    app.include_router(escrows.router, prefix="/v1", tags=["escrows"])
    app.include_router(reputation.router, prefix="/v1", tags=["reputation"])
    app.include_router(summary.router, prefix="/v1", tags=["summary"])

    return app


app = create_app()
