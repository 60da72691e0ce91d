"""FastAPI application factory"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest
from starlette.responses import Response

from banking_monitor.api.middleware import MetricsMiddleware, RequestIDMiddleware
from banking_monitor.api.v1 import rules, sync, transactions
from banking_monitor.config import settings
from banking_monitor.domain.rules import default_rules
from banking_monitor.infrastructure.database.repositories import SqlAlchemyBankingStore
from banking_monitor.infrastructure.database.session import SessionLocal
from banking_monitor.infrastructure.observability.logging import setup_logging

# Setup structured logging
setup_logging(settings.log_level)

logger = logging.getLogger(__name__)


def seed_default_rules() -> None:
    """Store the global starter rules once; later edits to them are preserved"""
    db = SessionLocal()
    try:
        store = SqlAlchemyBankingStore(db)
        seeded = store.seed_rules(default_rules())
        store.commit()
        if seeded:
            logger.info("Seeded default rules", extra={"rule_ids": [rule.id for rule in seeded]})
    finally:
        db.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    seed_default_rules()
    yield


def create_app() -> FastAPI:
    """Create and configure FastAPI application"""
    app = FastAPI(
        title="Banking Monitor",
        description="Bank transaction sync and anomaly detection service",
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
    app.include_router(sync.router, prefix="/v1", tags=["sync"])
    app.include_router(rules.router, prefix="/v1", tags=["rules"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])

    return app


app = create_app()
