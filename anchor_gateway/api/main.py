"""FastAPI application factory"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
from starlette.responses import Response

from anchor_gateway.api.middleware import RequestIDMiddleware, MetricsMiddleware
from anchor_gateway.api.v1 import webhook, whitelist, transactions, model
from anchor_gateway.infrastructure.database.session import build_engine, build_session_factory, init_db
from anchor_gateway.infrastructure.observability.logging import setup_logging
from anchor_gateway.ml.classifier import RiskClassifier
from anchor_gateway.config import Settings, settings as default_settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Create tables on startup
    init_db(app.state.engine)
    yield


def create_app(config: Optional[Settings] = None, classifier: Optional[RiskClassifier] = None) -> FastAPI:
    """
    Create and configure FastAPI application.

    The classifier is loaded once here (falling back to an untrained network
    when no artifact is available) and shared by every request.
    """
    config = config or default_settings

    # Setup structured logging
    setup_logging(config.log_level, config.service_name)

    if classifier is None:
        classifier = RiskClassifier(model_path=config.model_path, version=config.model_version)
        classifier.load()

    app = FastAPI(
        title="Anchor Gateway",
        description="Real-time gambling transaction detection and intervention service",
        version="1.0.0",
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = config
    app.state.classifier = classifier

    # Statements are bounded by the webhook deadline
    app.state.engine = build_engine(config.database_url, statement_timeout=config.webhook_timeout_seconds)
    app.state.session_factory = build_session_factory(app.state.engine)

    # Add middleware (order matters: last added = first executed)
    app.add_middleware(MetricsMiddleware)
    app.add_middleware(RequestIDMiddleware)

    # Health check endpoint
    @app.get("/health")
    def health_check():
        info = classifier.get_model_info()
        return {
            "status": "ok",
            "service": config.service_name,
            "model": {"version": info["version"], "status": info["status"]},
        }

    # Prometheus metrics endpoint
    @app.get("/metrics")
    def metrics():
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    # Register API routers
    app.include_router(webhook.router, prefix="/v1", tags=["webhooks"])
    app.include_router(whitelist.router, prefix="/v1", tags=["whitelist"])
    app.include_router(transactions.router, prefix="/v1", tags=["transactions"])
    app.include_router(model.router, prefix="/v1", tags=["model"])

    return app


app = create_app()
