# backend/roombook/main.py
"""
Application factory.

Routers are mounted under /api/v1; /health and /metrics stay unversioned
for load balancers and the Prometheus scraper.
"""

import logging
from typing import Dict

from fastapi import APIRouter, FastAPI, Response

from .core.config import settings
from .core.request_context import attach_request_id_filter
from .errors import register_error_handlers
from .middleware.prometheus_middleware import PrometheusMiddleware
from .middleware.request_id import RequestIdMiddleware
from .monitoring.prometheus_metrics import prometheus_metrics
from .routes.v1 import admin_bookings as admin_bookings_v1
from .routes.v1 import bookings as bookings_v1
from .routes.v1 import credits as credits_v1
from .routes.v1 import cron as cron_v1
from .routes.v1 import webhooks_asaas as webhooks_asaas_v1

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - [%(request_id)s] %(message)s"


def configure_logging(level: int = logging.INFO) -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    attach_request_id_filter()


logger = logging.getLogger(__name__)


def build_api_v1() -> APIRouter:
    api_v1 = APIRouter(prefix="/api/v1")
    api_v1.include_router(bookings_v1.router, prefix="/bookings")
    api_v1.include_router(admin_bookings_v1.router, prefix="/admin/bookings")
    api_v1.include_router(credits_v1.router, prefix="/credits")
    api_v1.include_router(webhooks_asaas_v1.router, prefix="/webhooks")
    api_v1.include_router(cron_v1.router, prefix="/cron")
    return api_v1


def create_app() -> FastAPI:
    app = FastAPI(
        title="roombook API",
        version="1.0.0",
        docs_url=None if settings.environment == "production" else "/docs",
        redoc_url=None,
    )

    app.add_middleware(PrometheusMiddleware)
    # Added last so it wraps everything and ids are set before metrics/logging.
    app.add_middleware(RequestIdMiddleware)
    register_error_handlers(app)

    app.include_router(build_api_v1())

    @app.get("/health", include_in_schema=False)
    def health_check() -> Dict[str, str]:
        return {"status": "healthy", "environment": settings.environment}

    @app.get("/metrics", include_in_schema=False)
    def metrics() -> Response:
        return Response(
            content=prometheus_metrics.get_metrics(),
            media_type=prometheus_metrics.get_content_type(),
        )

    logger.info("roombook API configured (%s)", settings.environment)
    return app


configure_logging()
app = create_app()
