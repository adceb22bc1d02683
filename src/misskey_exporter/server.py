"""
HTTP surface of the exporter.

Two routes are served:
- GET /metrics: Prometheus exposition text rendered from the sampler's
  collector. Scrapes never trigger sampling; they see the last values written.
- GET /health: JSON health report, 200 when healthy and 503 otherwise.

Anything else is answered with FastAPI's default 404.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from fastapi import FastAPI, Response
from fastapi.responses import JSONResponse, PlainTextResponse

from misskey_exporter import __version__
from misskey_exporter.logging import get_logger

if TYPE_CHECKING:
    from misskey_exporter.health import HealthChecker
    from misskey_exporter.sampler import MetricsSampler

logger = get_logger(__name__)


def create_app(sampler: MetricsSampler, health_checker: HealthChecker) -> FastAPI:
    """
    Build the FastAPI application.

    Args:
        sampler: Sampler whose collector is rendered on /metrics.
        health_checker: Evaluator backing /health.

    Returns:
        Configured FastAPI application.
    """
    app = FastAPI(
        title="Misskey Exporter",
        version=__version__,
        docs_url=None,
        redoc_url=None,
        openapi_url=None,
    )

    @app.get("/metrics")
    async def metrics() -> Response:
        try:
            body = sampler.render_metrics()
        except Exception as e:
            logger.error(
                "Failed to render metrics",
                extra={"error_type": type(e).__name__, "error": str(e)},
            )
            return PlainTextResponse("Internal Server Error", status_code=500)
        return Response(content=body, media_type=sampler.collector.content_type)

    @app.get("/health")
    async def health() -> JSONResponse:
        report = await health_checker.check(is_updating=sampler.is_updating)
        return JSONResponse(report.to_dict(), status_code=report.status_code)

    return app
