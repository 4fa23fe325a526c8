"""Health check API router."""

import logging

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from toolbridge.adapters.template_store import TemplateStore
from toolbridge.api.dependencies import get_template_store
from toolbridge.infra.metrics import get_metrics_response

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/health", tags=["Health"])
async def health_check():
    """Combined health check endpoint."""
    return {
        "status": "ok",
        "service": "toolbridge",
        "version": "1.0.0",
    }


@router.get("/health/live", tags=["Health"])
async def liveness_probe():
    """Liveness probe - indicates if the process is running."""
    return {"status": "alive"}


@router.get("/health/ready", tags=["Health"])
async def readiness_probe(store: TemplateStore = Depends(get_template_store)):
    """Readiness probe - checks template store connectivity."""
    try:
        store.ping()
        return {"status": "ready"}
    except Exception as e:
        logger.warning("Readiness check failed", extra={"error": str(e)})
        return JSONResponse(status_code=503, content={"status": "not_ready"})


@router.get("/metrics", tags=["Health"])
async def metrics():
    """Prometheus metrics endpoint."""
    return get_metrics_response()
