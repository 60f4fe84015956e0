# /chatbotflex/routes/public.py

from fastapi import APIRouter, Depends, Request
from fastapi.responses import PlainTextResponse
from prometheus_client import generate_latest
from datetime import datetime

from chatbotflex.config.settings import settings
from chatbotflex.utils.dependencies import verify_metrics_access
from chatbotflex.services.db_service import db_service
from chatbotflex.services.cache_service import cache_service
from chatbotflex.services.whatsapp_service import whatsapp_service
from chatbotflex.services.instagram_service import instagram_service

# Unauthenticated endpoints: root, health probes and (optionally key-guarded) metrics.

router = APIRouter()


@router.get("/")
async def root():
    return {
        "service": "chatbotflex bot backend",
        "version": "1.0.0",
        "status": "operational",
        "environment": settings.environment
    }


@router.get("/health", summary="Health Check")
async def health_check():
    """Liveness plus the state of the database, Redis and channel configuration."""
    database_ok = await db_service.health_check()
    cache_ok = await cache_service.ping()
    return {
        "status": "healthy" if database_ok else "degraded",
        "timestamp": datetime.utcnow(),
        "services": {
            "database": "connected" if database_ok else "error",
            "cache": "connected" if cache_ok else "error",
            "whatsapp": "configured" if whatsapp_service.is_configured else "not_configured",
            "instagram": "configured" if instagram_service.is_configured else "not_configured",
        },
    }


@router.get("/metrics", tags=["Monitoring"])
async def metrics(request: Request, _: bool = Depends(verify_metrics_access)):
    return PlainTextResponse(generate_latest(), media_type="text/plain")
