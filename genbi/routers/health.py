"""Liveness endpoint."""

from fastapi import APIRouter

from genbi.config import settings
from genbi.core.structured_logging import APP_VERSION, get_uptime_s

router = APIRouter()


@router.get("/health")
async def health():
    return {
        "status": "ok",
        "service": settings.app_name,
        "version": APP_VERSION,
        "storage_backend": settings.storage_backend,
        "uptime_s": get_uptime_s(),
    }
