"""
Health checks
"""
from fastapi import APIRouter, Depends

from commodity_oracle.api.deps import get_services
from commodity_oracle.config import get_settings
from commodity_oracle.models import utcnow
from commodity_oracle.services.container import ServiceContainer

router = APIRouter(prefix="/health", tags=["health"])


@router.get("/live")
async def live():
    return {"status": "ok"}


@router.get("")
async def health(services: ServiceContainer = Depends(get_services)):
    settings = get_settings()
    database_ok = await services.db.health_check() if services.db is not None else None
    return {
        "status": "ok" if database_ok is not False else "degraded",
        "service": settings.app_name,
        "version": settings.version,
        "timestamp": utcnow().isoformat(),
        "database": database_ok,
        "price_cache": services.oracle.stats(),
        "market_cache": services.catalog.cache_stats(),
    }
