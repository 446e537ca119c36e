# HTTP routers
from .allowance import router as allowance_router
from .health import router as health_router
from .markets import router as markets_router
from .predictions import router as predictions_router
from .prices import router as prices_router
from .staking import router as staking_router

ROUTERS = [
    prices_router,
    predictions_router,
    staking_router,
    allowance_router,
    markets_router,
    health_router,
]

__all__ = ["ROUTERS"]
