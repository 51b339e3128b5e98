from fastapi import APIRouter

from backend.app.api.v1.endpoints.health import router as health_router
from backend.app.api.v1.endpoints.collections import router as collections_router
from backend.app.api.v1.endpoints.planning import router as planning_router
from backend.app.api.v1.endpoints.orders import router as orders_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(collections_router, tags=["collections"])
router.include_router(planning_router, tags=["planning"])
router.include_router(orders_router, tags=["orders"])
