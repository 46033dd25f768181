from fastapi import APIRouter

from orderflow.app.api.v1.endpoints.health import router as health_router
from orderflow.app.api.v1.endpoints.purchase_orders import router as purchase_orders_router
from orderflow.app.api.v1.endpoints.receptions import router as receptions_router
from orderflow.app.api.v1.endpoints.stock import router as stock_router
from orderflow.app.api.v1.endpoints.projects import router as projects_router
from orderflow.app.api.v1.endpoints.maintenance import router as maintenance_router

router = APIRouter()
router.include_router(health_router, tags=["health"])
router.include_router(purchase_orders_router, tags=["purchase_orders"])
router.include_router(receptions_router, tags=["receptions"])
router.include_router(stock_router, tags=["stock"])
router.include_router(projects_router, tags=["projects"])
router.include_router(maintenance_router, tags=["maintenance"])
