from fastapi import APIRouter

from gearguard.api.routes.health import router as health_router
from gearguard.api.routes.maintenance import router as maintenance_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(maintenance_router)
