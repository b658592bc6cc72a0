"""
API routes split by domain.

Each sub-module defines its own APIRouter which is composed
into the top-level router exposed by this package.
"""
from fastapi import APIRouter

from .health import router as health_router
from .stores import router as stores_router
from .dashboard import router as dashboard_router
from .analytics import router as analytics_router
from .customers import router as customers_router
from .integrations import router as integrations_router
from .cron import router as cron_router
from .assistant import router as assistant_router

router = APIRouter(tags=["api"])

router.include_router(health_router)
router.include_router(stores_router)
router.include_router(dashboard_router)
router.include_router(analytics_router)
router.include_router(customers_router)
router.include_router(integrations_router)
router.include_router(cron_router)
router.include_router(assistant_router)
