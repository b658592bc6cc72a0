"""Third-party integration endpoints (Notion KPI snapshots)."""
from fastapi import APIRouter, HTTPException, Request

from web.schemas import KpiSnapshotRequest
from web.services import snapshot_service
from ._deps import limiter, get_logger, route_errors

router = APIRouter(prefix="/integrations")
logger = get_logger(__name__)


@router.post("/kpi-snapshots")
@limiter.limit("10/minute")
async def post_kpi_snapshot(request: Request, body: KpiSnapshotRequest):
    """Push a KPI object to the Notion KPI database as a new page."""
    if not body.storeId or not isinstance(body.storeId, str):
        raise HTTPException(status_code=400, detail="storeId is required")
    if not body.kpis:
        raise HTTPException(status_code=400, detail="kpis payload is required")

    with route_errors("Push KPI snapshot to Notion", logger):
        return await snapshot_service.push_kpi_snapshot(
            body.storeId,
            body.kpis,
            period_label=body.periodLabel,
            date=body.date,
            database_id=body.databaseId,
        )
