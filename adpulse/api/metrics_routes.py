"""AdPulse - Metrics Read Routes."""

from datetime import date

from fastapi import APIRouter, Depends, HTTPException, Query

from adpulse.core.errors import CollectionFailed, InvalidRange, TenantNotFound
from adpulse.core.logging import get_logger
from adpulse.services.reader import ReadOrchestrator
from adpulse.wiring import get_reader

logger = get_logger("api.metrics")

router = APIRouter(tags=["Metrics"])


@router.get("/metrics")
async def get_metrics(
    tenant: str = Query(..., description="Tenant id"),
    platform: str = Query("meta", description="meta | google"),
    start: date = Query(..., description="Range start (YYYY-MM-DD)"),
    end: date = Query(..., description="Range end (YYYY-MM-DD)"),
    reader: ReadOrchestrator = Depends(get_reader),
):
    """Serve a MetricSnapshot for the range, database first.

    ``source`` tells where the data came from and ``collectedAt`` how fresh it is.
    """
    try:
        snapshot = await reader.fetch(tenant, platform, start, end)
    except InvalidRange as e:
        raise HTTPException(status_code=422, detail=str(e))
    except TenantNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CollectionFailed as e:
        logger.error(f"Metrics read failed: {e}", extra={"tenant_id": tenant, "platform": platform})
        raise HTTPException(status_code=502, detail=str(e))

    return {
        "status": "success",
        "source": snapshot.source.value,
        "collectedAt": snapshot.collected_at.isoformat(),
        "snapshot": snapshot.model_dump(mode="json"),
    }
