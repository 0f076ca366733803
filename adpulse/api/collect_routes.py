"""AdPulse - Collection Trigger Routes (operator use)."""

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from adpulse.core.errors import InvalidRange
from adpulse.core.logging import get_logger
from adpulse.core.periods import classify, parse_period_id
from adpulse.services.collector import RefreshOrchestrator
from adpulse.wiring import get_collector

logger = get_logger("api.collect")

router = APIRouter(prefix="/collect", tags=["Collection"])


# ── Request Models ──


class PeriodRequest(BaseModel):
    """Either a canonical ``period_id`` or an explicit ``start``/``end``."""

    period_id: Optional[str] = None
    start: Optional[date] = None
    end: Optional[date] = None


class BackfillRequest(BaseModel):
    """Request body for POST /collect/backfill."""

    tenant: Optional[str] = None
    """Limit to one tenant; all eligible tenants when omitted."""
    periods: List[PeriodRequest]
    recollect: bool = False
    """Overwrite existing archive records (audited)."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"tenant": "hotel-havet", "periods": [{"period_id": "2025-03"}]},
                {"periods": [{"start": "2025-01-01", "end": "2025-02-28"}]},
            ]
        }
    }


def _to_period(req: PeriodRequest):
    if req.period_id:
        return parse_period_id(req.period_id)
    if req.start and req.end:
        if req.start > req.end:
            raise InvalidRange(f"Start {req.start} is after end {req.end}")
        return classify(req.start, req.end)
    raise InvalidRange("Each period needs a period_id or both start and end")


# ── Endpoints ──


@router.post("/backfill")
async def backfill(
    request: BackfillRequest,
    collector: RefreshOrchestrator = Depends(get_collector),
):
    """Collect explicit historical periods; idempotent unless ``recollect``."""
    try:
        periods = [_to_period(p) for p in request.periods]
    except InvalidRange as e:
        raise HTTPException(status_code=422, detail=str(e))

    report = await collector.backfill(
        periods, tenant_id=request.tenant, recollect=request.recollect
    )
    return {"status": "success", "report": report.model_dump(mode="json")}


@router.post("/refresh")
async def refresh(collector: RefreshOrchestrator = Depends(get_collector)):
    """Run the scheduled refresh immediately."""
    report = await collector.refresh_all()
    return {"status": "success", "report": report.model_dump(mode="json")}


@router.get("/last-run")
async def last_run(collector: RefreshOrchestrator = Depends(get_collector)):
    """Report of the most recent scheduled refresh."""
    if collector.last_report is None:
        return {"status": "no_data", "message": "No refresh has run yet."}
    return {"status": "success", "report": collector.last_report.model_dump(mode="json")}
