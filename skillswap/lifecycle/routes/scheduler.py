from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_lifecycle
from ..schemas.trade import ResolutionReportOut
from ..services.lifecycle import TradeLifecycle

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


@router.post("/auto-resolution", response_model=ResolutionReportOut)
async def run_auto_resolution(
    as_of: Optional[datetime] = Query(default=None),
    lifecycle: TradeLifecycle = Depends(get_lifecycle),
) -> ResolutionReportOut:
    report = await lifecycle.scheduler.run(as_of)
    return ResolutionReportOut.model_validate(report)


@router.post("/outbox/dispatch")
async def dispatch_outbox(lifecycle: TradeLifecycle = Depends(get_lifecycle)) -> dict[str, int]:
    delivered = await lifecycle.dispatcher.dispatch_pending()
    return {"delivered": delivered}
