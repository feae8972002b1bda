"""
Settlement REST endpoints.

POST /v1/settlement/run?date=YYYY-MM-DD  Run one settlement cycle now and return its summary.
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query

from shared.models.domain import CycleSummary
from shared.utils.logging import get_logger

from api.dependencies import get_engine
from settlement.engine import SettlementEngine

logger = get_logger(__name__)
router = APIRouter(prefix="/v1/settlement", tags=["settlement"])


@router.post("/run", response_model=CycleSummary)
async def run_settlement(
    day: Optional[str] = Query(None, alias="date", description="Fixture day, YYYY-MM-DD"),
    engine: SettlementEngine = Depends(get_engine),
) -> CycleSummary:
    """
    Run one settlement cycle.

    Without `date` the fixture days are derived from the pending predictions.
    Overlapping requests wait for the running cycle to finish.
    """
    target: Optional[date] = None
    if day:
        try:
            target = date.fromisoformat(day)
        except ValueError:
            raise HTTPException(status_code=400, detail=f"Invalid date '{day}', expected YYYY-MM-DD")

    logger.info("settlement_run_requested", date=target.isoformat() if target else None)
    return await engine.run_cycle(target)
