"""Endpoints called by the external scheduler.

Both accept GET and POST so any cron service can call them, and both
require ``Authorization: Bearer <CRON_SECRET>``.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from starquest import crud
from starquest.cron_auth import verify_cron_auth
from starquest.database import get_session
from starquest.email_service import EmailService, get_email_service
from starquest.jobs import run_daily_jobs

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/cron", tags=["cron"])


def get_today() -> date:
    """The server's current date; overridden in tests."""
    return date.today()


@router.api_route("/daily-jobs", methods=["GET", "POST"])
async def daily_jobs(
    request: Request,
    db: AsyncSession = Depends(get_session),
    email_service: EmailService = Depends(get_email_service),
    today: date = Depends(get_today),
):
    """Run settlement, weekly and monthly reports for ``today``."""
    unauthorized = verify_cron_auth(request)
    if unauthorized is not None:
        return unauthorized
    try:
        results = await run_daily_jobs(db, today, email_service)
    except Exception:
        logger.exception("Daily jobs failed")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
    return {
        "success": True,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "results": results.model_dump(),
    }


@router.api_route("/settlement", methods=["GET", "POST"])
async def settlement(
    request: Request,
    settlement_date: Optional[date] = Query(None, alias="date"),
    db: AsyncSession = Depends(get_session),
):
    """Run the settlement procedure for every family, optionally for a given day."""
    unauthorized = verify_cron_auth(request)
    if unauthorized is not None:
        return unauthorized
    try:
        outcome = await crud.run_monthly_settlement(db, settlement_date=settlement_date)
    except Exception:
        logger.exception("Settlement run failed")
        return JSONResponse({"error": "Internal server error"}, status_code=500)
    if outcome.error is not None:
        return JSONResponse(
            {"error": "Settlement failed", "details": outcome.error}, status_code=500
        )
    logger.info(
        "Settlement for %s processed %s children",
        outcome.settlement_date,
        outcome.processed_count,
    )
    return {
        "success": True,
        "settlement_date": outcome.settlement_date.isoformat(),
        "processed_count": outcome.processed_count,
        "results": [r.model_dump() for r in outcome.results],
    }
