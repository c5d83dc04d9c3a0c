"""The once-a-day job sequence behind ``/cron/daily-jobs``."""

import logging
from datetime import date

from sqlalchemy.ext.asyncio import AsyncSession

from starquest.email_service import EmailService
from starquest.schemas.reports import DailyJobsResult
from starquest.triggers import is_sunday
from starquest.jobs.reports import run_periodic_reports
from starquest.jobs.settlement import run_settlement

logger = logging.getLogger(__name__)


async def run_daily_jobs(
    db: AsyncSession, today: date, email_service: EmailService
) -> DailyJobsResult:
    """Settlement, then the weekly report on Sundays, then monthly reports.

    Settlement and monthly reports always run; both only touch families
    whose billing day is ``today``.
    """
    logger.info("Running daily jobs for %s", today)
    settlement = await run_settlement(db, today, email_service)
    weekly = None
    if is_sunday(today):
        weekly = await run_periodic_reports(db, "weekly", today, email_service)
    monthly = await run_periodic_reports(db, "monthly", today, email_service)
    return DailyJobsResult(settlement=settlement, weekly=weekly, monthly=monthly)
