"""Weekly and monthly family report emails.

Both report types run through :func:`run_periodic_reports`; what differs
between them (which families, which period, which generator and templates,
which preference flag) is captured in a :class:`ReportJob`.
"""

import logging
from dataclasses import dataclass
from datetime import date, datetime
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession

from starquest.crud import (
    create_report_history,
    get_active_families,
    get_families_due_for_settlement,
    report_history_exists,
)
from starquest.email_service import EmailService
from starquest.email_templates import (
    generate_monthly_report_html,
    generate_weekly_report_html,
    get_monthly_report_subject,
    get_weekly_report_subject,
)
from starquest.models import Family, ReportHistory
from starquest.reports import (
    generate_monthly_report_data,
    generate_weekly_report_data,
    get_month_bounds,
    get_week_bounds,
)
from starquest.schemas.reports import ReportTally, ReportType
from starquest.jobs.common import (
    error_message,
    is_enabled,
    load_preferences,
    resolve_locale,
    resolve_recipient,
    safe_rollback,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportJob:
    report_type: ReportType
    fetch_families: Callable[[AsyncSession, date], Awaitable[list[Family]]]
    bounds: Callable[[date], tuple[date, date]]
    generate: Callable[..., Awaitable[object]]
    render_html: Callable[[object], str]
    render_subject: Callable[[object, str], str]
    preference_flag: str


async def _active_families(db: AsyncSession, today: date) -> list[Family]:
    return await get_active_families(db)


REPORT_JOBS = {
    "weekly": ReportJob(
        report_type="weekly",
        fetch_families=_active_families,
        bounds=get_week_bounds,
        generate=generate_weekly_report_data,
        render_html=generate_weekly_report_html,
        render_subject=get_weekly_report_subject,
        preference_flag="weekly_report_enabled",
    ),
    # Monthly reports go out on each family's billing day.
    "monthly": ReportJob(
        report_type="monthly",
        fetch_families=get_families_due_for_settlement,
        bounds=get_month_bounds,
        generate=generate_monthly_report_data,
        render_html=generate_monthly_report_html,
        render_subject=get_monthly_report_subject,
        preference_flag="monthly_report_enabled",
    ),
}


async def run_periodic_reports(
    db: AsyncSession,
    report_type: str,
    today: date,
    email_service: EmailService,
    jobs: dict[str, ReportJob] | None = None,
) -> ReportTally:
    """Send one report type to every eligible family.

    Families are handled one at a time.  Any error while handling a family
    counts it as failed and moves on to the next; a family whose report for
    this period was already sent is skipped.
    """
    job = (jobs or REPORT_JOBS)[report_type]
    tally = ReportTally()
    if not email_service.is_available():
        logger.warning("Email service unavailable; skipping %s reports", report_type)
        return tally

    try:
        families = await job.fetch_families(db, today)
    except Exception:
        logger.exception("Failed to fetch families for %s reports", report_type)
        return tally
    if not families:
        return tally
    # Detached so a per-family rollback does not expire the rest of the batch.
    db.expunge_all()

    period_start, period_end = job.bounds(today)
    for family in families:
        try:
            outcome = await _send_family_report(
                db, job, family, period_start, period_end, email_service
            )
        except Exception as exc:
            logger.error(
                "%s report error for %s: %s",
                report_type.capitalize(),
                family.name,
                error_message(exc),
            )
            await safe_rollback(db)
            outcome = "failed"
        setattr(tally, outcome, getattr(tally, outcome) + 1)

    logger.info(
        "%s reports for %s..%s: %s sent, %s failed, %s skipped",
        report_type.capitalize(),
        period_start,
        period_end,
        tally.sent,
        tally.failed,
        tally.skipped,
    )
    return tally


async def _send_family_report(
    db: AsyncSession,
    job: ReportJob,
    family: Family,
    period_start: date,
    period_end: date,
    email_service: EmailService,
) -> str:
    """Handle one family; returns which tally bucket it lands in."""
    prefs = await load_preferences(db, family.id)
    if not is_enabled(prefs, job.preference_flag):
        return "skipped"

    if await report_history_exists(
        db, family.id, job.report_type, period_start, period_end
    ):
        logger.debug(
            "%s report already sent to family %s", job.report_type, family.id
        )
        return "skipped"

    recipient = await resolve_recipient(db, family.id, prefs)
    if not recipient:
        logger.warning("No email address for family %s", family.id)
        return "skipped"

    locale = resolve_locale(prefs)
    data = await job.generate(db, family.id, period_start, period_end, locale)
    if not data:
        logger.error(
            "Could not build %s report data for family %s", job.report_type, family.id
        )
        return "failed"

    result = await email_service.send_email(
        to=recipient,
        subject=job.render_subject(data, locale),
        html=job.render_html(data),
    )
    if not result.success:
        logger.error(
            "Failed to send %s report to %s: %s", job.report_type, recipient, result.error
        )
        return "failed"

    await create_report_history(
        db,
        ReportHistory(
            family_id=family.id,
            report_type=job.report_type,
            report_period_start=period_start,
            report_period_end=period_end,
            sent_to_email=recipient,
            report_data=data.model_dump(mode="json"),
            sent_at=datetime.utcnow(),
        ),
    )
    return "sent"
