"""Monthly credit settlement for families whose billing day is today."""

import logging
from datetime import date, datetime

from sqlalchemy.ext.asyncio import AsyncSession

from starquest import crud
from starquest.crud import (
    get_families_due_for_settlement,
    get_settlement_records,
    settlement_exists,
    create_report_history,
)
from starquest.email_service import EmailService
from starquest.email_templates import (
    generate_settlement_notice_html,
    get_settlement_notice_subject,
)
from starquest.models import Family, ReportHistory
from starquest.reports import settlement_to_child_data
from starquest.schemas.reports import (
    SettlementEmailResult,
    SettlementNotificationData,
    SettlementTally,
)
from starquest.jobs.common import (
    error_message,
    is_enabled,
    load_preferences,
    resolve_locale,
    resolve_recipient,
    safe_rollback,
)

logger = logging.getLogger(__name__)


async def run_settlement(
    db: AsyncSession, today: date, email_service: EmailService
) -> SettlementTally:
    """Settle every due family in turn and notify its parents.

    A family counts as processed only when the procedure succeeds; failures
    are collected as messages in fetch order.  The notice is best-effort and
    never affects the tally.
    """
    tally = SettlementTally()
    try:
        families = await get_families_due_for_settlement(db, today)
    except Exception:
        logger.exception("Failed to fetch families due for settlement")
        return tally
    if not families:
        return tally
    # Detached so a per-family rollback does not expire the rest of the batch.
    db.expunge_all()

    for family in families:
        try:
            # Re-running on the same day settles again; flag it so it is visible.
            if await settlement_exists(db, family.id, today):
                logger.warning(
                    "Family %s already has settlement records for %s",
                    family.id,
                    today,
                )
            outcome = await crud.run_monthly_settlement(
                db, family_id=family.id, settlement_date=None
            )
        except Exception as exc:
            await safe_rollback(db)
            message = f"Settlement error for {family.name}: {error_message(exc)}"
            logger.error(message)
            tally.errors.append(message)
            continue

        if outcome.error is not None:
            message = f"Settlement failed for {family.name}: {outcome.error}"
            logger.error(message)
            tally.errors.append(message)
            continue

        tally.processed += 1
        result = await notify_settlement(
            db, family, outcome.settlement_date or today, email_service
        )
        if not result.sent:
            logger.info(
                "Settlement notice not sent for family %s: %s",
                family.id,
                result.skipped_reason or result.error,
            )

    logger.info(
        "Settlement run for %s: %s processed, %s errors",
        today,
        tally.processed,
        len(tally.errors),
    )
    return tally


async def notify_settlement(
    db: AsyncSession,
    family: Family,
    settlement_date: date,
    email_service: EmailService,
) -> SettlementEmailResult:
    """Email the family's settlement summary; never raises."""
    try:
        return await _send_settlement_notice(db, family, settlement_date, email_service)
    except Exception as exc:
        logger.error(
            "Settlement notice error for %s: %s", family.name, error_message(exc)
        )
        await safe_rollback(db)
        return SettlementEmailResult(sent=False, error=error_message(exc))


async def _send_settlement_notice(db, family, settlement_date, email_service):
    if not email_service.is_available():
        logger.warning("Email service unavailable; skipping settlement notice")
        return SettlementEmailResult(sent=False, skipped_reason="email_unavailable")

    prefs = await load_preferences(db, family.id)
    if not is_enabled(prefs, "settlement_email_enabled"):
        return SettlementEmailResult(sent=False, skipped_reason="disabled")

    recipient = await resolve_recipient(db, family.id, prefs)
    if not recipient:
        logger.warning("No email address for family %s", family.id)
        return SettlementEmailResult(sent=False, skipped_reason="no_recipient")

    try:
        records = await get_settlement_records(db, family.id, settlement_date)
    except Exception as exc:
        logger.warning(
            "Could not load settlement records for family %s: %s",
            family.id,
            error_message(exc),
        )
        await safe_rollback(db)
        return SettlementEmailResult(sent=False, skipped_reason="no_records")
    if not records:
        return SettlementEmailResult(sent=False, skipped_reason="no_records")

    locale = resolve_locale(prefs)
    children = [settlement_to_child_data(record, name) for record, name in records]
    data = SettlementNotificationData(
        family_id=family.id,
        family_name=family.name,
        locale=locale,
        settlement_date=settlement_date,
        children=children,
        total_interest_charged=sum(c.interest_charged for c in children),
    )

    result = await email_service.send_email(
        to=recipient,
        subject=get_settlement_notice_subject(data, locale),
        html=generate_settlement_notice_html(data),
    )
    if not result.success:
        logger.error(
            "Failed to send settlement notice to %s: %s", recipient, result.error
        )
        try:
            await _record_notice(db, data, recipient, "failed", error=result.error)
        except Exception as exc:
            logger.warning(
                "Could not record failed settlement notice for family %s: %s",
                family.id,
                error_message(exc),
            )
            await safe_rollback(db)
        return SettlementEmailResult(sent=False, error=result.error)

    await _record_notice(db, data, recipient, "sent")
    logger.info("Sent settlement notice to %s for family %s", recipient, family.id)
    return SettlementEmailResult(sent=True)


async def _record_notice(db, data, recipient, status, error=None):
    await create_report_history(
        db,
        ReportHistory(
            family_id=data.family_id,
            report_type="settlement",
            report_period_start=data.settlement_date,
            report_period_end=data.settlement_date,
            status=status,
            sent_to_email=recipient,
            report_data=data.model_dump(mode="json"),
            error_message=error,
            sent_at=datetime.utcnow() if status == "sent" else None,
        ),
    )
