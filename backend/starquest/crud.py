"""Asynchronous data-access helpers for the application's models.

Each function wraps one query shape (or one write) so the job runners and
route handlers never build queries themselves.  Keeping them here makes
the jobs easy to exercise against an in-memory database in tests.
"""

import logging
import math
from datetime import datetime, date

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy import func
from sqlmodel import select

from starquest.models import (
    Family,
    User,
    FamilyReportPreferences,
    ReportHistory,
    ChildCreditSettings,
    CreditInterestTier,
    CreditSettlement,
    Quest,
    StarTransaction,
    Redemption,
    CreditTransaction,
)
from starquest.schemas.reports import SettlementOutcome, SettlementChildResult
from starquest.triggers import settlement_days_due

logger = logging.getLogger(__name__)

SPENT_REDEMPTION_STATUSES = ("approved", "fulfilled")

# (tier_order, min_debt, max_debt, interest_rate) used when a family has not
# configured its own schedule.
DEFAULT_INTEREST_TIERS = [
    (1, 0, 19, 0.05),
    (2, 20, 49, 0.10),
    (3, 50, None, 0.15),
]


# --- families and members -------------------------------------------------


async def get_family(db: AsyncSession, family_id: int) -> Family | None:
    return await db.get(Family, family_id)


async def get_families_due_for_settlement(
    db: AsyncSession, today: date
) -> list[Family]:
    """Families whose billing day falls on ``today`` (last-day rule included)."""
    result = await db.execute(
        select(Family)
        .where(Family.settlement_day.in_(settlement_days_due(today)))
        .order_by(Family.id)
    )
    return result.scalars().all()


async def get_active_families(db: AsyncSession) -> list[Family]:
    result = await db.execute(
        select(Family).where(Family.active == True).order_by(Family.id)  # noqa: E712
    )
    return result.scalars().all()


async def get_family_children(db: AsyncSession, family_id: int) -> list[User]:
    result = await db.execute(
        select(User)
        .where(User.family_id == family_id, User.role == "child")
        .order_by(User.id)
    )
    return result.scalars().all()


async def get_parent_email(db: AsyncSession, family_id: int) -> str | None:
    """Return the first parent's email address for a family, if any."""
    result = await db.execute(
        select(User.email)
        .where(
            User.family_id == family_id,
            User.role == "parent",
            User.email.is_not(None),
        )
        .order_by(User.id)
        .limit(1)
    )
    return result.scalar_one_or_none() or None


# --- report preferences and history ----------------------------------------


async def get_report_preferences(
    db: AsyncSession, family_id: int
) -> FamilyReportPreferences | None:
    result = await db.execute(
        select(FamilyReportPreferences).where(
            FamilyReportPreferences.family_id == family_id
        )
    )
    return result.scalar_one_or_none()


async def save_report_preferences(
    db: AsyncSession, prefs: FamilyReportPreferences
) -> FamilyReportPreferences:
    prefs.updated_at = datetime.utcnow()
    db.add(prefs)
    await db.commit()
    await db.refresh(prefs)
    return prefs


async def report_history_exists(
    db: AsyncSession,
    family_id: int,
    report_type: str,
    period_start: date,
    period_end: date,
) -> bool:
    result = await db.execute(
        select(ReportHistory.id)
        .where(
            ReportHistory.family_id == family_id,
            ReportHistory.report_type == report_type,
            ReportHistory.report_period_start == period_start,
            ReportHistory.report_period_end == period_end,
            ReportHistory.status == "sent",
        )
        .limit(1)
    )
    return result.first() is not None


async def create_report_history(
    db: AsyncSession, entry: ReportHistory
) -> ReportHistory:
    db.add(entry)
    await db.commit()
    await db.refresh(entry)
    return entry


# --- settlements -------------------------------------------------------------


async def get_settlement_records(
    db: AsyncSession, family_id: int, settlement_date: date
) -> list[tuple[CreditSettlement, str | None]]:
    """Settlement rows for one family and day, paired with the child's name."""
    result = await db.execute(
        select(CreditSettlement, User.name)
        .join(User, User.id == CreditSettlement.child_id, isouter=True)
        .where(
            CreditSettlement.family_id == family_id,
            CreditSettlement.settlement_date == settlement_date,
        )
        .order_by(CreditSettlement.id)
    )
    return [(row[0], row[1]) for row in result.all()]


async def settlement_exists(
    db: AsyncSession, family_id: int, settlement_date: date
) -> bool:
    result = await db.execute(
        select(CreditSettlement.id)
        .where(
            CreditSettlement.family_id == family_id,
            CreditSettlement.settlement_date == settlement_date,
        )
        .limit(1)
    )
    return result.first() is not None


async def get_settlements_in_range(
    db: AsyncSession, family_id: int, start: date, end: date
) -> list[CreditSettlement]:
    result = await db.execute(
        select(CreditSettlement)
        .where(
            CreditSettlement.family_id == family_id,
            CreditSettlement.settlement_date >= start,
            CreditSettlement.settlement_date <= end,
        )
        .order_by(CreditSettlement.settlement_date, CreditSettlement.id)
    )
    return result.scalars().all()


async def get_interest_tiers(
    db: AsyncSession, family_id: int
) -> list[CreditInterestTier]:
    """Return the family's interest schedule, falling back to the defaults."""
    result = await db.execute(
        select(CreditInterestTier)
        .where(CreditInterestTier.family_id == family_id)
        .order_by(CreditInterestTier.tier_order)
    )
    tiers = result.scalars().all()
    if tiers:
        return tiers
    return [
        CreditInterestTier(
            family_id=family_id,
            tier_order=order,
            min_debt=min_debt,
            max_debt=max_debt,
            interest_rate=rate,
        )
        for order, min_debt, max_debt, rate in DEFAULT_INTEREST_TIERS
    ]


def calculate_tiered_interest(
    debt: int, tiers: list[CreditInterestTier]
) -> tuple[int, list[dict]]:
    """Split ``debt`` across the tiers and charge each slice at its rate.

    Tier bounds are inclusive whole stars, so a 0-19 tier holds 20 stars.
    Each slice's interest is rounded half-up to whole stars.
    """
    total = 0
    breakdown = []
    for tier in sorted(tiers, key=lambda t: t.tier_order):
        upper = debt if tier.max_debt is None else min(debt, tier.max_debt + 1)
        debt_in_tier = max(upper - tier.min_debt, 0)
        if debt_in_tier == 0:
            continue
        interest = math.floor(debt_in_tier * tier.interest_rate + 0.5)
        total += interest
        breakdown.append(
            {
                "tier_order": tier.tier_order,
                "min_debt": tier.min_debt,
                "max_debt": tier.max_debt,
                "debt_in_tier": debt_in_tier,
                "interest_rate": tier.interest_rate,
                "interest_amount": interest,
            }
        )
    return total, breakdown


async def run_monthly_settlement(
    db: AsyncSession,
    family_id: int | None = None,
    settlement_date: date | None = None,
) -> SettlementOutcome:
    """Close the billing cycle for credit-enabled children.

    ``settlement_date`` defaults to today and ``family_id`` to every family.
    Interest is charged as a negative star transaction plus a credit ledger
    entry; a child who ends the cycle debt-free gets the original credit
    limit back.  Database failures are rolled back and reported through
    ``SettlementOutcome.error`` instead of being raised.
    """
    settlement_date = settlement_date or date.today()
    results: list[SettlementChildResult] = []
    try:
        query = select(ChildCreditSettings).where(
            ChildCreditSettings.credit_enabled == True  # noqa: E712
        )
        if family_id is not None:
            query = query.where(ChildCreditSettings.family_id == family_id)
        credit_rows = (
            await db.execute(query.order_by(ChildCreditSettings.child_id))
        ).scalars().all()

        tiers_by_family: dict[int, list[CreditInterestTier]] = {}
        for credit in credit_rows:
            if credit.family_id not in tiers_by_family:
                tiers_by_family[credit.family_id] = await get_interest_tiers(
                    db, credit.family_id
                )
            balance = await get_child_balance(db, credit.child_id)
            debt = max(-balance, 0)
            interest, breakdown = calculate_tiered_interest(
                debt, tiers_by_family[credit.family_id]
            )
            limit_before = credit.credit_limit
            limit_after = credit.original_credit_limit if debt == 0 else limit_before

            settlement = CreditSettlement(
                family_id=credit.family_id,
                child_id=credit.child_id,
                settlement_date=settlement_date,
                balance_before=balance,
                debt_amount=debt,
                interest_calculated=interest,
                interest_breakdown=breakdown,
                credit_limit_before=limit_before,
                credit_limit_after=limit_after,
                credit_limit_adjustment=limit_after - limit_before,
            )
            db.add(settlement)
            await db.flush()

            if interest > 0:
                db.add(
                    StarTransaction(
                        family_id=credit.family_id,
                        child_id=credit.child_id,
                        stars=-interest,
                        status="approved",
                        description="Credit interest",
                    )
                )
                db.add(
                    CreditTransaction(
                        family_id=credit.family_id,
                        child_id=credit.child_id,
                        settlement_id=settlement.id,
                        transaction_type="interest_charged",
                        amount=interest,
                        balance_after=balance - interest,
                    )
                )
            credit.credit_limit = limit_after
            db.add(credit)
            results.append(
                SettlementChildResult(
                    child_id=credit.child_id,
                    debt=debt,
                    interest=interest,
                    old_limit=limit_before,
                    new_limit=limit_after,
                )
            )
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        message = str(getattr(exc, "orig", None) or exc)
        logger.error(
            "Settlement procedure failed (family=%s, date=%s): %s",
            family_id,
            settlement_date,
            message,
        )
        return SettlementOutcome(
            success=False, settlement_date=settlement_date, error=message
        )
    return SettlementOutcome(
        settlement_date=settlement_date,
        processed_count=len(results),
        results=results,
    )


# --- star and credit ledger --------------------------------------------------


async def get_child_balance(db: AsyncSession, child_id: int) -> int:
    """Approved stars minus stars spent on approved or fulfilled rewards."""
    earned = await db.execute(
        select(func.coalesce(func.sum(StarTransaction.stars), 0)).where(
            StarTransaction.child_id == child_id,
            StarTransaction.status == "approved",
        )
    )
    spent = await db.execute(
        select(func.coalesce(func.sum(Redemption.stars_spent), 0)).where(
            Redemption.child_id == child_id,
            Redemption.status.in_(SPENT_REDEMPTION_STATUSES),
        )
    )
    return int(earned.scalar_one()) - int(spent.scalar_one())


async def get_child_balances(
    db: AsyncSession, child_ids: list[int]
) -> dict[int, int]:
    return {child_id: await get_child_balance(db, child_id) for child_id in child_ids}


async def get_approved_star_transactions(
    db: AsyncSession,
    family_id: int,
    child_ids: list[int],
    start: datetime,
    end: datetime,
) -> list[tuple[StarTransaction, Quest | None]]:
    result = await db.execute(
        select(StarTransaction, Quest)
        .join(Quest, Quest.id == StarTransaction.quest_id, isouter=True)
        .where(
            StarTransaction.family_id == family_id,
            StarTransaction.status == "approved",
            StarTransaction.child_id.in_(child_ids),
            StarTransaction.created_at >= start,
            StarTransaction.created_at <= end,
        )
        .order_by(StarTransaction.created_at)
    )
    return [(row[0], row[1]) for row in result.all()]


async def get_spent_redemptions(
    db: AsyncSession,
    family_id: int,
    child_ids: list[int],
    start: datetime,
    end: datetime,
) -> list[Redemption]:
    result = await db.execute(
        select(Redemption).where(
            Redemption.family_id == family_id,
            Redemption.status.in_(SPENT_REDEMPTION_STATUSES),
            Redemption.child_id.in_(child_ids),
            Redemption.created_at >= start,
            Redemption.created_at <= end,
        )
    )
    return result.scalars().all()


async def get_credit_transactions(
    db: AsyncSession,
    family_id: int,
    child_ids: list[int],
    start: datetime,
    end: datetime,
) -> list[CreditTransaction]:
    result = await db.execute(
        select(CreditTransaction).where(
            CreditTransaction.family_id == family_id,
            CreditTransaction.child_id.in_(child_ids),
            CreditTransaction.created_at >= start,
            CreditTransaction.created_at <= end,
        )
    )
    return result.scalars().all()


async def get_pending_request_counts(
    db: AsyncSession, family_id: int, child_ids: list[int]
) -> dict[int, int]:
    """Pending star requests plus pending redemptions, per child."""
    counts = {child_id: 0 for child_id in child_ids}
    for model in (StarTransaction, Redemption):
        result = await db.execute(
            select(model.child_id, func.count())
            .where(
                model.family_id == family_id,
                model.status == "pending",
                model.child_id.in_(child_ids),
            )
            .group_by(model.child_id)
        )
        for child_id, count in result.all():
            counts[child_id] = counts.get(child_id, 0) + count
    return counts
