"""Report periods and report-data generation for the weekly/monthly emails."""

import calendar
import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.ext.asyncio import AsyncSession

from starquest.crud import (
    get_family,
    get_family_children,
    get_approved_star_transactions,
    get_spent_redemptions,
    get_credit_transactions,
    get_child_balances,
    get_pending_request_counts,
    get_settlements_in_range,
)
from starquest.models import Family, User
from starquest.schemas.reports import (
    ChildPeriodData,
    ChildSettlementData,
    InterestTierBreakdown,
    MonthComparison,
    MonthlyReportData,
    QuestSummary,
    WeeklyReportData,
)

logger = logging.getLogger(__name__)

TOP_QUEST_LIMIT = 5


def get_week_bounds(today: date | None = None) -> tuple[date, date]:
    """Previous full week, Sunday through Saturday."""
    today = today or date.today()
    days_since_sunday = (today.weekday() + 1) % 7
    week_start = today - timedelta(days=days_since_sunday + 7)
    return week_start, week_start + timedelta(days=6)


def get_month_bounds(today: date | None = None) -> tuple[date, date]:
    """First and last day of the month containing ``today``."""
    today = today or date.today()
    last_day = calendar.monthrange(today.year, today.month)[1]
    return today.replace(day=1), today.replace(day=last_day)


def get_previous_month_bounds(today: date | None = None) -> tuple[date, date]:
    month_start, _ = get_month_bounds(today)
    return get_month_bounds(month_start - timedelta(days=1))


def _period_datetimes(start: date, end: date) -> tuple[datetime, datetime]:
    return datetime.combine(start, time.min), datetime.combine(end, time.max)


def normalize_interest_breakdown(raw) -> list[InterestTierBreakdown]:
    """Turn a stored ``interest_breakdown`` value into typed tiers.

    Anything that is not a list becomes ``[]``.  Missing or null numeric
    fields become ``0``; ``max_debt`` stays ``None`` when falsy, which marks
    the unbounded top tier.
    """
    if not isinstance(raw, list):
        return []
    tiers = []
    for tier in raw:
        if not isinstance(tier, dict):
            tier = {}
        tiers.append(
            InterestTierBreakdown(
                tier_order=tier.get("tier_order") or 0,
                min_debt=tier.get("min_debt") or 0,
                max_debt=tier.get("max_debt") or None,
                debt_in_tier=tier.get("debt_in_tier") or 0,
                rate=tier.get("interest_rate") or 0,
                interest_amount=tier.get("interest_amount") or 0,
            )
        )
    return tiers


def settlement_to_child_data(settlement, child_name: str | None) -> ChildSettlementData:
    return ChildSettlementData(
        child_id=settlement.child_id,
        name=child_name or "Unknown",
        debt_amount=settlement.debt_amount or 0,
        interest_charged=settlement.interest_calculated or 0,
        interest_breakdown=normalize_interest_breakdown(settlement.interest_breakdown),
        credit_limit_before=settlement.credit_limit_before or 0,
        credit_limit_after=settlement.credit_limit_after or 0,
        credit_limit_change=settlement.credit_limit_adjustment or 0,
    )


@dataclass
class ReportBaseData:
    """Everything both report types read for one family and period."""

    family: Family
    children: list[User]
    transactions: list
    redemptions: list
    balances: dict
    credit_transactions: list
    pending_counts: dict


async def fetch_report_base_data(
    db: AsyncSession, family_id: int, period_start: date, period_end: date
) -> ReportBaseData | None:
    """Load the period's ledger for a family, or ``None`` if it is missing."""
    family = await get_family(db, family_id)
    if family is None:
        logger.error("Failed to fetch family %s for report", family_id)
        return None

    children = await get_family_children(db, family_id)
    if not children:
        return ReportBaseData(family, [], [], [], {}, [], {})

    child_ids = [c.id for c in children]
    start, end = _period_datetimes(period_start, period_end)
    return ReportBaseData(
        family=family,
        children=children,
        transactions=await get_approved_star_transactions(
            db, family_id, child_ids, start, end
        ),
        redemptions=await get_spent_redemptions(db, family_id, child_ids, start, end),
        balances=await get_child_balances(db, child_ids),
        credit_transactions=await get_credit_transactions(
            db, family_id, child_ids, start, end
        ),
        pending_counts=await get_pending_request_counts(db, family_id, child_ids),
    )


def _earned_and_spent(transactions, redemptions) -> tuple[int, int]:
    earned = sum(tx.stars for tx in transactions if tx.stars > 0)
    deducted = sum(-tx.stars for tx in transactions if tx.stars < 0)
    return earned, sum(r.stars_spent for r in redemptions) + deducted


def build_children_stats(
    base: ReportBaseData, locale: str
) -> tuple[list[ChildPeriodData], int, int]:
    """Per-child totals plus family-wide stars earned and spent."""
    tx_by_child = defaultdict(list)
    for tx, quest in base.transactions:
        tx_by_child[tx.child_id].append((tx, quest))
    redemptions_by_child = defaultdict(list)
    for redemption in base.redemptions:
        redemptions_by_child[redemption.child_id].append(redemption)
    credit_by_child = defaultdict(list)
    for credit_tx in base.credit_transactions:
        credit_by_child[credit_tx.child_id].append(credit_tx)

    children_data = []
    total_earned = 0
    total_spent = 0
    for child in base.children:
        child_tx = tx_by_child[child.id]
        earned, spent = _earned_and_spent(
            [tx for tx, _ in child_tx], redemptions_by_child[child.id]
        )
        total_earned += earned
        total_spent += spent

        credit = credit_by_child[child.id]
        borrowed = sum(c.amount for c in credit if c.transaction_type == "credit_used")
        repaid = sum(c.amount for c in credit if c.transaction_type == "credit_repaid")

        quest_counts: dict[int, QuestSummary] = {}
        for tx, quest in child_tx:
            if quest is None or tx.stars <= 0:
                continue
            if quest.id not in quest_counts:
                name = quest.name_zh if locale == "zh-CN" and quest.name_zh else quest.name_en
                quest_counts[quest.id] = QuestSummary(name=name, stars=tx.stars, count=0)
            quest_counts[quest.id].count += 1
        top_quests = sorted(
            quest_counts.values(), key=lambda q: q.count * q.stars, reverse=True
        )[:TOP_QUEST_LIMIT]

        children_data.append(
            ChildPeriodData(
                child_id=child.id,
                name=child.name,
                stars_earned=earned,
                stars_spent=spent,
                net_stars=earned - spent,
                current_balance=base.balances.get(child.id, 0),
                credit_borrowed=borrowed,
                credit_repaid=repaid,
                top_quests=top_quests,
                pending_requests_count=base.pending_counts.get(child.id, 0),
            )
        )
    return children_data, total_earned, total_spent


async def generate_weekly_report_data(
    db: AsyncSession,
    family_id: int,
    week_start: date,
    week_end: date,
    locale: str = "en",
) -> WeeklyReportData | None:
    base = await fetch_report_base_data(db, family_id, week_start, week_end)
    if base is None:
        return None
    children, earned, spent = build_children_stats(base, locale)
    return WeeklyReportData(
        family_id=family_id,
        family_name=base.family.name,
        locale=locale,
        period_start=week_start,
        period_end=week_end,
        children=children,
        total_stars_earned=earned,
        total_stars_spent=spent,
    )


def _percent_change(current: int, previous: int) -> int:
    if previous > 0:
        return round((current - previous) / previous * 100)
    return 100 if current > 0 else 0


async def generate_monthly_report_data(
    db: AsyncSession,
    family_id: int,
    month_start: date,
    month_end: date,
    locale: str = "en",
) -> MonthlyReportData | None:
    """Weekly-style totals plus the month's settlements and a comparison."""
    base = await fetch_report_base_data(db, family_id, month_start, month_end)
    if base is None:
        return None
    children, earned, spent = build_children_stats(base, locale)
    report = MonthlyReportData(
        family_id=family_id,
        family_name=base.family.name,
        locale=locale,
        period_start=month_start,
        period_end=month_end,
        children=children,
        total_stars_earned=earned,
        total_stars_spent=spent,
    )
    if not base.children:
        return report

    names = {c.id: c.name for c in base.children}
    settlements = await get_settlements_in_range(db, family_id, month_start, month_end)
    # One entry per child: the first settlement of the month.
    seen = set()
    settlement_data = []
    for settlement in settlements:
        if settlement.child_id in seen or settlement.child_id not in names:
            continue
        seen.add(settlement.child_id)
        settlement_data.append(
            settlement_to_child_data(settlement, names[settlement.child_id])
        )
    report.settlement_data = settlement_data or None

    prev_start, prev_end = get_previous_month_bounds(month_start)
    child_ids = list(names)
    start, end = _period_datetimes(prev_start, prev_end)
    prev_tx = await get_approved_star_transactions(db, family_id, child_ids, start, end)
    prev_redemptions = await get_spent_redemptions(db, family_id, child_ids, start, end)
    prev_earned, prev_spent = _earned_and_spent(
        [tx for tx, _ in prev_tx], prev_redemptions
    )
    if prev_earned > 0 or prev_spent > 0:
        report.previous_month_comparison = MonthComparison(
            stars_earned_change=_percent_change(earned, prev_earned),
            stars_spent_change=_percent_change(spent, prev_spent),
        )
    return report
