"""Pydantic models for report payloads, email results and job tallies."""

from datetime import date
from typing import Literal, Optional

from pydantic import BaseModel, Field

ReportLocale = Literal["en", "zh-CN"]
ReportType = Literal["weekly", "monthly", "settlement"]

DEFAULT_LOCALE = "en"


class QuestSummary(BaseModel):
    name: str
    stars: int
    count: int


class ChildPeriodData(BaseModel):
    """Per-child activity for a reporting period."""

    child_id: int
    name: str
    stars_earned: int = 0
    stars_spent: int = 0
    net_stars: int = 0
    current_balance: int = 0
    credit_borrowed: int = 0
    credit_repaid: int = 0
    top_quests: list[QuestSummary] = Field(default_factory=list)
    pending_requests_count: int = 0


class InterestTierBreakdown(BaseModel):
    tier_order: int = 0
    min_debt: float = 0
    max_debt: Optional[float] = None  # None = unbounded top tier
    debt_in_tier: float = 0
    rate: float = 0
    interest_amount: float = 0


class ChildSettlementData(BaseModel):
    child_id: int
    name: str
    debt_amount: float = 0
    interest_charged: float = 0
    interest_breakdown: list[InterestTierBreakdown] = Field(default_factory=list)
    credit_limit_before: float = 0
    credit_limit_after: float = 0
    credit_limit_change: float = 0


class WeeklyReportData(BaseModel):
    family_id: int
    family_name: str
    locale: str = DEFAULT_LOCALE
    period_start: date
    period_end: date
    children: list[ChildPeriodData] = Field(default_factory=list)
    total_stars_earned: int = 0
    total_stars_spent: int = 0


class MonthComparison(BaseModel):
    """Percentage change against the previous month."""

    stars_earned_change: int
    stars_spent_change: int


class MonthlyReportData(WeeklyReportData):
    settlement_data: Optional[list[ChildSettlementData]] = None
    previous_month_comparison: Optional[MonthComparison] = None


class SettlementNotificationData(BaseModel):
    family_id: int
    family_name: str
    locale: str = DEFAULT_LOCALE
    settlement_date: date
    children: list[ChildSettlementData] = Field(default_factory=list)
    total_interest_charged: float = 0


class EmailSendResult(BaseModel):
    success: bool
    message_id: Optional[str] = None
    error: Optional[str] = None


class SettlementEmailResult(BaseModel):
    """Outcome of a best-effort settlement notice, for logging and tests."""

    sent: bool
    skipped_reason: Optional[str] = None
    error: Optional[str] = None


class SettlementChildResult(BaseModel):
    child_id: int
    debt: int
    interest: int
    old_limit: int
    new_limit: int


class SettlementOutcome(BaseModel):
    """What the settlement procedure reports back.

    ``error`` is set when the procedure refused or failed to settle; the
    caller treats that as a failed settlement rather than an exception.
    """

    success: bool = True
    settlement_date: Optional[date] = None
    processed_count: int = 0
    results: list[SettlementChildResult] = Field(default_factory=list)
    error: Optional[str] = None


class SettlementTally(BaseModel):
    processed: int = 0
    errors: list[str] = Field(default_factory=list)


class ReportTally(BaseModel):
    sent: int = 0
    failed: int = 0
    skipped: int = 0


class DailyJobsResult(BaseModel):
    settlement: Optional[SettlementTally] = None
    weekly: Optional[ReportTally] = None
    monthly: Optional[ReportTally] = None
