"""Database models used by the StarQuest daily jobs service.

The models are defined with SQLModel (built on SQLAlchemy and Pydantic)
and cover families and their members, report preferences and history,
the credit/interest configuration and the star activity ledger that the
reports summarize.
"""

from typing import Optional, List
from datetime import datetime, date
from sqlmodel import SQLModel, Field
from sqlalchemy import Column, JSON, Index


class Family(SQLModel, table=True):
    """A household; the unit every daily job iterates over."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    # Day of month the billing cycle closes; 0 means "last day of the month".
    settlement_day: int = Field(default=0, ge=0, le=31)
    active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)


class User(SQLModel, table=True):
    """Family member. Parents log in with email/password; children do not."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: Optional[int] = Field(default=None, foreign_key="family.id")
    name: str
    role: str  # 'parent' or 'child'
    email: Optional[str] = Field(default=None, index=True)
    password_hash: Optional[str] = None
    locale: str = "en"
    created_at: datetime = Field(default_factory=datetime.utcnow)


class FamilyReportPreferences(SQLModel, table=True):
    """Per-family email report settings.

    The boolean flags are nullable on purpose: ``None`` means the parent never
    made a choice, which the jobs treat as enabled.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id", unique=True)
    report_email: Optional[str] = None
    weekly_report_enabled: Optional[bool] = True
    monthly_report_enabled: Optional[bool] = True
    settlement_email_enabled: Optional[bool] = True
    timezone: str = "UTC"
    report_locale: Optional[str] = "en"
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class ReportHistory(SQLModel, table=True):
    """Audit row for a report email; delivered rows also prevent resending."""

    __table_args__ = (
        Index(
            "ix_reporthistory_period",
            "family_id",
            "report_type",
            "report_period_start",
            "report_period_end",
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    report_type: str  # weekly, monthly, settlement
    report_period_start: date
    report_period_end: date
    status: str = "sent"
    sent_to_email: Optional[str] = None
    report_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    error_message: Optional[str] = None
    sent_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class ChildCreditSettings(SQLModel, table=True):
    """Credit line a child may draw on when spending more stars than owned."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    child_id: int = Field(foreign_key="user.id", unique=True)
    credit_limit: int = 0
    original_credit_limit: int = 0
    credit_enabled: bool = False


class CreditInterestTier(SQLModel, table=True):
    """One bracket of a family's tiered interest schedule."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    tier_order: int
    min_debt: int
    max_debt: Optional[int] = None  # None = unbounded top tier
    interest_rate: float  # decimal, e.g. 0.05 = 5%


class CreditSettlement(SQLModel, table=True):
    """Result of settling one child's billing cycle."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    child_id: int = Field(foreign_key="user.id")
    settlement_date: date = Field(index=True)
    balance_before: int = 0
    debt_amount: int = 0
    interest_calculated: int = 0
    interest_breakdown: Optional[List[dict]] = Field(
        default=None, sa_column=Column(JSON)
    )
    credit_limit_before: int = 0
    credit_limit_after: int = 0
    credit_limit_adjustment: int = 0
    settled_at: datetime = Field(default_factory=datetime.utcnow)


class Quest(SQLModel, table=True):
    """Task a child completes to earn stars."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    name_en: str
    name_zh: Optional[str] = None


class StarTransaction(SQLModel, table=True):
    """Stars earned (positive) or deducted (negative) for a child."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    child_id: int = Field(foreign_key="user.id")
    quest_id: Optional[int] = Field(default=None, foreign_key="quest.id")
    stars: int
    status: str = "approved"  # pending, approved, rejected
    description: Optional[str] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class Redemption(SQLModel, table=True):
    """Stars spent on a reward."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    child_id: int = Field(foreign_key="user.id")
    stars_spent: int
    status: str = "pending"  # pending, approved, fulfilled, rejected
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CreditTransaction(SQLModel, table=True):
    """Credit ledger: borrowing, repayment and interest charges."""

    id: Optional[int] = Field(default=None, primary_key=True)
    family_id: int = Field(foreign_key="family.id")
    child_id: int = Field(foreign_key="user.id")
    settlement_id: Optional[int] = Field(
        default=None, foreign_key="creditsettlement.id"
    )
    transaction_type: str  # credit_used, credit_repaid, interest_charged
    amount: int
    balance_after: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
