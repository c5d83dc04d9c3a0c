"""Convenience imports for all schema classes used by the API."""

from .user import UserResponse, UserLogin, Token
from .preferences import ReportPreferencesRead, ReportPreferencesUpdate
from .reports import (
    WeeklyReportData,
    MonthlyReportData,
    SettlementNotificationData,
    ChildPeriodData,
    ChildSettlementData,
    InterestTierBreakdown,
    EmailSendResult,
    SettlementOutcome,
    SettlementTally,
    ReportTally,
    DailyJobsResult,
)

__all__ = [
    "UserResponse",
    "UserLogin",
    "Token",
    "ReportPreferencesRead",
    "ReportPreferencesUpdate",
    "WeeklyReportData",
    "MonthlyReportData",
    "SettlementNotificationData",
    "ChildPeriodData",
    "ChildSettlementData",
    "InterestTierBreakdown",
    "EmailSendResult",
    "SettlementOutcome",
    "SettlementTally",
    "ReportTally",
    "DailyJobsResult",
]
