"""Pydantic models for reading and updating family report preferences."""

from typing import Optional

from pydantic import BaseModel, EmailStr, field_validator

from .reports import ReportLocale


class ReportPreferencesRead(BaseModel):
    family_id: int
    report_email: Optional[str]
    weekly_report_enabled: bool
    monthly_report_enabled: bool
    settlement_email_enabled: bool
    timezone: str
    report_locale: str


class ReportPreferencesUpdate(BaseModel):
    report_email: Optional[EmailStr] = None
    weekly_report_enabled: bool | None = None
    monthly_report_enabled: bool | None = None
    settlement_email_enabled: bool | None = None
    timezone: str | None = None
    report_locale: Optional[ReportLocale] = None

    @field_validator("report_email", mode="before")
    @classmethod
    def blank_email_is_none(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value
