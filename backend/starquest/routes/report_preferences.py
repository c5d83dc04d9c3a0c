"""Endpoints for a family's report email preferences."""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from starquest.auth import require_role
from starquest.crud import get_report_preferences, save_report_preferences
from starquest.database import get_session
from starquest.models import FamilyReportPreferences, User
from starquest.schemas import ReportPreferencesRead, ReportPreferencesUpdate
from starquest.schemas.reports import DEFAULT_LOCALE

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/report-preferences", tags=["report-preferences"])


def _to_read(family_id: int, prefs: FamilyReportPreferences | None) -> ReportPreferencesRead:
    # Unset flags are shown as enabled, matching how the jobs treat them.
    def flag(name: str) -> bool:
        value = getattr(prefs, name, None)
        return True if value is None else value

    return ReportPreferencesRead(
        family_id=family_id,
        report_email=prefs.report_email if prefs else None,
        weekly_report_enabled=flag("weekly_report_enabled"),
        monthly_report_enabled=flag("monthly_report_enabled"),
        settlement_email_enabled=flag("settlement_email_enabled"),
        timezone=(prefs.timezone if prefs else None) or "UTC",
        report_locale=(prefs.report_locale if prefs else None) or DEFAULT_LOCALE,
    )


def _family_id(user: User) -> int:
    if user.family_id is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No family for user"
        )
    return user.family_id


@router.get("/", response_model=ReportPreferencesRead)
async def read_report_preferences(
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent")),
):
    """Return the caller's family preferences, or the defaults if none are saved."""
    family_id = _family_id(current_user)
    prefs = await get_report_preferences(db, family_id)
    return _to_read(family_id, prefs)


@router.put("/", response_model=ReportPreferencesRead)
async def update_report_preferences(
    data: ReportPreferencesUpdate,
    db: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_role("parent")),
):
    """Create or update the caller's family preferences.

    Only fields present in the body are changed; a new row starts from the
    defaults (every email enabled, English, UTC).
    """
    family_id = _family_id(current_user)
    prefs = await get_report_preferences(db, family_id)
    if prefs is None:
        prefs = FamilyReportPreferences(family_id=family_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if field != "report_email" and value is None:
            continue
        setattr(prefs, field, value)
    updated = await save_report_preferences(db, prefs)
    logger.info("Report preferences updated for family %s", family_id)
    return _to_read(family_id, updated)
