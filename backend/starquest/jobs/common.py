"""Helpers shared by the settlement and report jobs."""

import enum
import logging

from sqlalchemy.ext.asyncio import AsyncSession

from starquest.crud import get_parent_email, get_report_preferences
from starquest.models import FamilyReportPreferences
from starquest.schemas.reports import DEFAULT_LOCALE

logger = logging.getLogger(__name__)


class PreferenceState(enum.Enum):
    ENABLED = "enabled"
    DISABLED = "disabled"
    UNSPECIFIED = "unspecified"


def preference_state(
    prefs: FamilyReportPreferences | None, flag: str
) -> PreferenceState:
    """Read a nullable preference flag without collapsing ``None`` to ``False``."""
    value = getattr(prefs, flag, None) if prefs is not None else None
    if value is None:
        return PreferenceState.UNSPECIFIED
    return PreferenceState.ENABLED if value else PreferenceState.DISABLED


def is_enabled(prefs: FamilyReportPreferences | None, flag: str) -> bool:
    """Emails are opt-out: only an explicit ``False`` turns one off."""
    return preference_state(prefs, flag) is not PreferenceState.DISABLED


def resolve_locale(prefs: FamilyReportPreferences | None) -> str:
    return (prefs.report_locale if prefs is not None else None) or DEFAULT_LOCALE


async def load_preferences(
    db: AsyncSession, family_id: int
) -> FamilyReportPreferences | None:
    """Fetch preferences, treating a failed lookup as "none configured"."""
    try:
        return await get_report_preferences(db, family_id)
    except Exception as exc:
        logger.warning(
            "Could not load report preferences for family %s: %s",
            family_id,
            error_message(exc),
        )
        await safe_rollback(db)
        return None


async def resolve_recipient(
    db: AsyncSession, family_id: int, prefs: FamilyReportPreferences | None
) -> str | None:
    """The family's report address, else the first parent's email."""
    if prefs is not None and prefs.report_email:
        return prefs.report_email
    return await get_parent_email(db, family_id)


def error_message(exc: BaseException) -> str:
    return str(exc) or "Unknown error"


async def safe_rollback(db: AsyncSession) -> None:
    """Roll back after a failure; a rollback that fails too is only logged."""
    try:
        await db.rollback()
    except Exception as exc:
        logger.warning("Rollback failed: %s", error_message(exc))
