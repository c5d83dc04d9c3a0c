"""Aggregate import for all API route modules."""

from . import auth, cron, report_preferences

__all__ = ["auth", "cron", "report_preferences"]
