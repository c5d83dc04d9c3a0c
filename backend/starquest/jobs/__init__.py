"""Scheduled jobs run by the daily cron endpoint."""

from .daily import run_daily_jobs
from .reports import REPORT_JOBS, ReportJob, run_periodic_reports
from .settlement import notify_settlement, run_settlement

__all__ = [
    "run_daily_jobs",
    "run_periodic_reports",
    "run_settlement",
    "notify_settlement",
    "ReportJob",
    "REPORT_JOBS",
]
