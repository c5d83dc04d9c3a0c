"""Calendar rules deciding which daily jobs apply today.

Everything here is a pure function of the date passed in so the rules can
be tested for any day without touching the clock.
"""

import calendar
from datetime import date

# Stored settlement_day meaning "the last calendar day of the month".
LAST_DAY_OF_MONTH = 0


def is_sunday(today: date) -> bool:
    return today.weekday() == calendar.SUNDAY


def is_last_day_of_month(today: date) -> bool:
    return today.day == calendar.monthrange(today.year, today.month)[1]


def settlement_days_due(today: date) -> set[int]:
    """Return the ``settlement_day`` values that fall due on ``today``."""
    days = {today.day}
    if is_last_day_of_month(today):
        days.add(LAST_DAY_OF_MONTH)
    return days


def due_for_settlement(settlement_day: int, today: date) -> bool:
    """Billing-day rule shared by the settlement run and the monthly report.

    A family is due when its day matches today's day of month, or when it
    uses the last-day sentinel and today is the last day of the month.
    """
    return settlement_day in settlement_days_due(today)
