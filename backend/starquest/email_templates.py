"""Bilingual HTML email templates for reports and settlement notices.

Markup lives in ``templates/*.html`` and is rendered with Jinja2.  Copy is
kept here as ``{key: {locale: text}}`` tables; a missing locale or key falls
back to English and then to the key itself.
"""

import os
from datetime import date, datetime
from pathlib import Path

from jinja2 import Environment, FileSystemLoader, select_autoescape

from starquest.schemas.reports import (
    WeeklyReportData,
    MonthlyReportData,
    SettlementNotificationData,
)

APP_URL = os.getenv("APP_URL", "https://starquest-kappa.vercel.app")

template_dir = Path(__file__).parent / "templates"
jinja_env = Environment(
    loader=FileSystemLoader(str(template_dir)),
    autoescape=select_autoescape(["html", "xml"]),
)

COLORS = {
    "primary": "#81D8D0",
    "primary_dark": "#5BC4BB",
    "secondary": "#1E3A5F",
    "background": "#F8FAFC",
    "white": "#FFFFFF",
    "text": "#1F2937",
    "text_light": "#6B7280",
    "border": "#E5E7EB",
    "success": "#10B981",
    "warning": "#F59E0B",
    "error": "#EF4444",
}

COMMON_TRANSLATIONS = {
    "brand_name": {"en": "StarQuest", "zh-CN": "夺星大闯关"},
    "company_name": {"en": "Beluga Tempo", "zh-CN": "鲸律"},
    "unsubscribe_text": {
        "en": "To manage your email preferences, visit Settings in the StarQuest app.",
        "zh-CN": "如需管理邮件偏好设置，请访问 StarQuest 应用中的设置页面。",
    },
    "footer_note": {
        "en": "This is an automated email from StarQuest. Please do not reply directly to this email.",
        "zh-CN": "这是 StarQuest 的自动邮件，请勿直接回复。",
    },
    "view_in_app": {"en": "View in App", "zh-CN": "在应用中查看"},
    "stars": {"en": "stars", "zh-CN": "颗星星"},
    "times": {"en": "times", "zh-CN": "次"},
    "family_overview": {"en": "Family Overview", "zh-CN": "家庭总览"},
    "total_earned": {"en": "Total Earned", "zh-CN": "总获得"},
    "total_spent": {"en": "Total Spent", "zh-CN": "总消费"},
    "stars_earned": {"en": "Stars Earned", "zh-CN": "获得星星"},
    "stars_spent": {"en": "Stars Spent", "zh-CN": "消费星星"},
    "net_change": {"en": "Net Change", "zh-CN": "净变化"},
    "current_balance": {"en": "Current Balance", "zh-CN": "当前余额"},
    "top_quests": {"en": "Top Completed Quests", "zh-CN": "热门完成任务"},
    "credit_activity": {"en": "Credit Activity", "zh-CN": "信用活动"},
    "borrowed": {"en": "Borrowed", "zh-CN": "借用"},
    "repaid": {"en": "Repaid", "zh-CN": "偿还"},
    "pending_requests": {"en": "Pending Requests", "zh-CN": "待审批请求"},
    "debt_amount": {"en": "Debt Amount", "zh-CN": "债务金额"},
    "interest_charged": {"en": "Interest Charged", "zh-CN": "利息费用"},
    "interest_breakdown": {"en": "Interest Breakdown", "zh-CN": "利息明细"},
    "tier": {"en": "Tier", "zh-CN": "档位"},
    "debt_range": {"en": "Debt Range", "zh-CN": "债务范围"},
    "rate": {"en": "Rate", "zh-CN": "利率"},
    "debt_in_tier": {"en": "Debt in Tier", "zh-CN": "档位内债务"},
    "interest_amount": {"en": "Interest", "zh-CN": "利息"},
    "unlimited": {"en": "Unlimited", "zh-CN": "无限制"},
}

WEEKLY_TRANSLATIONS = {
    "subject": {"en": "StarQuest Weekly Report", "zh-CN": "夺星大闯关 周报"},
    "summary": {"en": "Weekly Star Summary", "zh-CN": "每周星星汇总"},
    "no_activity": {"en": "No activity this week", "zh-CN": "本周无活动"},
    "period_label": {"en": "Week of", "zh-CN": "周期"},
}

MONTHLY_TRANSLATIONS = {
    "subject": {"en": "StarQuest Monthly Report", "zh-CN": "夺星大闯关 月报"},
    "summary": {"en": "Monthly Star Summary", "zh-CN": "每月星星汇总"},
    "no_activity": {"en": "No activity this month", "zh-CN": "本月无活动"},
    "period_label": {"en": "Month of", "zh-CN": "月份"},
    "settlement_section": {"en": "Credit Settlement", "zh-CN": "信用结算"},
    "credit_limit_change": {"en": "Credit Limit Change", "zh-CN": "信用额度变化"},
    "compared_to_last_month": {"en": "Compared to Last Month", "zh-CN": "与上月相比"},
}

SETTLEMENT_TRANSLATIONS = {
    "subject": {
        "en": "StarQuest Credit Settlement Notice",
        "zh-CN": "夺星大闯关 信用结算通知",
    },
    "title": {"en": "Credit Settlement Completed", "zh-CN": "信用结算已完成"},
    "settlement_date": {"en": "Settlement Date", "zh-CN": "结算日期"},
    "credit_limit_before": {"en": "Credit Limit (Before)", "zh-CN": "信用额度（之前）"},
    "credit_limit_after": {"en": "Credit Limit (After)", "zh-CN": "信用额度（之后）"},
    "credit_limit_change": {"en": "Limit Change", "zh-CN": "额度变化"},
    "total_interest": {"en": "Total Interest Charged", "zh-CN": "总利息费用"},
    "no_interest_charged": {
        "en": "No interest was charged this period. All children had positive or zero balances.",
        "zh-CN": "本期未收取利息。所有孩子的余额为正数或零。",
    },
    "settlement_explanation": {
        "en": "Interest is calculated based on each child's negative balance (debt) at settlement time. Credit limits may be adjusted based on repayment history.",
        "zh-CN": "利息根据结算时每个孩子的负余额（债务）计算。信用额度可能根据还款历史进行调整。",
    },
}

MONTH_NAMES_EN = [
    "January", "February", "March", "April", "May", "June", "July",
    "August", "September", "October", "November", "December",
]
WEEKDAY_NAMES_EN = [
    "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday",
]
WEEKDAY_NAMES_ZH = ["星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日"]


def translate(table: dict, key: str, locale: str) -> str:
    entry = table.get(key) or COMMON_TRANSLATIONS.get(key)
    if not entry:
        return key
    return entry.get(locale) or entry["en"]


def format_date(value: date, locale: str, style: str = "short") -> str:
    """Render a date as the app does: ``short``, ``month`` or ``long``.

    short: "Jan 15, 2025" / "2025年1月15日"
    month: "January 2025" / "2025年1月"
    long:  "Wednesday, January 15, 2025" / "2025年1月15日星期三"
    """
    if isinstance(value, datetime):
        value = value.date()
    if locale == "zh-CN":
        if style == "month":
            return f"{value.year}年{value.month}月"
        text = f"{value.year}年{value.month}月{value.day}日"
        if style == "long":
            text += WEEKDAY_NAMES_ZH[value.weekday()]
        return text
    month = MONTH_NAMES_EN[value.month - 1]
    if style == "month":
        return f"{month} {value.year}"
    if style == "long":
        return f"{WEEKDAY_NAMES_EN[value.weekday()]}, {month} {value.day}, {value.year}"
    return f"{month[:3]} {value.day}, {value.year}"


def format_number(value) -> str:
    """Drop a trailing ``.0`` so whole star amounts read as integers."""
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def _render(template_name: str, table: dict, locale: str, **context) -> str:
    template = jinja_env.get_template(template_name)
    return template.render(
        t=lambda key: translate(table, key, locale),
        fmt_date=lambda value, style="short": format_date(value, locale, style),
        num=format_number,
        colors=COLORS,
        locale=locale,
        html_lang="zh" if locale == "zh-CN" else "en",
        app_url=APP_URL,
        year=date.today().year,
        **context,
    )


def get_weekly_report_subject(data: WeeklyReportData, locale: str) -> str:
    return f"{translate(WEEKLY_TRANSLATIONS, 'subject', locale)} - {data.family_name}"


def generate_weekly_report_html(data: WeeklyReportData) -> str:
    return _render("weekly_report.html", WEEKLY_TRANSLATIONS, data.locale, data=data)


def get_monthly_report_subject(data: MonthlyReportData, locale: str) -> str:
    return f"{translate(MONTHLY_TRANSLATIONS, 'subject', locale)} - {data.family_name}"


def generate_monthly_report_html(data: MonthlyReportData) -> str:
    # Children with neither interest nor a limit change have nothing to show.
    settlements = [
        s
        for s in data.settlement_data or []
        if s.interest_charged != 0 or s.credit_limit_change != 0
    ]
    return _render(
        "monthly_report.html",
        MONTHLY_TRANSLATIONS,
        data.locale,
        data=data,
        settlements=settlements,
    )


def get_settlement_notice_subject(
    data: SettlementNotificationData, locale: str
) -> str:
    return f"{translate(SETTLEMENT_TRANSLATIONS, 'subject', locale)} - {data.family_name}"


def generate_settlement_notice_html(data: SettlementNotificationData) -> str:
    children = [
        c
        for c in data.children
        if c.interest_charged != 0 or c.credit_limit_change != 0
    ]
    return _render(
        "settlement_notice.html",
        SETTLEMENT_TRANSLATIONS,
        data.locale,
        data=data,
        children=children,
    )
