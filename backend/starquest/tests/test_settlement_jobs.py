"""Tests for the settlement runner and the settlement notice."""

from datetime import date
import asyncio
import pathlib
import sys

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from starquest import crud
from starquest.jobs.settlement import run_settlement, notify_settlement
from starquest.models import (
    ChildCreditSettings,
    CreditSettlement,
    Redemption,
    ReportHistory,
    User,
)
from starquest.reports import normalize_interest_breakdown
from starquest.schemas.reports import SettlementOutcome
from starquest.tests.fakes import (
    FakeEmailService,
    WEDNESDAY,
    add_family,
    make_session_factory,
)


def test_runner_collects_errors_in_fetch_order(monkeypatch):
    async def run():
        Session = await make_session_factory()
        async with Session() as session:
            first = await add_family(session, "Alpha", settlement_day=15)
            second = await add_family(session, "Beta", settlement_day=15)
            third = await add_family(session, "Gamma", settlement_day=15)
            await add_family(session, "NotDue", settlement_day=16)

        calls = []

        async def fake_settlement(db, family_id=None, settlement_date=None):
            calls.append((family_id, settlement_date))
            if family_id == second.id:
                return SettlementOutcome(success=False, error="Constraint violation")
            if family_id == third.id:
                raise RuntimeError("Crash")
            return SettlementOutcome(settlement_date=WEDNESDAY, processed_count=1)

        monkeypatch.setattr(crud, "run_monthly_settlement", fake_settlement)
        email = FakeEmailService()
        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, email)

        assert calls == [(first.id, None), (second.id, None), (third.id, None)]
        assert tally.processed == 1
        assert tally.errors == [
            "Settlement failed for Beta: Constraint violation",
            "Settlement error for Gamma: Crash",
        ]

    asyncio.run(run())


def test_exception_without_message_reports_unknown_error(monkeypatch):
    async def run():
        Session = await make_session_factory()
        async with Session() as session:
            await add_family(session, "Silent", settlement_day=15)

        async def fake_settlement(db, family_id=None, settlement_date=None):
            raise RuntimeError()

        monkeypatch.setattr(crud, "run_monthly_settlement", fake_settlement)
        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, FakeEmailService())
        assert tally.processed == 0
        assert tally.errors == ["Settlement error for Silent: Unknown error"]

    asyncio.run(run())


def test_fetch_failure_returns_empty_tally(monkeypatch):
    async def run():
        Session = await make_session_factory()

        async def broken_fetch(db, today):
            raise RuntimeError("database is down")

        monkeypatch.setattr(
            "starquest.jobs.settlement.get_families_due_for_settlement", broken_fetch
        )
        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, FakeEmailService())
        assert tally.processed == 0
        assert tally.errors == []

    asyncio.run(run())


def test_last_day_sentinel_family_is_settled(monkeypatch):
    async def run():
        Session = await make_session_factory()
        async with Session() as session:
            await add_family(session, "EndOfMonth", settlement_day=0)
        settled = []

        async def fake_settlement(db, family_id=None, settlement_date=None):
            settled.append(family_id)
            return SettlementOutcome()

        monkeypatch.setattr(crud, "run_monthly_settlement", fake_settlement)
        async with Session() as session:
            mid_month = await run_settlement(session, date(2025, 1, 30), FakeEmailService())
            month_end = await run_settlement(session, date(2025, 1, 31), FakeEmailService())
        assert mid_month.processed == 0
        assert month_end.processed == 1
        assert len(settled) == 1

    asyncio.run(run())


def test_settlement_charges_interest_and_sends_notice():
    async def run():
        Session = await make_session_factory()
        async with Session() as session:
            family = await add_family(session, "Debtors", settlement_day=15)
            child = (
                await session.execute(
                    select(User).where(User.family_id == family.id, User.role == "child")
                )
            ).scalar_one()
            session.add(
                ChildCreditSettings(
                    family_id=family.id,
                    child_id=child.id,
                    credit_limit=40,
                    original_credit_limit=50,
                    credit_enabled=True,
                )
            )
            session.add(
                Redemption(
                    family_id=family.id,
                    child_id=child.id,
                    stars_spent=30,
                    status="approved",
                )
            )
            await session.commit()

        email = FakeEmailService()
        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, email)
        assert tally.processed == 1
        assert tally.errors == []

        async with Session() as session:
            settlement = (await session.execute(select(CreditSettlement))).scalar_one()
            assert settlement.debt_amount == 30
            # 20 stars at 5% plus 10 stars at 10%
            assert settlement.interest_calculated == 2
            assert settlement.credit_limit_after == 40
            history = (await session.execute(select(ReportHistory))).scalar_one()
            assert history.report_type == "settlement"
            assert history.status == "sent"
            assert history.error_message is None
            assert history.sent_to_email == "parent@example.com"

        assert len(email.sent) == 1
        assert email.sent[0]["to"] == "parent@example.com"
        assert email.sent[0]["subject"] == "StarQuest Credit Settlement Notice - Debtors"
        assert "Debtors Kid" in email.sent[0]["html"]

    asyncio.run(run())


async def _family_with_settlement(Session, breakdown=None, **family_kwargs):
    async with Session() as session:
        family = await add_family(session, "Notice", settlement_day=15, **family_kwargs)
        child = (
            await session.execute(
                select(User).where(User.family_id == family.id, User.role == "child")
            )
        ).scalar_one()
        session.add(
            CreditSettlement(
                family_id=family.id,
                child_id=child.id,
                settlement_date=WEDNESDAY,
                balance_before=-10,
                debt_amount=10,
                interest_calculated=1,
                interest_breakdown=breakdown,
                credit_limit_before=50,
                credit_limit_after=50,
            )
        )
        await session.commit()
    return family


def _settle_on_wednesday(monkeypatch, fail_for=()):
    settled = []

    async def fake_settlement(db, family_id=None, settlement_date=None):
        settled.append(family_id)
        if family_id in fail_for:
            raise ConnectionError("connection reset")
        return SettlementOutcome(settlement_date=WEDNESDAY, processed_count=1)

    monkeypatch.setattr(crud, "run_monthly_settlement", fake_settlement)
    return settled


async def _dead_rollback(self):
    raise ConnectionError("rollback on dead connection")


def test_failed_rollback_while_loading_records_does_not_stop_the_batch(monkeypatch):
    async def run():
        Session = await make_session_factory()
        async with Session() as session:
            first = await add_family(session, "Alpha", settlement_day=15)
            second = await add_family(session, "Beta", settlement_day=15)
        settled = _settle_on_wednesday(monkeypatch)

        async def broken_records(db, family_id, settlement_date):
            raise ConnectionError("connection reset")

        monkeypatch.setattr(
            "starquest.jobs.settlement.get_settlement_records", broken_records
        )
        monkeypatch.setattr(AsyncSession, "rollback", _dead_rollback)
        email = FakeEmailService()
        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, email)

        assert settled == [first.id, second.id]
        assert tally.processed == 2
        assert tally.errors == []
        assert email.sent == []

    asyncio.run(run())


def test_failed_rollback_after_settlement_error_does_not_stop_the_batch(monkeypatch):
    async def run():
        Session = await make_session_factory()
        async with Session() as session:
            first = await add_family(session, "Alpha", settlement_day=15)
            second = await add_family(session, "Beta", settlement_day=15)
        settled = _settle_on_wednesday(monkeypatch, fail_for={first.id})
        monkeypatch.setattr(AsyncSession, "rollback", _dead_rollback)

        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, FakeEmailService())

        assert settled == [first.id, second.id]
        assert tally.processed == 1
        assert tally.errors == ["Settlement error for Alpha: connection reset"]

    asyncio.run(run())


def test_failed_rollback_in_notice_is_not_raised(monkeypatch):
    async def run():
        Session = await make_session_factory()
        family = await _family_with_settlement(Session)

        async def broken_notice(db, family, settlement_date, email_service):
            raise ConnectionError("connection reset")

        monkeypatch.setattr(
            "starquest.jobs.settlement._send_settlement_notice", broken_notice
        )
        monkeypatch.setattr(AsyncSession, "rollback", _dead_rollback)
        async with Session() as session:
            result = await notify_settlement(
                session, family, WEDNESDAY, FakeEmailService()
            )
        assert not result.sent
        assert result.error == "connection reset"

    asyncio.run(run())


def test_failed_notice_send_does_not_change_the_tally(monkeypatch):
    async def run():
        Session = await make_session_factory()
        family = await _family_with_settlement(Session)
        _settle_on_wednesday(monkeypatch)

        email = FakeEmailService(fail=True)
        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, email)

        assert tally.processed == 1
        assert tally.errors == []
        assert len(email.sent) == 1
        async with Session() as session:
            history = (await session.execute(select(ReportHistory))).scalar_one()
        assert history.family_id == family.id
        assert history.status == "failed"

    asyncio.run(run())


def test_raising_notifier_does_not_change_the_tally(monkeypatch):
    async def run():
        Session = await make_session_factory()
        await _family_with_settlement(Session)
        _settle_on_wednesday(monkeypatch)

        async def broken_notice(db, family, settlement_date, email_service):
            raise RuntimeError("template exploded")

        monkeypatch.setattr(
            "starquest.jobs.settlement._send_settlement_notice", broken_notice
        )
        async with Session() as session:
            tally = await run_settlement(session, WEDNESDAY, FakeEmailService())

        assert tally.processed == 1
        assert tally.errors == []

    asyncio.run(run())


def test_notice_skipped_when_email_unavailable():
    async def run():
        Session = await make_session_factory()
        family = await _family_with_settlement(Session)
        email = FakeEmailService(available=False)
        async with Session() as session:
            result = await notify_settlement(session, family, WEDNESDAY, email)
        assert not result.sent
        assert result.skipped_reason == "email_unavailable"
        assert email.sent == []

    asyncio.run(run())


def test_notice_respects_explicit_opt_out_only():
    async def run():
        Session = await make_session_factory()
        disabled = await _family_with_settlement(
            Session, prefs={"settlement_email_enabled": False}
        )
        email = FakeEmailService()
        async with Session() as session:
            result = await notify_settlement(session, disabled, WEDNESDAY, email)
        assert result.skipped_reason == "disabled"
        assert email.sent == []

        Session = await make_session_factory()
        unset = await _family_with_settlement(
            Session, prefs={"settlement_email_enabled": None}
        )
        async with Session() as session:
            result = await notify_settlement(session, unset, WEDNESDAY, email)
        assert result.sent
        assert len(email.sent) == 1

    asyncio.run(run())


def test_notice_prefers_report_email_and_needs_a_recipient():
    async def run():
        Session = await make_session_factory()
        family = await _family_with_settlement(
            Session, prefs={"report_email": "reports@example.com"}
        )
        email = FakeEmailService()
        async with Session() as session:
            await notify_settlement(session, family, WEDNESDAY, email)
        assert email.sent[0]["to"] == "reports@example.com"

        Session = await make_session_factory()
        orphan = await _family_with_settlement(Session, parent_email=None)
        email = FakeEmailService()
        async with Session() as session:
            result = await notify_settlement(session, orphan, WEDNESDAY, email)
        assert result.skipped_reason == "no_recipient"
        assert email.sent == []

    asyncio.run(run())


def test_notice_skipped_without_records():
    async def run():
        Session = await make_session_factory()
        async with Session() as session:
            family = await add_family(session, "Empty", settlement_day=15)
        email = FakeEmailService()
        async with Session() as session:
            result = await notify_settlement(session, family, WEDNESDAY, email)
        assert result.skipped_reason == "no_records"
        assert email.sent == []

    asyncio.run(run())


def test_notice_uses_locale_and_reports_send_failure():
    async def run():
        Session = await make_session_factory()
        family = await _family_with_settlement(
            Session, prefs={"report_locale": "zh-CN"}
        )
        email = FakeEmailService(fail=True)
        async with Session() as session:
            result = await notify_settlement(session, family, WEDNESDAY, email)
        assert not result.sent
        assert result.error == "Mailbox unavailable"
        assert email.sent[0]["subject"] == "夺星大闯关 信用结算通知 - Notice"
        async with Session() as session:
            history = (await session.execute(select(ReportHistory))).scalar_one()
        assert history.report_type == "settlement"
        assert history.status == "failed"
        assert history.error_message == "Mailbox unavailable"
        assert history.sent_at is None

    asyncio.run(run())


def test_notice_tolerates_malformed_breakdown():
    async def run():
        Session = await make_session_factory()
        family = await _family_with_settlement(
            Session,
            breakdown=[
                {
                    "tier_order": None,
                    "min_debt": None,
                    "max_debt": None,
                    "debt_in_tier": None,
                    "interest_rate": None,
                    "interest_amount": None,
                }
            ],
        )
        email = FakeEmailService()
        async with Session() as session:
            result = await notify_settlement(session, family, WEDNESDAY, email)
        assert result.sent

    asyncio.run(run())


def test_normalize_interest_breakdown():
    assert normalize_interest_breakdown(None) == []
    assert normalize_interest_breakdown({"tier_order": 1}) == []
    assert normalize_interest_breakdown("oops") == []

    (tier,) = normalize_interest_breakdown(
        [
            {
                "tier_order": None,
                "min_debt": None,
                "max_debt": None,
                "debt_in_tier": None,
                "interest_rate": None,
                "interest_amount": None,
            }
        ]
    )
    assert tier.tier_order == 0
    assert tier.min_debt == 0
    assert tier.debt_in_tier == 0
    assert tier.rate == 0
    assert tier.interest_amount == 0
    assert tier.max_debt is None

    (tier,) = normalize_interest_breakdown(
        [{"tier_order": 2, "min_debt": 20, "max_debt": 49, "interest_rate": 0.1}]
    )
    assert tier.max_debt == 49
    assert tier.rate == 0.1
    assert tier.interest_amount == 0
