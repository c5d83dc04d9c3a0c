"""Tests for the scheduler endpoints under /cron."""

from datetime import date
import asyncio
import pathlib
import sys

from httpx import AsyncClient, ASGITransport

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from starquest.main import app
from starquest.database import get_session
from starquest.email_service import get_email_service
from starquest.routes import cron
from starquest.routes.cron import get_today
from starquest.schemas.reports import SettlementOutcome
from starquest import crud
from starquest.tests.fakes import (
    FakeEmailService,
    SUNDAY,
    WEDNESDAY,
    add_family,
    make_session_factory,
)

CRON_SECRET = "test-cron-secret"
AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


async def _setup_app(today, email):
    TestSession = await make_session_factory()

    async def override_get_session():
        async with TestSession() as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_email_service] = lambda: email
    app.dependency_overrides[get_today] = lambda: today
    return TestSession


def test_daily_jobs_requires_cron_secret(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)

    async def run():
        await _setup_app(WEDNESDAY, FakeEmailService())
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/cron/daily-jobs")
            assert resp.status_code == 401
            assert resp.json() == {"error": "Unauthorized"}

            resp = await client.post(
                "/cron/daily-jobs", headers={"Authorization": "Bearer wrong"}
            )
            assert resp.status_code == 401

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_unset_secret_rejects_everything(monkeypatch):
    monkeypatch.delenv("CRON_SECRET", raising=False)

    async def run():
        await _setup_app(WEDNESDAY, FakeEmailService())
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get(
                "/cron/daily-jobs", headers={"Authorization": "Bearer "}
            )
            assert resp.status_code == 401

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_midweek_billing_day(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)

    async def run():
        email = FakeEmailService()
        TestSession = await _setup_app(WEDNESDAY, email)
        async with TestSession() as session:
            await add_family(session, "Wednesday", settlement_day=15)

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/cron/daily-jobs", headers=AUTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["success"] is True
        assert "timestamp" in body
        results = body["results"]
        assert results["settlement"] == {"processed": 1, "errors": []}
        assert results["weekly"] is None
        assert results["monthly"] == {"sent": 1, "failed": 0, "skipped": 0}

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_sunday_billing_day_runs_all_jobs(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)

    async def run():
        email = FakeEmailService()
        TestSession = await _setup_app(SUNDAY, email)
        async with TestSession() as session:
            await add_family(session, "Sunday", settlement_day=19)

        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.post("/cron/daily-jobs", headers=AUTH)
        assert resp.status_code == 200
        results = resp.json()["results"]
        assert results["settlement"]["processed"] == 1
        assert results["weekly"] == {"sent": 1, "failed": 0, "skipped": 0}
        assert results["monthly"] == {"sent": 1, "failed": 0, "skipped": 0}
        subjects = sorted(m["subject"] for m in email.sent)
        assert subjects == [
            "StarQuest Monthly Report - Sunday",
            "StarQuest Weekly Report - Sunday",
        ]

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_unexpected_error_returns_500(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)

    async def exploding_jobs(db, today, email_service):
        raise RuntimeError("kaboom")

    monkeypatch.setattr(cron, "run_daily_jobs", exploding_jobs)

    async def run():
        await _setup_app(WEDNESDAY, FakeEmailService())
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/cron/daily-jobs", headers=AUTH)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_session_failure_returns_500(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)

    async def broken_session():
        raise ConnectionError("database is down")
        yield

    async def run():
        app.dependency_overrides[get_session] = broken_session
        app.dependency_overrides[get_email_service] = lambda: FakeEmailService()
        # The error is re-raised after the handler responds; keep the response.
        transport = ASGITransport(app=app, raise_app_exceptions=False)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/cron/daily-jobs", headers=AUTH)
        assert resp.status_code == 500
        assert resp.json() == {"error": "Internal server error"}

    asyncio.run(run())
    app.dependency_overrides.clear()


def test_settlement_endpoint(monkeypatch):
    monkeypatch.setenv("CRON_SECRET", CRON_SECRET)
    requested = []

    async def fake_settlement(db, family_id=None, settlement_date=None):
        requested.append((family_id, settlement_date))
        if settlement_date == date(2025, 2, 28):
            return SettlementOutcome(success=False, error="duplicate key")
        return SettlementOutcome(settlement_date=settlement_date, processed_count=2)

    monkeypatch.setattr(crud, "run_monthly_settlement", fake_settlement)

    async def run():
        await _setup_app(WEDNESDAY, FakeEmailService())
        transport = ASGITransport(app=app)
        async with AsyncClient(transport=transport, base_url="http://test") as client:
            resp = await client.get("/cron/settlement?date=2025-01-31")
            assert resp.status_code == 401

            resp = await client.post("/cron/settlement?date=2025-01-31", headers=AUTH)
            assert resp.status_code == 200
            body = resp.json()
            assert body["success"] is True
            assert body["settlement_date"] == "2025-01-31"
            assert body["processed_count"] == 2

            resp = await client.get("/cron/settlement?date=2025-02-28", headers=AUTH)
            assert resp.status_code == 500
            assert resp.json() == {"error": "Settlement failed", "details": "duplicate key"}

        assert requested == [(None, date(2025, 1, 31)), (None, date(2025, 2, 28))]

    asyncio.run(run())
    app.dependency_overrides.clear()
