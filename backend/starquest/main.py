"""FastAPI application entry point.

This module wires together the API routers, configures middleware and
startup tasks, and exposes the ASGI application object used by the
server.  The daily jobs are normally triggered by an external scheduler
calling ``/cron/daily-jobs``; setting ``RUN_DAILY_JOBS_IN_PROCESS`` runs
them from a background loop instead.
"""

import os
import logging
import asyncio
from datetime import date

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from starquest.routes import auth, cron, report_preferences
from starquest.database import create_db_and_tables, async_session
from starquest.email_service import get_email_service
from starquest.jobs import run_daily_jobs

# Basic logging configuration.  The log level can be controlled with an
# environment variable so deployments can adjust verbosity without code
# changes.
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(level=getattr(logging, LOG_LEVEL))
logger = logging.getLogger(__name__)

RUN_DAILY_JOBS_IN_PROCESS = os.getenv(
    "RUN_DAILY_JOBS_IN_PROCESS", "false"
).lower() in ("1", "true", "yes")

app = FastAPI(title="StarQuest Jobs")

# CORS setup
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def on_startup():
    """Create tables and, if configured, start the daily jobs loop."""

    await create_db_and_tables()
    if RUN_DAILY_JOBS_IN_PROCESS:
        asyncio.create_task(daily_jobs_task())


async def daily_jobs_task():
    """Background coroutine that runs the daily jobs once per day."""

    logger.info("Starting in-process daily jobs task")
    while True:
        try:
            async with async_session() as session:
                result = await run_daily_jobs(
                    session, date.today(), get_email_service()
                )
                logger.info("Daily jobs finished: %s", result.model_dump())
        except Exception as exc:
            logger.exception("Daily jobs task failed: %s", exc)
        # Sleep for roughly one day before running again.
        await asyncio.sleep(60 * 60 * 24)


app.include_router(auth.router)
app.include_router(cron.router)
app.include_router(report_preferences.router)


@app.get("/")
async def read_root():
    return {"message": "Welcome to StarQuest Jobs API"}


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Catch-all exception handler that logs the stack trace once."""
    logger.exception("Unhandled error during request %s", request.url.path)
    return JSONResponse(
        status_code=500,
        content={"error": "Internal server error"},
    )
