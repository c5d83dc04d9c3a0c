"""Authorization check for scheduler-triggered endpoints."""

import logging
import os
import secrets

from fastapi import Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


def verify_cron_auth(request: Request) -> JSONResponse | None:
    """Return ``None`` when the request carries the cron secret.

    Otherwise return the 401 response the endpoint should send back as-is.
    With no ``CRON_SECRET`` configured every request is rejected.
    """
    cron_secret = os.getenv("CRON_SECRET")
    auth_header = request.headers.get("authorization") or ""
    if cron_secret and secrets.compare_digest(
        auth_header, f"Bearer {cron_secret}"
    ):
        return None
    logger.warning("Rejected unauthorized cron request to %s", request.url.path)
    return JSONResponse({"error": "Unauthorized"}, status_code=401)
