"""Outbound email through the Resend HTTP API."""

import logging
import os

import httpx

from starquest.schemas.reports import EmailSendResult

logger = logging.getLogger(__name__)

RESEND_API_URL = "https://api.resend.com/emails"
DEFAULT_FROM_EMAIL = "StarQuest <onboarding@resend.dev>"


class EmailService:
    """Thin async wrapper around the Resend ``/emails`` endpoint.

    ``send_email`` never raises: transport and API errors come back as an
    unsuccessful :class:`EmailSendResult` so callers can count them.
    """

    def __init__(
        self,
        api_key: str | None = None,
        from_email: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.from_email = from_email or DEFAULT_FROM_EMAIL
        self._transport = transport

    def is_available(self) -> bool:
        return bool(self.api_key)

    async def send_email(
        self,
        to: str | list[str],
        subject: str,
        html: str,
        reply_to: str | None = None,
    ) -> EmailSendResult:
        if not self.is_available():
            return EmailSendResult(
                success=False,
                error="Email service not configured (RESEND_API_KEY missing)",
            )

        payload = {
            "from": self.from_email,
            "to": to if isinstance(to, list) else [to],
            "subject": subject,
            "html": html,
        }
        if reply_to:
            payload["reply_to"] = reply_to
        headers = {"Authorization": f"Bearer {self.api_key}"}
        timeout = httpx.Timeout(20.0, connect=10.0)
        try:
            async with httpx.AsyncClient(
                timeout=timeout, transport=self._transport
            ) as client:
                resp = await client.post(RESEND_API_URL, headers=headers, json=payload)
        except httpx.HTTPError as exc:
            logger.error("Email send error: %s", exc)
            return EmailSendResult(success=False, error=str(exc) or "Unknown error sending email")

        try:
            body = resp.json()
        except ValueError:
            body = {}

        if resp.status_code >= 400:
            message = body.get("message") or resp.text
            logger.error("Resend API error %s: %s", resp.status_code, message)
            return EmailSendResult(success=False, error=message)

        return EmailSendResult(success=True, message_id=body.get("id"))


def get_email_service() -> EmailService:
    """FastAPI dependency building the service from the environment."""
    api_key = os.getenv("RESEND_API_KEY")
    if not api_key:
        logger.warning("RESEND_API_KEY not configured - email sending disabled")
    return EmailService(
        api_key=api_key,
        from_email=os.getenv("RESEND_FROM_EMAIL"),
    )
