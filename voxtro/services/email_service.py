"""Outbound email through the Resend HTTP API."""

from typing import List, Optional

import httpx

from voxtro.config import settings
from voxtro.logging_config import get_logger
from voxtro.services.errors import ConfigurationError, UpstreamError

logger = get_logger("email_service")


def send_email(*, to: List[str], subject: str, html: str, from_address: Optional[str] = None) -> dict:
    """Send one email. Raises ConfigurationError or UpstreamError."""
    if not settings.email_api_key:
        raise ConfigurationError("Email API key not configured")
    if not to:
        raise ConfigurationError("No recipients given")

    payload = {
        "from": from_address or settings.email_from,
        "to": to,
        "subject": subject,
        "html": html,
    }
    try:
        with httpx.Client(timeout=15) as client:
            response = client.post(
                settings.email_api_url,
                headers={"Authorization": f"Bearer {settings.email_api_key}"},
                json=payload,
            )
    except httpx.HTTPError as exc:
        raise UpstreamError(f"Email request failed: {exc}") from exc

    if response.status_code >= 300:
        logger.error(
            "Email provider rejected message",
            extra={"context": {"status": response.status_code, "body": response.text[:500]}},
        )
        raise UpstreamError(f"Email sending failed: {response.status_code} - {response.text}", response.status_code)

    try:
        data = response.json()
    except ValueError:
        data = {}
    logger.info("Email sent", extra={"context": {"recipients": len(to), "email_id": data.get("id")}})
    return {"email_id": data.get("id"), "recipients": to, "subject": subject}
