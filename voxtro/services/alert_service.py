"""Operator alerts delivered to a Telegram chat."""

from typing import Optional

import httpx

from voxtro.config import settings
from voxtro.logging_config import get_logger

logger = get_logger("alert_service")

LEVEL_MARKERS = {"INFO": "ℹ️", "WARNING": "⚠️", "ERROR": "❌", "CRITICAL": "🔥"}


def format_alert(level: str, message: str, context: Optional[dict] = None) -> str:
    text = f"{LEVEL_MARKERS.get(level, '📢')} *{level}* voxtro-engine\n\n{message}"
    if context:
        lines = "\n".join(f"  {key}: {value}" for key, value in context.items())
        text += f"\n\n```\n{lines}\n```"
    return text


def send_alert(level: str, message: str, context: Optional[dict] = None) -> bool:
    """Post an alert. Returns True when Telegram accepted it.

    Without ALERT_BOT_TOKEN / ALERT_CHAT_ID the alert is only logged.
    """
    if not settings.alert_bot_token or not settings.alert_chat_id:
        logger.warning("Alert not configured", extra={"context": {"level": level, "message": message}})
        return False

    try:
        with httpx.Client(timeout=10) as client:
            response = client.post(
                f"https://api.telegram.org/bot{settings.alert_bot_token}/sendMessage",
                json={
                    "chat_id": settings.alert_chat_id,
                    "text": format_alert(level, message, context),
                    "parse_mode": "Markdown",
                },
            )
    except httpx.HTTPError as exc:
        logger.error("Failed to send alert", extra={"context": {"level": level, "error": str(exc)}})
        return False
    return response.status_code == 200


def alert_error(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("ERROR", message, context)


def alert_warning(message: str, context: Optional[dict] = None) -> bool:
    return send_alert("WARNING", message, context)
