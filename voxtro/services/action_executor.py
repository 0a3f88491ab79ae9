"""Action execution.

An action request first becomes a pending ActionExecutionLog row plus an
`execute_action` outbox task; the worker later runs the handler for the
action type and finalizes the log. Handlers raise EngineError subclasses,
which end up as a `failed` log with the error text.
"""

import json
import re
import secrets
import string
import time
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlparse
from uuid import UUID
from zoneinfo import ZoneInfo

import httpx
from pydantic import ValidationError as PydanticValidationError
from sqlalchemy.orm import Session

from voxtro.config import settings
from voxtro.database import utcnow
from voxtro.logging_config import get_logger
from voxtro.models import ActionExecutionLog, Bot, BotAction
from voxtro.schemas.actions import (
    CalendarBookingConfig,
    CustomToolConfig,
    EmailSendConfig,
    WebhookCallConfig,
    ZapierTriggerConfig,
    parse_action_config,
)
from voxtro.services import email_service
from voxtro.services.errors import ConfigurationError, EngineError, UpstreamError, ValidationError
from voxtro.services.extraction_strategies import NOT_QUALIFIED, QUALIFIED
from voxtro.services.outbox_service import enqueue_task
from voxtro.services.template_service import (
    TOOL_EMAIL_BODY,
    TOOL_EMAIL_SUBJECT,
    build_tool_variables,
    is_valid_email,
    non_empty,
    parse_recipients,
    render_template,
    text_to_html,
)

logger = get_logger("action_executor")

DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
TIME_RE = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")
BOOKING_SUFFIX_ALPHABET = string.ascii_lowercase + string.digits
WEBHOOK_TIMEOUT_SECONDS = 30.0

PENDING = "pending"
SUCCESS = "success"
FAILED = "failed"


def _log_context(action: BotAction, **extra: Any) -> dict:
    context = {"action_id": str(action.id), "action_name": action.name, "action_type": action.action_type}
    context.update(extra)
    return context


def load_config(action: BotAction):
    """Parse the stored configuration. Malformed rows raise ConfigurationError."""
    try:
        return parse_action_config(action.action_type, action.configuration)
    except PydanticValidationError as exc:
        raise ConfigurationError(f"Invalid configuration for action '{action.name}': {exc}") from exc


def _require_http_url(url: Optional[str], missing_message: str) -> str:
    if not url:
        raise ConfigurationError(missing_message)
    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        raise ValidationError("Invalid webhook URL format")
    return url


def _is_blank(value: Any) -> bool:
    return value is None or str(value).strip() == ""


def _parse_body(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type")
    if content_type and "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            pass
    return {"message": response.text, "contentType": content_type or "unknown"}


def _post(url: str, *, method: str = "POST", headers: Optional[dict] = None, payload: Any = None) -> httpx.Response:
    try:
        with httpx.Client(timeout=WEBHOOK_TIMEOUT_SECONDS) as client:
            return client.request(method, url, headers=headers, json=payload)
    except httpx.HTTPError as exc:
        raise UpstreamError(f"Request to {url} failed: {exc}") from exc


# --- Input preparation -------------------------------------------------------


def prepare_tool_input(action: BotAction, parameters: dict, conversation_text: str = "") -> dict:
    """Fill derived custom-tool inputs before dispatch.

    A missing required `qualified` parameter is computed from the configured
    qualifying conditions, and with `split_name` a `name` input is mapped
    into `first_name`/`last_name`.
    """
    if action.action_type != "custom_tool":
        return dict(parameters)
    try:
        config = load_config(action)
    except ConfigurationError:
        # surfaced by the handler when the execution runs
        return dict(parameters)

    prepared = dict(parameters)
    text = (conversation_text or "").lower()
    for parameter in config.parameters:
        if parameter.name == "qualified" and parameter.required and _is_blank(prepared.get("qualified")):
            qualifying = [c.lower() for c in config.qualifying_conditions if c]
            prepared["qualified"] = QUALIFIED if any(c in text for c in qualifying) else NOT_QUALIFIED
            logger.info("Derived qualified input", extra={"context": _log_context(action, qualified=prepared["qualified"])})

    if config.split_name and not _is_blank(prepared.get("name")):
        parts = str(prepared["name"]).split()
        prepared["first_name"] = parts[0]
        prepared["last_name"] = " ".join(parts[1:]) or parts[0]
    return prepared


# --- Handlers ----------------------------------------------------------------


def _booking_reference() -> str:
    suffix = "".join(secrets.choice(BOOKING_SUFFIX_ALPHABET) for _ in range(6))
    return f"apt-{int(time.time() * 1000)}-{suffix}"


def execute_calendar_booking(
    db: Session, action: BotAction, config: CalendarBookingConfig, input_data: dict, **_: Any
) -> dict:
    date = str(input_data.get("date") or "").strip()
    clock = str(input_data.get("time") or "").strip()
    attendee_name = input_data.get("attendeeName")
    attendee_email = input_data.get("attendeeEmail")

    if not date or not clock or _is_blank(attendee_name):
        raise ValidationError("Missing required booking fields: date, time, and attendeeName are required")
    if not DATE_RE.match(date):
        raise ValidationError("Invalid date format. Please use YYYY-MM-DD format (e.g., 2024-03-15)")
    if not TIME_RE.match(clock):
        raise ValidationError("Invalid time format. Please use HH:MM format (e.g., 14:30)")

    try:
        start = datetime.strptime(f"{date} {clock}", "%Y-%m-%d %H:%M").replace(
            tzinfo=ZoneInfo(settings.prompt_timezone)
        )
    except ValueError as exc:
        raise ValidationError(f"Invalid booking date: {exc}") from exc
    if start < utcnow():
        raise ValidationError("Cannot book appointments in the past. Please select a future date and time.")
    if attendee_email and not is_valid_email(attendee_email):
        raise ValidationError("Invalid email address format")

    try:
        duration = int(input_data.get("duration") or config.default_duration or 30)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Duration must be a number of minutes") from exc

    booking_id = _booking_reference()
    end = start + timedelta(minutes=duration)
    logger.info("Booking confirmed", extra={"context": _log_context(action, booking_id=booking_id, date=date)})
    return {
        "success": True,
        "bookingId": booking_id,
        "message": (
            f"Your appointment is confirmed for {attendee_name} on {date} at {clock}. "
            f"Booking reference: {booking_id}"
        ),
        "details": {
            "bookingId": booking_id,
            "date": date,
            "time": clock,
            "endTime": end.strftime("%H:%M"),
            "duration": duration,
            "attendee": {"name": attendee_name, "email": attendee_email or "Not provided"},
            "description": input_data.get("description") or "Appointment scheduled via chatbot",
            "status": "confirmed",
            "provider": "direct",
        },
    }


def execute_email_send(db: Session, action: BotAction, config: EmailSendConfig, input_data: dict, **_: Any) -> dict:
    to = input_data.get("to")
    subject = input_data.get("subject")
    body = input_data.get("body")
    if _is_blank(to) or _is_blank(subject) or _is_blank(body):
        raise ValidationError("Missing required email fields: to, subject, and body are required")
    if not config.from_email:
        raise ConfigurationError("Email action not properly configured: missing fromEmail in configuration")
    if not is_valid_email(to):
        raise ValidationError("Invalid email address format")

    sender = f"{input_data.get('fromName') or 'Chatbot Assistant'} <{config.from_email}>"
    sent = email_service.send_email(to=[to], subject=subject, html=text_to_html(str(body)), from_address=sender)
    return {
        "success": True,
        "emailId": sent.get("email_id"),
        "message": f"Email sent successfully to {to}",
        "details": {"to": to, "from": sender, "subject": subject, "body": body},
    }


def execute_webhook_call(db: Session, action: BotAction, config: WebhookCallConfig, input_data: dict, **_: Any) -> dict:
    url = _require_http_url(config.webhook_url, "Webhook URL not configured")
    payload = {
        **input_data,
        "_metadata": {
            "timestamp": utcnow().isoformat(),
            "source": "chatbot_action",
            "actionId": str(action.id),
        },
    }
    headers = {"Content-Type": "application/json", "User-Agent": "Voxtro-Webhook/1.0", **config.headers}
    response = _post(url, method=config.method, headers=headers, payload=payload)
    result = _parse_body(response)
    if not response.is_success:
        raise UpstreamError(f"Webhook returned status {response.status_code}: {json.dumps(result)}", response.status_code)
    return {
        "success": True,
        "message": "Webhook called successfully",
        "statusCode": response.status_code,
        "response": result,
        "url": url,
        "method": config.method,
    }


def execute_zapier_trigger(
    db: Session, action: BotAction, config: ZapierTriggerConfig, input_data: dict, **_: Any
) -> dict:
    if not config.zapier_webhook:
        raise ConfigurationError("Zapier webhook URL not configured")
    if "hooks.zapier.com" not in config.zapier_webhook:
        raise ValidationError("Invalid Zapier webhook URL. Must be a valid Zapier webhook endpoint.")

    payload = {
        "event": config.event_name,
        "data": input_data,
        "timestamp": utcnow().isoformat(),
        "chatbot_action_id": str(action.id),
        "source": "chatbot",
    }
    response = _post(
        config.zapier_webhook,
        headers={"Content-Type": "application/json", "User-Agent": "Voxtro-Zapier/1.0"},
        payload=payload,
    )
    try:
        result = response.json() if response.text else {"message": "Trigger sent to Zapier"}
    except ValueError:
        result = {"message": "Trigger sent to Zapier", "raw_response": response.text}
    if not response.is_success:
        raise UpstreamError(f"Zapier webhook returned status {response.status_code}", response.status_code)
    return {
        "success": True,
        "message": "Zapier trigger executed successfully",
        "statusCode": response.status_code,
        "event": config.event_name,
        "zapierResponse": result,
    }


def build_tool_email(db: Session, action: BotAction, config: CustomToolConfig, input_data: dict) -> dict:
    """Render the tool email automation into a send_email task payload."""
    automation = config.email_automation
    bot = db.get(Bot, action.bot_id)
    variables = build_tool_variables(input_data, tool_name=action.name, bot_name=bot.name if bot else None)
    recipients = parse_recipients(automation.recipients, variables)
    if not recipients:
        raise ValidationError("No valid recipient emails found")
    return {
        "to": recipients,
        "subject": render_template(automation.subject or TOOL_EMAIL_SUBJECT, variables),
        "html": text_to_html(render_template(automation.body or TOOL_EMAIL_BODY, variables)),
    }


def execute_custom_tool(
    db: Session,
    action: BotAction,
    config: CustomToolConfig,
    input_data: dict,
    *,
    conversation_id: Optional[UUID] = None,
    **_: Any,
) -> dict:
    url = _require_http_url(config.webhook_url, "Webhook URL not configured for custom tool")
    required = [p.name for p in config.parameters if p.required]
    for name in required:
        if _is_blank(input_data.get(name)):
            raise ValidationError(f"Required parameter '{name}' is missing")

    payload = {
        "tool_name": action.name,
        "tool_description": action.description,
        "parameters": input_data,
        "_metadata": {
            "timestamp": utcnow().isoformat(),
            "source": "custom_tool",
            "actionId": str(action.id),
            "chatbotId": str(action.bot_id),
        },
    }
    webhook_task = enqueue_task(db, "tool_webhook", {"url": url, "payload": payload})

    email_result = None
    automation = config.email_automation
    if automation and automation.enabled and non_empty(input_data.get(name) for name in required):
        try:
            email_task = enqueue_task(db, "send_email", build_tool_email(db, action, config, input_data))
            email_result = {"queued": True, "task_id": str(email_task.id)}
        except ValidationError as exc:
            logger.warning("Tool email skipped", extra={"context": _log_context(action, error=str(exc))})
            email_result = {"error": str(exc)}

    if conversation_id:
        enqueue_task(db, "extract_parameters", {"conversation_id": str(conversation_id), "force": True})

    return {
        "success": True,
        "message": f'Custom tool "{action.name}" executed successfully',
        "statusCode": 202,
        "response": {"message": "Webhook queued", "task_id": str(webhook_task.id)},
        "url": url,
        "toolName": action.name,
        "emailResult": email_result,
    }


ACTION_HANDLERS: Dict[str, Callable[..., dict]] = {
    "calendar_booking": execute_calendar_booking,
    "email_send": execute_email_send,
    "webhook_call": execute_webhook_call,
    "zapier_trigger": execute_zapier_trigger,
    "custom_tool": execute_custom_tool,
}


def execute_action(
    db: Session, action: BotAction, input_data: dict, *, conversation_id: Optional[UUID] = None
) -> dict:
    """Run the handler for the action type. Raises EngineError subclasses."""
    handler = ACTION_HANDLERS.get(action.action_type)
    if handler is None:
        raise ConfigurationError(f"Unknown action type: {action.action_type}")
    config = load_config(action)
    return handler(db, action, config, input_data or {}, conversation_id=conversation_id)


# --- Execution log lifecycle -------------------------------------------------


def dispatch_action(
    db: Session, action: BotAction, input_data: dict, conversation_id: Optional[UUID] = None
) -> ActionExecutionLog:
    """Record a pending execution and queue it. Nothing is called on the caller's path."""
    log = ActionExecutionLog(
        action_id=action.id,
        conversation_id=conversation_id,
        status=PENDING,
        input_data=input_data or {},
        created_at=utcnow(),
    )
    db.add(log)
    db.flush()
    enqueue_task(db, "execute_action", {"execution_id": str(log.id)})
    logger.info("Action dispatched", extra={"context": _log_context(action, execution_id=str(log.id))})
    return log


def _finalize(db: Session, log: ActionExecutionLog, status: str, output: dict, error: Optional[str] = None) -> None:
    log.status = status
    log.output_data = output
    log.error_message = error
    log.completed_at = utcnow()
    db.commit()


def run_execution(db: Session, payload: dict, *, final_attempt: bool = True) -> None:
    """Task handler for `execute_action`.

    Upstream failures are re-raised for the worker to retry while attempts
    remain; every other outcome finalizes the log.
    """
    log = db.get(ActionExecutionLog, UUID(payload["execution_id"]))
    if log is None or log.status != PENDING:
        # already finalized by an earlier delivery
        return

    action = db.get(BotAction, log.action_id)
    if action is None:
        _finalize(db, log, FAILED, {"error": "Action not found"}, "Action not found")
        return

    try:
        output = execute_action(db, action, log.input_data, conversation_id=log.conversation_id)
    except EngineError as exc:
        db.rollback()
        if isinstance(exc, UpstreamError) and not final_attempt:
            log.error_message = str(exc)
            db.commit()
            raise
        logger.warning("Action failed", extra={"context": _log_context(action, error=str(exc), code=exc.code)})
        _finalize(db, log, FAILED, {"error": str(exc)}, str(exc))
        return
    except Exception as exc:
        db.rollback()
        logger.exception("Action crashed", extra={"context": _log_context(action)})
        if final_attempt:
            _finalize(db, log, FAILED, {"error": str(exc)}, str(exc))
        raise

    _finalize(db, log, SUCCESS, output)
    logger.info("Action succeeded", extra={"context": _log_context(action, execution_id=str(log.id))})


def execute_now(db: Session, log: ActionExecutionLog) -> ActionExecutionLog:
    """Run a pending execution inline (manual and test use)."""
    run_execution(db, {"execution_id": str(log.id)}, final_attempt=True)
    db.refresh(log)
    return log
