"""Outbox task processing.

Each task kind maps to a handler `(db, payload, final_attempt=...)`. A
handler that raises leaves the task to be retried with exponential backoff
until the attempt budget is spent.
"""

import time
from datetime import timedelta
from typing import Callable, Dict, Optional
from uuid import UUID

import httpx
from sqlalchemy.orm import Session

from voxtro.config import settings
from voxtro.database import utcnow
from voxtro.logging_config import get_logger
from voxtro.models import Conversation
from voxtro.services import email_service
from voxtro.services.action_executor import run_execution
from voxtro.services.errors import ConfigurationError, UpstreamError, ValidationError
from voxtro.services.extraction_service import extract_parameters
from voxtro.services.outbox_service import (
    FAILED,
    PENDING,
    SENT,
    claim_pending_tasks,
    mark_task_status,
    retry_delay_seconds,
)

logger = get_logger("task_worker")

NON_RETRYABLE = (ConfigurationError, ValidationError)


def handle_tool_webhook(db: Session, payload: dict, *, final_attempt: bool = True) -> None:
    url = payload["url"]
    try:
        with httpx.Client(timeout=30.0) as client:
            response = client.post(
                url,
                headers={"Content-Type": "application/json", "User-Agent": "Voxtro-CustomTool/1.0"},
                json=payload.get("payload") or {},
            )
    except httpx.HTTPError as exc:
        raise UpstreamError(f"Tool webhook failed: {exc}") from exc

    logger.info("Tool webhook delivered", extra={"context": {"url": url, "status": response.status_code}})
    if not response.is_success:
        raise UpstreamError(f"Tool webhook returned status {response.status_code}", response.status_code)


def handle_send_email(db: Session, payload: dict, *, final_attempt: bool = True) -> None:
    email_service.send_email(
        to=payload.get("to") or [],
        subject=payload.get("subject") or "",
        html=payload.get("html") or "",
        from_address=payload.get("from"),
    )


def handle_extract_parameters(db: Session, payload: dict, *, final_attempt: bool = True) -> None:
    conversation = db.get(Conversation, UUID(payload["conversation_id"]))
    if conversation is None:
        logger.warning("Extraction skipped, conversation gone", extra={"context": payload})
        return
    extract_parameters(db, conversation, force=bool(payload.get("force"))).unwrap()
    db.commit()


TASK_HANDLERS: Dict[str, Callable[..., None]] = {
    "execute_action": run_execution,
    "tool_webhook": handle_tool_webhook,
    "send_email": handle_send_email,
    "extract_parameters": handle_extract_parameters,
}


def process_outbox_tasks(
    db: Session,
    *,
    limit: Optional[int] = None,
    max_attempts: Optional[int] = None,
    retry_backoff_seconds: Optional[float] = None,
    handlers: Optional[Dict[str, Callable[..., None]]] = None,
) -> dict:
    """Claim due tasks and run them. Returns counters for the batch."""
    limit = limit or settings.outbox_process_limit
    max_attempts = max_attempts or settings.outbox_max_attempts
    backoff = settings.outbox_retry_backoff_seconds if retry_backoff_seconds is None else retry_backoff_seconds
    handlers = handlers or TASK_HANDLERS

    results = {"claimed": 0, "sent": 0, "failed": 0, "retry_scheduled": 0}
    tasks = claim_pending_tasks(db, limit=limit)
    results["claimed"] = len(tasks)

    for task in tasks:
        started = time.monotonic()
        handler = handlers.get(task.kind)
        attempts = task.attempts or 0
        context = {"task_id": str(task.id), "kind": task.kind, "attempts": attempts}
        if handler is None:
            logger.error("Unknown outbox task kind", extra={"context": context})
            mark_task_status(db, task, status=FAILED, last_error=f"unknown task kind: {task.kind}")
            results["failed"] += 1
            continue

        try:
            handler(db, task.payload_json or {}, final_attempt=attempts >= max_attempts)
        except Exception as exc:
            db.rollback()
            error = str(exc) or exc.__class__.__name__
            if isinstance(exc, NON_RETRYABLE) or attempts >= max_attempts:
                mark_task_status(db, task, status=FAILED, last_error=error)
                results["failed"] += 1
                logger.error("Outbox task failed", extra={"context": {**context, "error": error}})
            else:
                delay = retry_delay_seconds(attempts, backoff)
                mark_task_status(
                    db,
                    task,
                    status=PENDING,
                    last_error=error,
                    next_attempt_at=utcnow() + timedelta(seconds=delay),
                )
                results["retry_scheduled"] += 1
                logger.warning(
                    "Outbox task retry scheduled",
                    extra={"context": {**context, "error": error, "backoff_seconds": delay}},
                )
            continue

        mark_task_status(db, task, status=SENT)
        results["sent"] += 1
        logger.info(
            "Outbox task done",
            extra={"context": {**context, "elapsed_ms": round((time.monotonic() - started) * 1000, 2)}},
        )

    return results
