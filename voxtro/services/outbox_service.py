from datetime import datetime, timedelta
from typing import Any, Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from voxtro.database import utcnow
from voxtro.models import OutboxTask

PENDING = "PENDING"
PROCESSING = "PROCESSING"
SENT = "SENT"
FAILED = "FAILED"


def enqueue_task(db: Session, kind: str, payload: dict[str, Any], *, delay_seconds: float = 0) -> OutboxTask:
    """Queue background work. Committed together with the caller's transaction."""
    now = utcnow()
    task = OutboxTask(
        kind=kind,
        payload_json=payload,
        status=PENDING,
        attempts=0,
        next_attempt_at=now + timedelta(seconds=delay_seconds) if delay_seconds else None,
        created_at=now,
        updated_at=now,
    )
    db.add(task)
    db.flush()
    return task


def claim_pending_tasks(db: Session, *, limit: int = 10) -> list[OutboxTask]:
    """Move due PENDING tasks to PROCESSING, oldest first, and count the attempt."""
    now = utcnow()
    tasks = (
        db.query(OutboxTask)
        .filter(
            OutboxTask.status == PENDING,
            or_(OutboxTask.next_attempt_at.is_(None), OutboxTask.next_attempt_at <= now),
        )
        .order_by(OutboxTask.created_at.asc())
        .limit(limit)
        .with_for_update(skip_locked=True)
        .all()
    )
    for task in tasks:
        task.status = PROCESSING
        task.attempts = (task.attempts or 0) + 1
        task.updated_at = now
    db.commit()
    return tasks


def mark_task_status(
    db: Session,
    task: OutboxTask,
    *,
    status: str,
    last_error: Optional[str] = None,
    next_attempt_at: Optional[datetime] = None,
) -> None:
    task.status = status
    task.last_error = last_error[:500] if last_error else None
    task.next_attempt_at = next_attempt_at
    task.updated_at = utcnow()
    db.commit()


def retry_delay_seconds(attempts: int, retry_backoff_seconds: float) -> float:
    return retry_backoff_seconds * (2 ** max(attempts - 1, 0))
