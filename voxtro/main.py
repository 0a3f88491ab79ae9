import asyncio
import os

from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from voxtro.config import settings
from voxtro.database import SessionLocal, get_db, init_db
from voxtro.logging_config import get_logger, setup_logging
from voxtro.models import ActionExecutionLog, BotAction, Conversation, Message
from voxtro.routers import actions, chat, conversations
from voxtro.services.conversation_end_service import sweep_conversations
from voxtro.services.task_worker import process_outbox_tasks

setup_logging(settings.log_level)

app = FastAPI(
    title="Voxtro Engine",
    description="Conversational action-orchestration engine behind Voxtro chatbots",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(chat.router)
app.include_router(actions.router)
app.include_router(conversations.router)

worker_logger = get_logger("worker")
_worker_tasks: list[asyncio.Task] = []


def _is_worker_enabled() -> bool:
    if os.environ.get("PYTEST_CURRENT_TEST"):
        return False
    return settings.outbox_worker_enabled


def _run_outbox_batch() -> dict:
    db = SessionLocal()
    try:
        return process_outbox_tasks(
            db,
            limit=settings.outbox_process_limit,
            max_attempts=settings.outbox_max_attempts,
            retry_backoff_seconds=settings.outbox_retry_backoff_seconds,
        )
    finally:
        db.close()


def _run_sweep() -> dict:
    db = SessionLocal()
    try:
        return sweep_conversations(db)
    finally:
        db.close()


async def _outbox_worker_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(settings.outbox_worker_interval_seconds, 0.1))
            results = await asyncio.to_thread(_run_outbox_batch)
            if results["claimed"]:
                worker_logger.info("Outbox worker processed", extra={"context": results})
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error("Outbox worker loop failed", extra={"context": {"error": str(exc)}})


async def _sweep_loop() -> None:
    while True:
        try:
            await asyncio.sleep(max(settings.conversation_sweep_interval_seconds, 1.0))
            results = await asyncio.to_thread(_run_sweep)
            if results["ended"]:
                worker_logger.info(
                    "Sweep ended conversations",
                    extra={"context": {"ended": len(results["ended"]), "notified": results["processed"]}},
                )
        except asyncio.CancelledError:
            break
        except Exception as exc:
            worker_logger.error("Sweep loop failed", extra={"context": {"error": str(exc)}})


@app.on_event("startup")
async def start_workers() -> None:
    init_db()
    if not _is_worker_enabled():
        return
    if not any(not task.done() for task in _worker_tasks):
        _worker_tasks[:] = [
            asyncio.create_task(_outbox_worker_loop()),
            asyncio.create_task(_sweep_loop()),
        ]
        worker_logger.info("Background workers started")


@app.on_event("shutdown")
async def stop_workers() -> None:
    for task in _worker_tasks:
        task.cancel()
    for task in _worker_tasks:
        try:
            await task
        except asyncio.CancelledError:
            pass
    _worker_tasks.clear()


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "conversations": db.query(Conversation).count(),
        "messages": db.query(Message).count(),
        "actions": db.query(BotAction).count(),
        "executions": db.query(ActionExecutionLog).count(),
    }
