import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ.setdefault("OPENAI_API_KEY", "test-key")

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402

from voxtro.database import Base, SessionLocal, engine, get_db  # noqa: E402
from voxtro.main import app  # noqa: E402
from voxtro.models import Bot, BotAction, CustomParameter, Message  # noqa: E402


@pytest.fixture
def db():
    """In-memory SQLite session with a fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    def _override_get_db():
        yield db

    app.dependency_overrides[get_db] = _override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def make_bot(db):
    def _make_bot(**overrides) -> Bot:
        values = {"name": "Clinic Helper", "system_prompt": "You help patients.", "model": "gpt-4o-mini"}
        values.update(overrides)
        bot = Bot(**values)
        db.add(bot)
        db.commit()
        return bot

    return _make_bot


@pytest.fixture
def make_action(db):
    def _make_action(bot: Bot, **overrides) -> BotAction:
        values = {
            "bot_id": bot.id,
            "action_type": "webhook_call",
            "name": "notify_crm",
            "description": "Send lead to CRM",
            "configuration": {"webhookUrl": "https://crm.example.com/hook"},
        }
        values.update(overrides)
        action = BotAction(**values)
        db.add(action)
        db.commit()
        return action

    return _make_action


@pytest.fixture
def make_parameter(db):
    def _make_parameter(bot: Bot, name: str, parameter_type: str = "text", rules: dict | None = None):
        parameter = CustomParameter(
            bot_id=bot.id,
            parameter_name=name,
            parameter_type=parameter_type,
            extraction_rules=rules or {},
        )
        db.add(parameter)
        db.commit()
        return parameter

    return _make_parameter


@pytest.fixture
def add_messages(db):
    def _add_messages(conversation, pairs, *, start=None):
        from datetime import timedelta

        from voxtro.database import utcnow

        start = start or utcnow()
        for offset, (role, content) in enumerate(pairs):
            db.add(
                Message(
                    conversation_id=conversation.id,
                    role=role,
                    content=content,
                    created_at=start + timedelta(seconds=offset),
                )
            )
        db.commit()

    return _add_messages
