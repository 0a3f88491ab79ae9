from datetime import timedelta
from unittest.mock import MagicMock, Mock, patch
from uuid import uuid4

import pytest

from voxtro.database import utcnow
from voxtro.models import (
    ActionExecutionLog,
    BotFAQ,
    BotForm,
    Conversation,
    Message,
    OutboxTask,
    ResponseCacheEntry,
    TokenUsage,
)
from voxtro.services.chat_service import APOLOGY
from voxtro.services.llm import LLMResponse
from voxtro.services.matcher_service import FORM_INTRO
from voxtro.services.result import Result
from voxtro.services.task_worker import process_outbox_tasks


def _reply(content, prompt_tokens=100, completion_tokens=20):
    return Result.success(
        LLMResponse(
            content=content,
            model="gpt-4o-mini",
            usage={"prompt_tokens": prompt_tokens, "completion_tokens": completion_tokens},
        )
    )


def _body(bot, text, **extra):
    body = {"bot_id": str(bot.id), "messages": [{"role": "user", "content": text}]}
    body.update(extra)
    return body


@pytest.fixture
def mock_complete():
    with patch("voxtro.services.chat_service.complete") as mock:
        mock.return_value = _reply("Happy to help!")
        yield mock


class TestChatBasics:
    def test_unknown_bot(self, client, mock_complete):
        response = client.post("/chat", json={"bot_id": str(uuid4()), "messages": [{"role": "user", "content": "hi"}]})

        assert response.status_code == 404
        assert response.json()["reason"] == "bot_not_found"

    def test_requires_a_user_message(self, client, make_bot):
        bot = make_bot()
        response = client.post("/chat", json={"bot_id": str(bot.id), "messages": [{"role": "system", "content": "x"}]})
        assert response.status_code == 422

    def test_model_reply_is_persisted_and_counted(self, client, db, make_bot, mock_complete):
        bot = make_bot()

        response = client.post("/chat", json=_body(bot, "Do you take walk-ins?", visitor_id="v-1"))

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == "Happy to help!"
        assert data["cached"] is False

        prompt = mock_complete.call_args[0][0]
        assert prompt[0]["role"] == "system"
        assert prompt[0]["content"].startswith("You help patients.")
        assert prompt[-1] == {"role": "user", "content": "Do you take walk-ins?"}

        conversation = db.query(Conversation).one()
        assert str(conversation.id) == data["conversation_id"]
        assert [m.role for m in conversation.messages] == ["user", "assistant"]
        usage = db.query(TokenUsage).one()
        assert (usage.input_tokens, usage.output_tokens) == (100, 20)

    def test_second_turn_reuses_conversation_and_history(self, client, db, make_bot, mock_complete):
        bot = make_bot()
        first = client.post("/chat", json=_body(bot, "Hello", visitor_id="v-1")).json()

        second = client.post("/chat", json=_body(bot, "Are you open Sunday?", visitor_id="v-1")).json()

        assert second["conversation_id"] == first["conversation_id"]
        prompt = mock_complete.call_args[0][0]
        assert [m["content"] for m in prompt[1:]] == ["Hello", "Happy to help!", "Are you open Sunday?"]

    def test_ended_conversation_id_starts_a_new_one(self, client, db, make_bot, mock_complete):
        bot = make_bot()
        ended = Conversation(bot_id=bot.id, visitor_id="v-1", status="ended", ended_at=utcnow())
        db.add(ended)
        db.commit()

        data = client.post("/chat", json=_body(bot, "Hi again", visitor_id="v-1", conversation_id=str(ended.id))).json()

        assert data["conversation_id"] != str(ended.id)
        assert db.query(Conversation).count() == 2

    def test_upstream_failure_returns_apology(self, client, db, make_bot, mock_complete):
        mock_complete.return_value = Result.failure("Request timed out", "upstream_error")
        bot = make_bot()

        with patch("voxtro.services.chat_service.alert_error") as mock_alert:
            response = client.post("/chat", json=_body(bot, "Hello"))

        assert response.status_code == 200
        data = response.json()
        assert data["response"] == APOLOGY
        assert data["error_reason"] == "upstream_error"
        mock_alert.assert_called_once()
        assert db.query(Message).count() == 1
        assert db.query(TokenUsage).count() == 0


    def test_new_conversation_notifies_owner(self, client, db, make_bot, mock_complete):
        bot = make_bot(start_chat_notification_enabled=True, end_chat_notification_email="owner@clinic.com")

        first = client.post("/chat", json=_body(bot, "Hello", visitor_id="v-1")).json()
        client.post("/chat", json=_body(bot, "Still there?", visitor_id="v-1"))

        task = db.query(OutboxTask).filter(OutboxTask.kind == "send_email").one()
        assert task.payload_json["to"] == ["owner@clinic.com"]
        assert task.payload_json["subject"] == "New conversation started with Clinic Helper"
        assert first["conversation_id"] in task.payload_json["html"]

    def test_new_conversation_without_notification_setting(self, client, db, make_bot, mock_complete):
        bot = make_bot(end_chat_notification_email="owner@clinic.com")

        client.post("/chat", json=_body(bot, "Hello", visitor_id="v-1"))

        assert db.query(OutboxTask).count() == 0


class TestShortCircuits:
    def test_faq_answer_skips_model_and_cache(self, client, db, make_bot, mock_complete):
        bot = make_bot(cache_enabled=True)
        db.add(BotFAQ(bot_id=bot.id, question="What are your hours?", answer="We are open 9 to 5."))
        db.commit()

        response = client.post("/chat", json=_body(bot, "  what are your HOURS?  "))

        assert response.json()["response"] == "We are open 9 to 5."
        mock_complete.assert_not_called()
        assert db.query(ResponseCacheEntry).count() == 0
        assert db.query(TokenUsage).count() == 0
        assert db.query(Message).count() == 2

    def test_faq_match_ignores_case(self, client, db, make_bot, mock_complete):
        bot = make_bot()
        db.add(BotFAQ(bot_id=bot.id, question="what are your hours", answer="We are open 9 to 5."))
        db.commit()

        response = client.post("/chat", json=_body(bot, "What Are Your Hours"))

        assert response.json()["response"] == "We are open 9 to 5."
        mock_complete.assert_not_called()

    def test_faq_requires_exact_question(self, client, db, make_bot, mock_complete):
        bot = make_bot()
        db.add(BotFAQ(bot_id=bot.id, question="What are your hours?", answer="9 to 5."))
        db.commit()

        response = client.post("/chat", json=_body(bot, "what are your hours on Sunday?"))

        assert response.json()["response"] == "Happy to help!"

    def test_form_trigger(self, client, db, make_bot, mock_complete):
        bot = make_bot()
        fields = [{"name": "email", "type": "email", "required": True}]
        db.add(BotForm(bot_id=bot.id, form_title="Book a visit", fields=fields, trigger_keywords=["Appointment"]))
        db.commit()

        data = client.post("/chat", json=_body(bot, "I'd like an appointment please")).json()

        assert data["response"] == FORM_INTRO
        assert data["form_data"]["form_title"] == "Book a visit"
        assert data["form_data"]["fields"] == fields
        mock_complete.assert_not_called()

    def test_cached_answer_for_repeat_first_question(self, client, db, make_bot, mock_complete):
        bot = make_bot(cache_enabled=True, cache_duration_hours=24)

        client.post("/chat", json=_body(bot, "Where are you located?", visitor_id="a"))
        data = client.post("/chat", json=_body(bot, "where are   you located?", visitor_id="b")).json()

        assert data["cached"] is True
        assert data["response"] == "Happy to help!"
        assert mock_complete.call_count == 1
        assert db.query(ResponseCacheEntry).one().hit_count == 1
        hits = [usage.cache_hit for usage in db.query(TokenUsage).order_by(TokenUsage.created_at).all()]
        assert hits == [False, True]

    def test_follow_up_turns_are_not_cached(self, client, db, make_bot, mock_complete):
        bot = make_bot(cache_enabled=True)

        client.post("/chat", json=_body(bot, "Hello", visitor_id="a"))
        client.post("/chat", json=_body(bot, "And parking?", visitor_id="a"))

        assert [entry.question_text for entry in db.query(ResponseCacheEntry).all()] == ["Hello"]


class TestTokenLimits:
    def _spend(self, db, bot, tokens):
        db.add(TokenUsage(bot_id=bot.id, model_used="gpt-4o-mini", input_tokens=tokens, output_tokens=0))
        db.commit()

    def test_daily_limit(self, client, db, make_bot, mock_complete):
        bot = make_bot(daily_token_limit=100)
        self._spend(db, bot, 120)

        response = client.post("/chat", json=_body(bot, "Hello", visitor_id="v-1"))

        assert response.status_code == 429
        data = response.json()
        assert data["reason"] == "daily_token_limit"
        assert data["error"] == "Daily token limit reached. Please try again tomorrow."
        assert data["conversation_id"] is None
        assert db.query(Conversation).count() == 0
        assert db.query(Message).count() == 0
        mock_complete.assert_not_called()

    def test_monthly_limit_reports_active_conversation(self, client, db, make_bot, mock_complete):
        bot = make_bot(monthly_token_limit=50)
        conversation = Conversation(bot_id=bot.id, visitor_id="v-1", status="active")
        db.add(conversation)
        db.commit()
        self._spend(db, bot, 50)

        response = client.post("/chat", json=_body(bot, "Hello", visitor_id="v-1"))

        assert response.status_code == 429
        assert response.json()["reason"] == "monthly_token_limit"
        assert response.json()["conversation_id"] == str(conversation.id)

    def test_under_limit_passes(self, client, db, make_bot, mock_complete):
        bot = make_bot(daily_token_limit=1000, monthly_token_limit=5000)
        self._spend(db, bot, 10)

        response = client.post("/chat", json=_body(bot, "Hello"))

        assert response.status_code == 200


class TestActions:
    def test_detected_call_is_stripped_and_queued(self, client, db, make_bot, make_action, mock_complete):
        bot = make_bot(cache_enabled=True)
        action = make_action(bot)
        mock_complete.return_value = _reply(
            'Done, I have sent it.\n{"action": "notify_crm", "parameters": {"data": {"name": "John"}}}'
        )

        data = client.post("/chat", json=_body(bot, "Please send my details")).json()

        assert data["response"] == "Done, I have sent it"
        assert data["action_result"]["message"] == "Action queued"
        assert data["action_result"]["forced"] is False
        log = db.query(ActionExecutionLog).one()
        assert log.action_id == action.id
        assert log.status == "pending"
        assert log.input_data == {"data": {"name": "John"}}
        assert str(log.conversation_id) == data["conversation_id"]
        assert db.query(OutboxTask).filter(OutboxTask.kind == "execute_action").count() == 1
        assert db.query(ResponseCacheEntry).count() == 0
        assistant = db.query(Message).filter(Message.role == "assistant").one()
        assert "notify_crm" not in assistant.content

    def test_unknown_action_is_left_alone(self, client, db, make_bot, make_action, mock_complete):
        bot = make_bot()
        make_action(bot)
        text = 'Sure.\n{"action": "launch_rocket", "parameters": {}}'
        mock_complete.return_value = _reply(text)

        data = client.post("/chat", json=_body(bot, "go")).json()

        assert data["action_result"] is None
        assert db.query(ActionExecutionLog).count() == 0

    @patch("voxtro.services.action_executor.httpx.Client")
    def test_confirmed_contact_forces_action(
        self, mock_client_class, client, db, make_bot, make_action, add_messages, mock_complete
    ):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.request.return_value = Mock(
            status_code=200, is_success=True, headers={"content-type": "application/json"}
        )
        mock_client.request.return_value.json.return_value = {"ok": True}

        bot = make_bot()
        configuration = {"webhookUrl": "https://crm.example.com/hook", "inference": "contact_confirmation"}
        action = make_action(bot, name="submit_lead", configuration=configuration)
        conversation = Conversation(bot_id=bot.id, visitor_id="v-42", status="active")
        db.add(conversation)
        db.commit()
        add_messages(
            conversation,
            [
                ("user", "My name is John Smith"),
                ("assistant", "Thanks John! What's the best phone number?"),
                ("user", "5551234567"),
                ("assistant", "Just to confirm: John Smith at 5551234567?"),
            ],
            start=utcnow() - timedelta(minutes=5),
        )
        mock_complete.return_value = _reply("Great, I'll submit that now.")

        data = client.post("/chat", json=_body(bot, "yes", visitor_id="v-42")).json()

        assert data["conversation_id"] == str(conversation.id)
        assert data["response"] == "Great, I'll submit that now."
        assert data["action_result"]["forced"] is True
        log = db.query(ActionExecutionLog).one()
        assert log.action_id == action.id
        assert log.input_data == {"name": "John Smith", "phone_number": "5551234567"}

        results = process_outbox_tasks(db)

        assert results["sent"] == 1
        db.refresh(log)
        assert log.status == "success"
        assert mock_client.request.call_args[1]["json"]["name"] == "John Smith"

        again = client.post("/chat", json=_body(bot, "yes", visitor_id="v-42")).json()
        assert again["action_result"] is None
        assert db.query(ActionExecutionLog).count() == 1


    def test_bare_name_reply_still_forces_action(
        self, client, db, make_bot, make_action, add_messages, mock_complete
    ):
        bot = make_bot()
        configuration = {"webhookUrl": "https://crm.example.com/hook", "inference": "contact_confirmation"}
        action = make_action(bot, name="book_visit", configuration=configuration)
        conversation = Conversation(bot_id=bot.id, visitor_id="v-7", status="active")
        db.add(conversation)
        db.commit()
        add_messages(
            conversation,
            [
                ("user", "I'd like to book"),
                ("assistant", "What's your full name?"),
                ("user", "John Smith"),
                ("assistant", "Best phone?"),
                ("user", "5551234567"),
                ("assistant", "Confirm?"),
            ],
            start=utcnow() - timedelta(minutes=5),
        )

        data = client.post("/chat", json=_body(bot, "yes", visitor_id="v-7")).json()

        assert data["action_result"]["forced"] is True
        log = db.query(ActionExecutionLog).one()
        assert log.action_id == action.id
        assert log.input_data["phone_number"] == "5551234567"

    def test_executed_action_does_not_block_the_next_one(
        self, client, db, make_bot, make_action, add_messages, mock_complete
    ):
        bot = make_bot()
        crm = make_action(bot, name="notify_crm", configuration={"webhookUrl": "https://crm.example.com/hook"})
        sms = make_action(bot, name="notify_sms", configuration={"webhookUrl": "https://sms.example.com/hook"})
        for action in (crm, sms):
            action.configuration = {**action.configuration, "inference": "contact_confirmation"}
        db.commit()
        conversation = Conversation(bot_id=bot.id, visitor_id="v-9", status="active")
        db.add(conversation)
        db.commit()
        add_messages(
            conversation,
            [
                ("user", "My name is John Smith"),
                ("assistant", "Phone?"),
                ("user", "5551234567"),
                ("assistant", "Confirm?"),
            ],
            start=utcnow() - timedelta(minutes=5),
        )
        db.add(ActionExecutionLog(action_id=crm.id, conversation_id=conversation.id, status="success", input_data={}))
        db.commit()

        data = client.post("/chat", json=_body(bot, "yes", visitor_id="v-9")).json()

        assert data["action_result"]["action"] == "notify_sms"
        assert db.query(ActionExecutionLog).filter(ActionExecutionLog.action_id == sms.id).count() == 1
        assert db.query(ActionExecutionLog).filter(ActionExecutionLog.action_id == crm.id).count() == 1


class TestPreview:
    def test_preview_persists_nothing(self, client, db, make_bot, make_action, mock_complete):
        bot = make_bot()
        make_action(bot)
        mock_complete.return_value = _reply('On it!\n{"action": "notify_crm", "parameters": {}}')

        data = client.post(
            "/chat",
            json=_body(bot, "test", preview=True, preview_config={"system_prompt": "Draft prompt", "temperature": 0.1}),
        ).json()

        assert data["response"] == "On it!"
        assert data["action_result"] == {"success": True, "message": "Action detected (preview)", "action": "notify_crm"}
        prompt = mock_complete.call_args[0][0]
        assert prompt[0]["content"].startswith("Draft prompt")
        assert mock_complete.call_args[1]["temperature"] == 0.1
        assert db.query(Conversation).count() == 0
        assert db.query(ActionExecutionLog).count() == 0
        assert db.query(TokenUsage).count() == 0
