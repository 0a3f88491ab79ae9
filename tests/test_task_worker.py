from unittest.mock import MagicMock, Mock, patch

from voxtro.database import ensure_timezone, utcnow
from voxtro.models import Conversation, ConversationParameter, OutboxTask
from voxtro.services.action_executor import dispatch_action
from voxtro.services.errors import UpstreamError, ValidationError
from voxtro.services.outbox_service import claim_pending_tasks, enqueue_task, retry_delay_seconds
from voxtro.services.task_worker import process_outbox_tasks


def _failing(exc):
    def _handler(db, payload, *, final_attempt):
        raise exc

    return _handler


def _reload(db, task):
    db.expire_all()
    return db.get(OutboxTask, task.id)


class TestOutboxQueue:
    def test_claims_only_due_tasks(self, db):
        due = enqueue_task(db, "noop", {"n": 1})
        enqueue_task(db, "noop", {"n": 2}, delay_seconds=60)
        db.commit()

        claimed = claim_pending_tasks(db, limit=10)

        assert [task.id for task in claimed] == [due.id]
        assert claimed[0].status == "PROCESSING"
        assert claimed[0].attempts == 1

    def test_backoff_doubles(self):
        assert retry_delay_seconds(1, 2.0) == 2.0
        assert retry_delay_seconds(2, 2.0) == 4.0
        assert retry_delay_seconds(4, 2.0) == 16.0


class TestProcessOutbox:
    def test_success_marks_sent(self, db):
        seen = []
        task = enqueue_task(db, "noop", {"n": 1})
        db.commit()

        results = process_outbox_tasks(
            db, handlers={"noop": lambda db, payload, final_attempt: seen.append((payload, final_attempt))}
        )

        assert results == {"claimed": 1, "sent": 1, "failed": 0, "retry_scheduled": 0}
        assert seen == [({"n": 1}, False)]
        assert _reload(db, task).status == "SENT"

    def test_upstream_failure_schedules_retry(self, db):
        task = enqueue_task(db, "flaky", {})
        db.commit()

        results = process_outbox_tasks(
            db, max_attempts=3, retry_backoff_seconds=5, handlers={"flaky": _failing(UpstreamError("down"))}
        )

        assert results["retry_scheduled"] == 1
        task = _reload(db, task)
        assert task.status == "PENDING"
        assert task.attempts == 1
        assert task.last_error == "down"
        assert ensure_timezone(task.next_attempt_at) > utcnow()

    def test_failed_after_max_attempts(self, db):
        final_flags = []

        def _handler(db, payload, *, final_attempt):
            final_flags.append(final_attempt)
            raise UpstreamError("still down")

        task = enqueue_task(db, "flaky", {})
        db.commit()

        results = process_outbox_tasks(db, max_attempts=1, handlers={"flaky": _handler})

        assert results["failed"] == 1
        assert final_flags == [True]
        assert _reload(db, task).status == "FAILED"

    def test_validation_errors_are_not_retried(self, db):
        task = enqueue_task(db, "strict", {})
        db.commit()

        process_outbox_tasks(db, max_attempts=5, handlers={"strict": _failing(ValidationError("bad input"))})

        task = _reload(db, task)
        assert task.status == "FAILED"
        assert task.last_error == "bad input"

    def test_unknown_kind_fails(self, db):
        task = enqueue_task(db, "mystery", {})
        db.commit()

        results = process_outbox_tasks(db, handlers={})

        assert results["failed"] == 1
        assert _reload(db, task).last_error == "unknown task kind: mystery"


class TestTaskHandlers:
    @patch("voxtro.services.task_worker.httpx.Client")
    def test_tool_webhook_delivery(self, mock_client_class, db):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=200, is_success=True)
        task = enqueue_task(db, "tool_webhook", {"url": "https://tools.example.com/lead", "payload": {"a": 1}})
        db.commit()

        results = process_outbox_tasks(db)

        assert results["sent"] == 1
        assert mock_client.post.call_args[0][0] == "https://tools.example.com/lead"
        assert mock_client.post.call_args[1]["json"] == {"a": 1}
        assert _reload(db, task).status == "SENT"

    @patch("voxtro.services.task_worker.httpx.Client")
    def test_tool_webhook_error_status_is_retried(self, mock_client_class, db):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.post.return_value = Mock(status_code=502, is_success=False)
        task = enqueue_task(db, "tool_webhook", {"url": "https://tools.example.com/lead", "payload": {}})
        db.commit()

        results = process_outbox_tasks(db, max_attempts=3)

        assert results["retry_scheduled"] == 1
        assert "502" in _reload(db, task).last_error

    @patch("voxtro.services.task_worker.email_service.send_email")
    def test_send_email(self, mock_send, db):
        mock_send.return_value = {"email_id": "em_1"}
        enqueue_task(db, "send_email", {"to": ["ops@example.com"], "subject": "Hi", "html": "<p>x</p>"})
        db.commit()

        process_outbox_tasks(db)

        mock_send.assert_called_once_with(to=["ops@example.com"], subject="Hi", html="<p>x</p>", from_address=None)

    def test_extract_parameters(self, db, make_bot, make_parameter, add_messages):
        bot = make_bot()
        make_parameter(bot, "phone_number", "phone")
        conversation = Conversation(bot_id=bot.id, visitor_id="v1", status="active")
        db.add(conversation)
        db.commit()
        add_messages(conversation, [("user", "reach me at 5551234567")])
        enqueue_task(db, "extract_parameters", {"conversation_id": str(conversation.id), "force": True})
        db.commit()

        results = process_outbox_tasks(db)

        assert results["sent"] == 1
        row = db.query(ConversationParameter).one()
        assert (row.parameter_name, row.parameter_value) == ("phone_number", "5551234567")

    @patch("voxtro.services.action_executor.httpx.Client")
    def test_execute_action_retries_then_fails_log(self, mock_client_class, db, make_bot, make_action):
        mock_client = MagicMock()
        mock_client_class.return_value.__enter__.return_value = mock_client
        mock_client.request.return_value = Mock(
            status_code=500, is_success=False, headers={"content-type": "text/plain"}, text="boom"
        )
        action = make_action(make_bot())
        log = dispatch_action(db, action, {"data": {}})
        db.commit()

        first = process_outbox_tasks(db, max_attempts=2)
        task = db.query(OutboxTask).filter(OutboxTask.kind == "execute_action").one()
        assert first["retry_scheduled"] == 1
        db.refresh(log)
        assert log.status == "pending"

        task.next_attempt_at = None
        db.commit()
        second = process_outbox_tasks(db, max_attempts=2)

        assert second["sent"] == 1
        db.refresh(log)
        assert log.status == "failed"
        assert log.output_data["error"].startswith("Webhook returned status 500")
        assert mock_client.request.call_count == 2
