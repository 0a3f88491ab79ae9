from datetime import datetime, timezone
from types import SimpleNamespace

from voxtro.services.prompt_service import (
    DEFAULT_SYSTEM_PROMPT,
    EXECUTION_PROTOCOL,
    build_system_prompt,
    describe_action,
)

NOW = datetime(2025, 3, 15, 18, 5, tzinfo=timezone.utc)


def _action(name, action_type, description=None, configuration=None):
    return SimpleNamespace(
        name=name, action_type=action_type, description=description, configuration=configuration or {}
    )


class TestSystemPrompt:
    def test_default_prompt_and_time_context(self):
        prompt = build_system_prompt(None, now=NOW, tz_name="America/New_York")

        assert prompt.startswith(DEFAULT_SYSTEM_PROMPT)
        assert "Current date: March 15, 2025" in prompt
        assert "Current time: 2:05 PM" in prompt
        assert "Day of the week: Saturday" in prompt
        assert "AVAILABLE ACTIONS" not in prompt

    def test_website_content_and_actions(self):
        actions = [_action("notify_crm", "webhook_call", "Send the lead to the CRM")]

        prompt = build_system_prompt("You help patients.", actions, website_content="Open 9-5", now=NOW)

        assert prompt.startswith("You help patients.")
        assert "Additional context from the company website:\nOpen 9-5" in prompt
        assert "ACTION: notify_crm" in prompt
        assert "Description: Send the lead to the CRM" in prompt
        assert prompt.endswith(EXECUTION_PROTOCOL)


class TestDescribeAction:
    def test_calendar_booking(self):
        text = describe_action(_action("book", "calendar_booking"))

        assert "Type: calendar_booking" in text
        assert 'Required Parameters: {date: "YYYY-MM-DD", time: "HH:MM", attendeeName: "Name"}' in text
        assert 'Example: {"action": "book"' in text

    def test_custom_tool_parameters(self):
        configuration = {
            "parameters": [
                {"name": "name", "description": "Full name", "required": True},
                {"name": "email", "type": "email", "required": False},
            ]
        }
        text = describe_action(_action("lead", "custom_tool", configuration=configuration))

        assert 'Required Parameters: {name: "Full name"}' in text
        assert 'Optional Parameters: {email: "email"}' in text
        assert '"email": "example@email.com"' in text
        assert '"name": "example name"' in text

    def test_custom_tool_without_parameters(self):
        text = describe_action(_action("ping", "custom_tool"))
        assert "Parameters: {} (no specific parameters required)" in text
