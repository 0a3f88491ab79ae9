import json
from datetime import datetime, timezone
from typing import Iterable, Optional
from zoneinfo import ZoneInfo

from voxtro.config import settings
from voxtro.logging_config import get_logger
from voxtro.models import BotAction

logger = get_logger("prompt_service")

DEFAULT_SYSTEM_PROMPT = "You are a helpful assistant."

FORMATTING_RULES = """--- RESPONSE FORMATTING RULES (strictly follow these) ---
- NEVER use markdown formatting such as asterisks (*), bold (**text**), italic (*text*), bullet points, or numbered lists
- Write in a natural, conversational tone as if you are a real person texting or messaging
- Keep responses friendly, helpful, and human-like
- Use plain text only - no special formatting characters
- Break up long responses into shorter, digestible paragraphs when needed"""

ACTIONS_HEADER = """AVAILABLE ACTIONS:
Use these tools when the conversation context requires them.

RESPONSE FORMAT RULE: When calling an action:
1. Keep your message to the user brief, natural, and conversational - do not list or summarize the collected parameters
2. Add the JSON action call on a separate line: {"action": "action_name", "parameters": {...}}
3. Example good response: "Perfect, I have everything I need. I'll submit this now."
4. Example bad response: "Let me summarize: Name: John, Email: john@example.com..."
The action call is processed automatically and is invisible to the user. They only see your brief acknowledgment.
"""

EXECUTION_PROTOCOL = """=== ACTION EXECUTION PROTOCOL ===
When the user confirms to proceed (says "yes", "correct", "okay", "confirm", "that's right", etc.):

STEP 1: Output your confirmation message to the user
STEP 2: On the very next line output ONLY the action JSON with no other text

EXACT FORMAT REQUIRED:
{"action": "action_name", "parameters": {all_required_params}}

The JSON line must be separate from your message. Always output it when the user confirms, even if you already confirmed to them."""

STATIC_PARAMETER_DOCS = {
    "calendar_booking": (
        'Required Parameters: {date: "YYYY-MM-DD", time: "HH:MM", attendeeName: "Name"}',
        'Optional Parameters: {duration: 30, attendeeEmail: "email@example.com", description: "Meeting details"}',
        {
            "date": "2024-03-15",
            "time": "14:30",
            "attendeeName": "John Doe",
            "attendeeEmail": "john@example.com",
            "duration": 60,
            "description": "Product demo meeting",
        },
    ),
    "email_send": (
        'Required Parameters: {to: "recipient@email.com", subject: "Email subject", body: "Email content"}',
        'Optional Parameters: {fromName: "Sender Name"}',
        {
            "to": "customer@example.com",
            "subject": "Welcome to our service",
            "body": "Thank you for signing up!",
            "fromName": "Support Team",
        },
    ),
    "webhook_call": (
        "Parameters: {data: {...}} (any JSON object with the data to send)",
        None,
        {"data": {"customerName": "John Doe", "email": "john@example.com"}},
    ),
    "zapier_trigger": (
        "Parameters: {data: {...}} (any JSON object passed to the Zap)",
        None,
        {"data": {"customerName": "John Doe", "email": "john@example.com"}},
    ),
}

EXAMPLE_BY_PARAMETER_TYPE = {
    "email": "example@email.com",
    "number": "123",
    "date": "2024-03-15",
}


def _format_call(name: str, parameters: dict) -> str:
    return json.dumps({"action": name, "parameters": parameters}, ensure_ascii=False)


def _custom_tool_docs(action: BotAction) -> list[str]:
    parameters = (action.configuration or {}).get("parameters") or []
    if not parameters:
        return [
            "Parameters: {} (no specific parameters required)",
            f"Example: {_format_call(action.name, {})}",
        ]

    def _describe(items: list[dict]) -> str:
        return ", ".join(f'{p.get("name")}: "{p.get("description") or p.get("name")}"' for p in items)

    lines = []
    required = [p for p in parameters if p.get("required")]
    optional = [p for p in parameters if not p.get("required")]
    if required:
        lines.append(f"Required Parameters: {{{_describe(required)}}}")
    if optional:
        lines.append(f"Optional Parameters: {{{_describe(optional)}}}")
    example = {
        p.get("name"): EXAMPLE_BY_PARAMETER_TYPE.get(p.get("type"), f"example {p.get('name')}") for p in parameters
    }
    lines.append(f"Example: {_format_call(action.name, example)}")
    return lines


def describe_action(action: BotAction) -> str:
    lines = [
        f"ACTION: {action.name}",
        f"Description: {action.description or 'Execute this action when relevant to the conversation'}",
        f"Type: {action.action_type}",
        "TRIGGER: Use this action when the description criteria are met",
    ]
    if action.action_type == "custom_tool":
        lines.extend(_custom_tool_docs(action))
    elif action.action_type in STATIC_PARAMETER_DOCS:
        required, optional, example = STATIC_PARAMETER_DOCS[action.action_type]
        lines.append(required)
        if optional:
            lines.append(optional)
        lines.append(f"Example: {_format_call(action.name, example)}")
    return "\n".join(lines)


def _time_context(now: datetime, tz_name: str) -> str:
    local = now.astimezone(ZoneInfo(tz_name))
    clock = local.strftime("%I:%M %p").lstrip("0")
    return (
        "--- SYSTEM CONTEXT (do not mention this to users) ---\n"
        f"Current date: {local:%B} {local.day}, {local.year}\n"
        f"Current time: {clock}\n"
        f"Day of the week: {local:%A}"
    )


def build_system_prompt(
    custom_prompt: Optional[str],
    actions: Iterable[BotAction] = (),
    *,
    website_content: Optional[str] = None,
    now: Optional[datetime] = None,
    tz_name: Optional[str] = None,
) -> str:
    """Bot instructions, formatting rules, time context, site content and the action contract."""
    sections = [
        (custom_prompt or "").strip() or DEFAULT_SYSTEM_PROMPT,
        FORMATTING_RULES,
        _time_context(now or datetime.now(timezone.utc), tz_name or settings.prompt_timezone),
    ]
    if website_content:
        sections.append(f"Additional context from the company website:\n{website_content}")

    actions = list(actions)
    if actions:
        blocks = [ACTIONS_HEADER] + [describe_action(action) for action in actions]
        sections.append("\n\n".join(blocks))
        sections.append(EXECUTION_PROTOCOL)

    logger.debug("System prompt built", extra={"context": {"actions": len(actions)}})
    return "\n\n".join(sections)
