import re
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

PLACEHOLDER_RE = re.compile(r"\{\{\s*([A-Za-z0-9_.\-]+)\s*\}\}")
EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

NOTIFICATION_DEFAULTS = {
    "user_name": "Unknown User",
    "bot_name": "Chatbot",
    "conversation_summary": "No summary available",
    "first_message": "No first message",
    "last_message": "No last message",
}

TOOL_EMAIL_SUBJECT = "Tool Execution: {{tool_name}}"
TOOL_EMAIL_BODY = 'Tool "{{tool_name}}" was executed with the following data:\n\n{{parameters}}'
TOOL_META_KEYS = ("bot_name", "tool_name", "timestamp")

DEFAULT_NOTIFICATION_TEMPLATE = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto; padding: 20px;">
  <h2 style="color: #333; border-bottom: 2px solid #3b82f6; padding-bottom: 10px;">Chat Session Ended</h2>
  <div style="background-color: #f8fafc; padding: 15px; border-radius: 8px; margin: 20px 0;">
    <h3 style="color: #3b82f6; margin: 0 0 10px 0;">Session Details</h3>
    <p><strong>Chatbot:</strong> {{bot_name}}</p>
    <p><strong>End Date &amp; Time:</strong> {{timestamp}}</p>
    <p><strong>Session Duration:</strong> {{timeout_minutes}} minutes of inactivity reached</p>
  </div>
  <div style="background-color: #f1f5f9; padding: 15px; border-radius: 8px; margin: 20px 0;">
    <h3 style="color: #475569; margin: 0 0 10px 0;">Conversation Summary</h3>
    <p style="white-space: pre-line; line-height: 1.5;">{{conversation_summary}}</p>
  </div>
  <p style="color: #64748b; font-size: 14px; margin-top: 30px;">
    This is an automated notification from your Voxtro chatbot system.
  </p>
</div>
""".strip()


def _stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def render_template(template: str, variables: dict) -> str:
    """Substitute {{name}} placeholders. Unknown names are left as written."""
    if not template:
        return ""

    def _replace(match: re.Match) -> str:
        key = match.group(1)
        if key not in variables:
            return match.group(0)
        return _stringify(variables[key])

    return PLACEHOLDER_RE.sub(_replace, template)


def merge_variables(*sources: Optional[dict], override: bool = False) -> dict:
    """Merge variable maps in order.

    Earlier sources win on key collisions; with override=True later ones do.
    """
    merged: dict = {}
    for source in sources:
        for key, value in (source or {}).items():
            if override or key not in merged:
                merged[key] = value
    return merged


def build_notification_variables(
    well_known: dict,
    custom_parameters: Optional[dict] = None,
    tool_parameters: Optional[dict] = None,
    *,
    override: bool = False,
) -> dict:
    base = dict(well_known)
    for key, default in NOTIFICATION_DEFAULTS.items():
        if not base.get(key):
            base[key] = default
    if not base.get("timestamp"):
        base["timestamp"] = datetime.now(timezone.utc).isoformat()
    return merge_variables(base, custom_parameters, tool_parameters, override=override)


def render_notification(template: Optional[str], variables: dict) -> str:
    return render_template(template or DEFAULT_NOTIFICATION_TEMPLATE, variables)


def format_parameters(parameters: dict) -> str:
    return "\n".join(f"{key}: {_stringify(value)}" for key, value in parameters.items())


def build_tool_variables(parameters: dict, *, tool_name: str, bot_name: Optional[str]) -> dict:
    variables = dict(parameters)
    variables.update(
        {
            "bot_name": bot_name or "Chatbot",
            "tool_name": tool_name,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    )
    variables["parameters"] = format_parameters(
        {key: value for key, value in parameters.items() if key not in TOOL_META_KEYS}
    )
    return variables


def parse_recipients(recipients: str, variables: dict) -> list[str]:
    """Split a comma separated recipient list, render each entry and keep valid addresses."""
    rendered = (render_template(part.strip(), variables) for part in (recipients or "").split(","))
    return [email for email in rendered if email and EMAIL_RE.match(email)]


def text_to_html(body: str) -> str:
    return body.replace("\n", "<br>")


def is_valid_email(value: Any) -> bool:
    return isinstance(value, str) and bool(EMAIL_RE.match(value))


def non_empty(values: Iterable[Any]) -> bool:
    return all(_stringify(value).strip() for value in values)
