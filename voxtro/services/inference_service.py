"""Forced-action inference.

When the model never emits an action call, an action may still fire if its
`inference` holds over the conversation. Inference is data: either a preset
name or a condition set evaluated by the condition engine.
"""

import re
from typing import Callable, Iterable, List, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from voxtro.logging_config import get_logger
from voxtro.models import BotAction
from voxtro.schemas.conditions import ConditionSet
from voxtro.services.condition_service import evaluate

logger = get_logger("inference_service")

AFFIRMATIVE_PATTERN = r"\b(?:yes|correct|okay|confirm|that's right|looks good|perfect|sure)\b"
NAME_PATTERN = r"(?:\bname\b|i'm|i am|this is).*?[a-z]{2,}\s+[a-z]{2,}"
PHONE_PATTERN = r"\d{10}|\d{3}[-.\s]\d{3}[-.\s]\d{4}"
EMAIL_PATTERN = r"[^\s@]+@[^\s@]+\.[^\s@]+"

PRESETS = {
    "contact_confirmation": {
        "logic": "AND",
        "groups": [
            {
                "logic": "AND",
                "rules": [
                    {"type": "message_content", "sender": "last_user", "operator": "matches", "value": AFFIRMATIVE_PATTERN},
                    {"type": "message_content", "sender": "conversation", "operator": "matches", "value": NAME_PATTERN},
                ],
            },
            {
                "logic": "OR",
                "rules": [
                    {"type": "message_content", "sender": "any", "operator": "matches", "value": PHONE_PATTERN},
                    {"type": "message_content", "sender": "any", "operator": "matches", "value": EMAIL_PATTERN},
                ],
            },
        ],
    },
}

FALLBACK_NAME_RE = re.compile(r"(?:\bname\s+is|\bname|i'm|i am|this is)\s+([a-z]{2,}[ \t]+[a-z]{2,})", re.IGNORECASE)
FALLBACK_PHONE_RE = re.compile(r"(\d{3}[-.\s]?\d{3}[-.\s]?\d{4}|\(\d{3}\)\s?\d{3}[-.\s]?\d{4})")


def resolve_inference(inference: Union[str, dict, ConditionSet, None]) -> Optional[ConditionSet]:
    """Turn a preset name or raw rule set into a ConditionSet. Unknown or malformed rules yield None."""
    if inference is None or inference == "":
        return None
    if isinstance(inference, ConditionSet):
        return inference
    if isinstance(inference, str):
        preset = PRESETS.get(inference)
        if preset is None:
            logger.warning("Unknown inference preset", extra={"context": {"preset": inference}})
            return None
        return ConditionSet.model_validate(preset)
    try:
        return ConditionSet.model_validate(inference)
    except PydanticValidationError as exc:
        logger.warning("Malformed inference rules", extra={"context": {"error": str(exc)}})
        return None


def should_force(action: BotAction, messages: List[dict]) -> bool:
    conditions = resolve_inference((action.configuration or {}).get("inference"))
    if conditions is None:
        return False
    return evaluate(conditions, {"messages": messages})


def find_forced_action(
    actions: Iterable[BotAction], messages: List[dict], skip: Optional[Callable[[BotAction], bool]] = None
) -> Optional[BotAction]:
    """First action, in configured order, whose inference holds and that `skip` does not rule out."""
    for action in actions:
        if not should_force(action, messages):
            continue
        if skip is not None and skip(action):
            continue
        logger.info(
            "Inference matched",
            extra={"context": {"action_id": str(action.id), "action_name": action.name}},
        )
        return action
    return None


def fallback_contact_scan(text: str) -> dict:
    """Pull a two-word name and a phone number out of free text when nothing was extracted."""
    found = {}
    name = FALLBACK_NAME_RE.search(text or "")
    if name:
        found["name"] = name.group(1).strip()
    phone = FALLBACK_PHONE_RE.search(text or "")
    if phone:
        found["phone_number"] = re.sub(r"\D", "", phone.group(1))
    return found
