"""Find an embedded {"action": ..., "parameters": {...}} call in model output.

The model is told to put the call on its own line after the user confirms,
but in practice it shows up mid-sentence, wrapped in prose, or with nested
objects inside parameters. Detection therefore works on brace depth rather
than on line structure.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Iterable, Iterator, Optional

from voxtro.logging_config import get_logger

logger = get_logger("action_detector")

ACTION_KEY_RE = re.compile(r'"action"\s*:')
SUGGESTIVE_TOKENS = ("action", "name", "phone")
TRAILING_PUNCTUATION_RE = re.compile(r"[.,;:]\s*$")
MIN_VISIBLE_LENGTH = 3

ACKNOWLEDGEMENTS = {
    "calendar_booking": "All set! I've submitted your booking request and you'll get a confirmation shortly.",
}
DEFAULT_ACKNOWLEDGEMENT = "Got it! I've processed that for you."


@dataclass
class ActionCall:
    name: str
    parameters: dict = field(default_factory=dict)
    start: int = 0
    end: int = 0
    method: str = "action_key"


def _enclosing_braces(text: str, index: int) -> Iterator[int]:
    """Yield each '{' before `index` whose closing brace lies past it, innermost first."""
    pos = text.rfind("{", 0, index)
    while pos != -1:
        end = _matching_brace_after(text, pos)
        if end is not None and end > index:
            yield pos
        pos = text.rfind("{", 0, pos)


def _matching_brace_after(text: str, start: int) -> Optional[int]:
    """Index just past the '}' that closes the brace at `start`. Braces inside strings are ignored."""
    depth = 0
    in_string = False
    escaped = False
    for pos in range(start, len(text)):
        char = text[pos]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
            continue
        if char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return pos + 1
    return None


def _parse_call(text: str, start: int, known_names: set[str], method: str) -> Optional[ActionCall]:
    end = _matching_brace_after(text, start)
    if end is None:
        return None
    try:
        payload = json.loads(text[start:end])
    except json.JSONDecodeError:
        logger.debug("Candidate action call is not valid JSON", extra={"context": {"method": method}})
        return None
    if not isinstance(payload, dict):
        return None

    name = payload.get("action")
    if not isinstance(name, str) or not name:
        fallback = payload.get("name")
        name = fallback if isinstance(fallback, str) and fallback in known_names else None
    if not name:
        return None

    parameters = payload.get("parameters")
    if not isinstance(parameters, dict):
        parameters = {}
    return ActionCall(name=name, parameters=parameters, start=start, end=end, method=method)


def _by_action_key(text: str, known_names: set[str]) -> Optional[ActionCall]:
    for match in ACTION_KEY_RE.finditer(text):
        for start in _enclosing_braces(text, match.start()):
            call = _parse_call(text, start, known_names, "action_key")
            if call:
                return call
    return None


def _by_action_name(text: str, known_names: set[str]) -> Optional[ActionCall]:
    for name in sorted(known_names):
        for match in re.finditer(re.escape(json.dumps(name)), text):
            for start in _enclosing_braces(text, match.start()):
                call = _parse_call(text, start, known_names, "action_name")
                if call:
                    return call
    return None


def _by_first_object(text: str, known_names: set[str]) -> Optional[ActionCall]:
    start = text.find("{")
    if start == -1:
        return None
    end = _matching_brace_after(text, start)
    if end is None or not any(token in text[start:end] for token in SUGGESTIVE_TOKENS):
        return None
    return _parse_call(text, start, known_names, "first_object")


def detect_action_call(text: str, action_names: Iterable[str] = ()) -> Optional[ActionCall]:
    """Locate the first well-formed action call in model output, or None."""
    if not text or "{" not in text:
        return None
    known_names = {name for name in action_names if name}
    for finder in (_by_action_key, _by_action_name, _by_first_object):
        call = finder(text, known_names)
        if call:
            return call
    return None


def strip_action_call(text: str, call: ActionCall, action_type: Optional[str] = None) -> str:
    """Remove the call from the visible reply, never leaving it blank."""
    visible = (text[: call.start] + text[call.end :]).strip()
    visible = visible.rstrip("\r\n").strip()
    visible = TRAILING_PUNCTUATION_RE.sub("", visible).strip()
    if len(visible) < MIN_VISIBLE_LENGTH:
        return ACKNOWLEDGEMENTS.get(action_type or "", DEFAULT_ACKNOWLEDGEMENT)
    return visible
