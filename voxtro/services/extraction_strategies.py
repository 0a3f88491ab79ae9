"""Extraction strategies, one per parameter type.

Every strategy walks the same ladder: configured regexes first, then
literal/wildcard patterns, with type-specific cleaning applied to each
candidate. Subclasses override where the text comes from and how a raw
capture is cleaned.
"""

import re
from dataclasses import dataclass, field
from typing import Iterable, Optional

from voxtro.logging_config import get_logger
from voxtro.schemas.extraction import ExtractionRules

logger = get_logger("extraction")

NAME_EXCLUDE_WORDS = {
    "espanol",
    "spanish",
    "español",
    "name",
    "nombre",
    "llamar",
    "call",
    "hello",
    "hola",
    "hi",
    "my",
    "me",
    "is",
    "soy",
    "this",
    "phone",
    "number",
    "email",
}
NAME_WORD_RE = re.compile(r"[^\W\d_]+(?:['\-][^\W\d_]+)*")
MAX_NAME_WORDS = 4
MIN_PHONE_DIGITS = 10
COMPOUND_PHONE_MARKER = r"\d{10,15}"
WILDCARD_STOP_RE = re.compile(r"\s*[0-9]{10}|\s+y\s+|\s+and\s+", re.IGNORECASE)
TEN_DIGITS_RE = re.compile(r"[0-9]{10}")

NEGATION_PATTERNS = [
    r"\b(?:no|don'?t|do\s+not|not|never)\s+(?:have|had|diagnosed|suffering)",
]
CONDITION_PHRASE_PATTERNS = [
    r"(?:yes\s+)?(?:i\s+have|have)\s+([a-z][a-z\s]{1,30})",
    r"(?:diagnosed\s+with|suffering\s+from)\s+([a-z][a-z\s]{1,30})",
    r"condition\s+is\s+([a-z][a-z\s]{1,30})",
]
CONDITION_FILLER_RE = re.compile(r"\b(?:an?|the|my|some|bad|severe|thank|you)\b", re.IGNORECASE)
BARE_NO_RE = re.compile(r"^\s*no[.!]?\s*$", re.IGNORECASE)

QUALIFIED = "qualified"
NOT_QUALIFIED = "not qualified"


@dataclass
class ExtractionContext:
    """Conversation text plus every rule configured for the bot."""

    messages: list[dict]
    # parameter_name -> (parameter_type, rules)
    parameters: dict[str, tuple[str, ExtractionRules]] = field(default_factory=dict)

    @property
    def all_text(self) -> str:
        return "\n".join(m.get("content") or "" for m in self.messages)

    @property
    def user_messages(self) -> list[str]:
        return [m.get("content") or "" for m in self.messages if m.get("role") == "user"]

    @property
    def user_text(self) -> str:
        return "\n".join(self.user_messages)


def _compile(pattern: str, flags: int = re.IGNORECASE) -> Optional[re.Pattern]:
    try:
        return re.compile(pattern, flags)
    except re.error as exc:
        logger.warning("Invalid extraction pattern", extra={"context": {"pattern": pattern, "error": str(exc)}})
        return None


def _wildcard_regex(pattern: str, capture: str) -> str:
    return re.escape(pattern.lower()).replace(r"\*", capture)


def clean_name(value: str) -> Optional[str]:
    value = WILDCARD_STOP_RE.split((value or "").strip())[0]
    value = re.sub(r"[^\w\s\-'.]|[\d_]", "", value).strip()
    words = [
        word
        for word in value.split()
        if len(word) >= 2 and word.lower() not in NAME_EXCLUDE_WORDS and NAME_WORD_RE.fullmatch(word)
    ]
    if not words or len(words) > MAX_NAME_WORDS:
        return None
    name = " ".join(words)
    if name.lower() in NAME_EXCLUDE_WORDS:
        return None
    return name


def clean_phone(value: str) -> Optional[str]:
    digits = re.sub(r"\D", "", value or "")
    return digits if len(digits) >= MIN_PHONE_DIGITS else None


class ExtractionStrategy:
    """Plain text values: first regex capture, then patterns."""

    parameter_type = "text"
    wildcard_capture = r"([^.!?\n]+)"
    default_rules = ExtractionRules()

    def extract(self, ctx: ExtractionContext, rules: ExtractionRules, parameter_name: str) -> Optional[str]:
        rules = self.effective_rules(rules)
        for text in self.source_texts(ctx):
            value = self.extract_from_text(text, rules, parameter_name)
            if value:
                return value
        return None

    def effective_rules(self, rules: ExtractionRules) -> ExtractionRules:
        if rules.regex or rules.patterns:
            return rules
        return rules.model_copy(update={"regex": self.default_rules.regex, "patterns": self.default_rules.patterns})

    def source_texts(self, ctx: ExtractionContext) -> Iterable[str]:
        return [ctx.all_text]

    def extract_from_text(self, text: str, rules: ExtractionRules, parameter_name: str) -> Optional[str]:
        value = self._from_regex(text, rules, parameter_name)
        if value:
            return value
        return self._from_patterns(text, rules)

    def select_group(self, match: re.Match, pattern: str, parameter_name: str) -> Optional[str]:
        if match.re.groups:
            return match.group(1)
        return match.group(0)

    def clean(self, value: str) -> Optional[str]:
        value = re.sub(r"[^\w\s@.\-]", "", value).strip()
        return value or None

    def _validate(self, value: Optional[str], rules: ExtractionRules) -> Optional[str]:
        if not value or not rules.validation_regex:
            return value
        validator = _compile(rules.validation_regex, 0)
        if validator is None or not validator.search(value):
            return None
        return value

    def _from_regex(self, text: str, rules: ExtractionRules, parameter_name: str) -> Optional[str]:
        for pattern in rules.regex:
            regex = _compile(pattern)
            if regex is None:
                continue
            match = regex.search(text)
            if not match:
                continue
            raw = self.select_group(match, pattern, parameter_name)
            if not raw:
                continue
            value = self._validate(self.clean(raw.strip()), rules)
            if value:
                return value
        return None

    def _from_patterns(self, text: str, rules: ExtractionRules) -> Optional[str]:
        lower_text = text.lower()
        for pattern in rules.patterns:
            if "*" not in pattern:
                if pattern.lower() in lower_text:
                    return pattern
                continue
            regex = _compile(_wildcard_regex(pattern, self.wildcard_capture))
            if regex is None:
                continue
            match = regex.search(text)
            if not match or not match.group(1):
                continue
            raw = WILDCARD_STOP_RE.split(match.group(1).strip())[0].strip()
            value = self._validate(self.clean(raw), rules)
            if value:
                return value
        return None


class NameStrategy(ExtractionStrategy):
    parameter_type = "name"
    wildcard_capture = r"((?:[^\W\d_]|[ \t\-'.])*)"
    default_rules = ExtractionRules(
        regex=[r"(?:my\s+name\s+is|name\s+is|call\s+me)\s+([^\W\d_]+(?:[ \t]+[^\W\d_]+){0,3})"],
        patterns=["my name is *"],
    )

    def source_texts(self, ctx: ExtractionContext) -> Iterable[str]:
        # newest user message carrying both letters and a phone number first
        for text in reversed(ctx.user_messages):
            if re.search(r"[a-zA-Z]", text) and TEN_DIGITS_RE.search(text):
                yield text
        yield ctx.all_text

    def select_group(self, match: re.Match, pattern: str, parameter_name: str) -> Optional[str]:
        if COMPOUND_PHONE_MARKER in pattern:
            return match.group(1) if match.re.groups >= 1 else None
        return super().select_group(match, pattern, parameter_name)

    def clean(self, value: str) -> Optional[str]:
        return clean_name(value)


class PhoneStrategy(NameStrategy):
    parameter_type = "phone"
    wildcard_capture = r"([\d\s().+\-]{10,})"
    default_rules = ExtractionRules(
        regex=[r"(\d{10,15})", r"(\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4})"],
    )

    def select_group(self, match: re.Match, pattern: str, parameter_name: str) -> Optional[str]:
        if COMPOUND_PHONE_MARKER in pattern:
            if match.re.groups >= 2 and match.group(2):
                return match.group(2)
            if match.re.groups >= 1 and match.group(1) and match.group(1).strip().isdigit():
                return match.group(1)
            return None
        return ExtractionStrategy.select_group(self, match, pattern, parameter_name)

    def clean(self, value: str) -> Optional[str]:
        return clean_phone(value)


class EmailStrategy(ExtractionStrategy):
    parameter_type = "email"
    wildcard_capture = r"([^\s@]+@[^\s@]+\.[^\s@,;!?]+)"
    default_rules = ExtractionRules(regex=[r"([A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,})"])

    def clean(self, value: str) -> Optional[str]:
        value = value.strip().rstrip(".").lower()
        return value if re.fullmatch(r"[^\s@]+@[^\s@]+\.[^\s@]+", value) else None


class NumberStrategy(ExtractionStrategy):
    parameter_type = "number"
    wildcard_capture = r"(-?\d+(?:[.,]\d+)?)"

    def clean(self, value: str) -> Optional[str]:
        match = re.search(r"-?\d+(?:\.\d+)?", value.replace(",", ""))
        return match.group(0) if match else None


class ConditionStrategy(ExtractionStrategy):
    """A stated condition from user messages, filtered through the known vocabulary.

    Denied conditions ("I don't have ...") produce nothing. Without a
    configured vocabulary only the bot's own regexes/patterns apply.
    """

    parameter_type = "condition"

    def source_texts(self, ctx: ExtractionContext) -> Iterable[str]:
        return [ctx.user_text]

    def extract_from_text(self, text: str, rules: ExtractionRules, parameter_name: str) -> Optional[str]:
        if is_negated(text, rules):
            return None
        if rules.known_values:
            value = self._from_phrases(text, rules.known_values) or self._from_vocabulary(text, rules.known_values)
            if value:
                return value
        return super().extract_from_text(text, rules, parameter_name)

    def clean(self, value: str) -> Optional[str]:
        value = re.sub(r"[^\w\s]", "", value).strip()
        return value if len(value) >= 2 else None

    def _from_phrases(self, text: str, vocabulary: list[str]) -> Optional[str]:
        terms = {word for value in vocabulary for word in value.lower().split()}
        for pattern in CONDITION_PHRASE_PATTERNS:
            match = re.search(pattern, text, re.IGNORECASE)
            if not match:
                continue
            phrase = CONDITION_FILLER_RE.sub("", match.group(1).lower())
            words = [word for word in phrase.split() if any(term in word for term in terms)]
            condition = " ".join(words).strip()
            if 3 <= len(condition) <= 50:
                return condition
        return None

    def _from_vocabulary(self, text: str, vocabulary: list[str]) -> Optional[str]:
        lower_text = text.lower()
        for value in vocabulary:
            context_pattern = (
                r"(?:i\s+have|have|diagnosed\s+with|suffering\s+from)\s+[^.]*?\b" + re.escape(value.lower()) + r"\b"
            )
            if re.search(context_pattern, lower_text):
                return value.lower()
        return None


class QualifiedStrategy(ExtractionStrategy):
    """Derived flag: does the extracted source condition intersect the qualifying set."""

    parameter_type = "qualified"

    def extract(self, ctx: ExtractionContext, rules: ExtractionRules, parameter_name: str) -> Optional[str]:
        user_text = ctx.user_text
        if is_negated(user_text, rules) or BARE_NO_RE.match(user_text):
            return NOT_QUALIFIED

        source_name = rules.source_parameter
        source_type, source_rules = ctx.parameters.get(source_name, ("condition", rules))
        condition = select_strategy(source_type, source_name).extract(ctx, source_rules, source_name)
        if not condition:
            return NOT_QUALIFIED

        qualifying = rules.qualifying_values or source_rules.qualifying_values
        return QUALIFIED if intersects(condition, qualifying) else NOT_QUALIFIED


def is_negated(text: str, rules: ExtractionRules) -> bool:
    for pattern in [*NEGATION_PATTERNS, *rules.negation_patterns]:
        regex = _compile(pattern)
        if regex is not None and regex.search(text):
            return True
    return False


def intersects(condition: str, qualifying: Iterable[str]) -> bool:
    condition = condition.lower()
    for value in qualifying:
        value = value.lower()
        if value and (value in condition or condition in value):
            return True
    return False


STRATEGIES: dict[str, ExtractionStrategy] = {
    "text": ExtractionStrategy(),
    "name": NameStrategy(),
    "phone": PhoneStrategy(),
    "email": EmailStrategy(),
    "number": NumberStrategy(),
    "condition": ConditionStrategy(),
    "qualified": QualifiedStrategy(),
}

# rows created before parameter_type existed are all typed "text"
TYPE_BY_PARAMETER_NAME = {
    "name": "name",
    "full_name": "name",
    "phone": "phone",
    "phone_number": "phone",
    "email": "email",
    "condition": "condition",
    "qualified": "qualified",
}


def select_strategy(parameter_type: Optional[str], parameter_name: str) -> ExtractionStrategy:
    if parameter_type and parameter_type != "text" and parameter_type in STRATEGIES:
        return STRATEGIES[parameter_type]
    return STRATEGIES[TYPE_BY_PARAMETER_NAME.get((parameter_name or "").lower(), "text")]
