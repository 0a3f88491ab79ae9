from typing import Any, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

RuleType = Literal["basic", "message_content", "custom_parameter", "parameter_exists"]
Logic = Literal["AND", "OR"]
Operator = Literal[
    "equals",
    "not_equals",
    "contains",
    "not_contains",
    "starts_with",
    "ends_with",
    "matches",
    "greater_than",
    "less_than",
    "greater_than_equal",
    "less_than_equal",
    "exists",
    "not_exists",
]


def _normalize_logic(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip().upper()
    return value


class ConditionRule(BaseModel):
    model_config = ConfigDict(extra="ignore")

    type: RuleType = "basic"
    field: str = "always"
    operator: Operator = "equals"
    value: Any = "true"
    case_sensitive: bool = False
    # message_content: user, bot, any, last_user, conversation (falls back to field)
    sender: Optional[Literal["user", "bot", "any", "last_user", "conversation"]] = None
    parameter_name: Optional[str] = None
    parameter_type: Optional[Literal["text", "number"]] = None


class ConditionGroup(BaseModel):
    logic: Logic = "AND"
    rules: List[ConditionRule] = Field(min_length=1)

    @field_validator("logic", mode="before")
    @classmethod
    def normalize_logic(cls, value: Any) -> Any:
        return _normalize_logic(value)


class ConditionSet(BaseModel):
    logic: Logic = "AND"
    groups: List[ConditionGroup] = Field(min_length=1)

    @field_validator("logic", mode="before")
    @classmethod
    def normalize_logic(cls, value: Any) -> Any:
        return _normalize_logic(value)

    @model_validator(mode="before")
    @classmethod
    def upgrade_legacy(cls, data: Any) -> Any:
        """Accept the flat {logic, rules} form and fill an empty set with the always-true rule."""
        if not isinstance(data, dict):
            return data
        if "rules" in data and not data.get("groups"):
            return {"logic": "AND", "groups": [{"logic": data.get("logic", "AND"), "rules": data["rules"]}]}
        if not data.get("groups"):
            return {**data, "groups": [{"rules": [{"type": "basic", "value": "true"}]}]}
        return data

    @classmethod
    def always(cls) -> "ConditionSet":
        return cls.model_validate({})
