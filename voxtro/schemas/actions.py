import json
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel

from voxtro.schemas.conditions import ConditionSet


class _ConfigModel(BaseModel):
    # dashboard rows are camelCase, internal callers use snake_case
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")


class ToolParameter(_ConfigModel):
    name: str
    type: str = "text"
    description: str = ""
    required: bool = False


class EmailAutomation(_ConfigModel):
    enabled: bool = False
    recipients: str = ""
    subject: str = ""
    body: str = ""


class _ActionConfig(_ConfigModel):
    # preset name or a full condition set evaluated over the conversation
    inference: Optional[Union[str, ConditionSet]] = None


class CalendarBookingConfig(_ActionConfig):
    type: Literal["calendar_booking"] = "calendar_booking"
    default_duration: int = 30


class EmailSendConfig(_ActionConfig):
    type: Literal["email_send"] = "email_send"
    from_email: Optional[str] = None


class WebhookCallConfig(_ActionConfig):
    type: Literal["webhook_call"] = "webhook_call"
    webhook_url: Optional[str] = None
    method: str = "POST"
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("headers", mode="before")
    @classmethod
    def parse_headers(cls, value: Any) -> Any:
        if value in (None, ""):
            return {}
        if isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError as exc:
                raise ValueError(f"headers is not valid JSON: {exc.msg}") from exc
        return value

    @field_validator("method", mode="before")
    @classmethod
    def upper_method(cls, value: Any) -> Any:
        return value.upper() if isinstance(value, str) and value else "POST"


class ZapierTriggerConfig(_ActionConfig):
    type: Literal["zapier_trigger"] = "zapier_trigger"
    zapier_webhook: Optional[str] = None
    event_name: str = "chatbot_action"


class CustomToolConfig(_ActionConfig):
    type: Literal["custom_tool"] = "custom_tool"
    webhook_url: Optional[str] = None
    parameters: List[ToolParameter] = Field(default_factory=list)
    email_automation: Optional[EmailAutomation] = None
    split_name: bool = False
    qualifying_conditions: List[str] = Field(default_factory=list)


ActionConfig = Annotated[
    Union[CalendarBookingConfig, EmailSendConfig, WebhookCallConfig, ZapierTriggerConfig, CustomToolConfig],
    Field(discriminator="type"),
]

_action_config_adapter = TypeAdapter(ActionConfig)

ACTION_TYPES = ("calendar_booking", "email_send", "webhook_call", "zapier_trigger", "custom_tool")


def parse_action_config(action_type: str, configuration: Optional[dict]) -> ActionConfig:
    """Validate a stored configuration into the model for its action type."""
    return _action_config_adapter.validate_python({**(configuration or {}), "type": action_type})


class ExecuteActionRequest(BaseModel):
    input_data: Optional[Dict[str, Any]] = None
    conversation_id: Optional[UUID] = None


class ExecuteActionResponse(BaseModel):
    success: bool
    execution_id: UUID
    status: str


class ExecutionLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    action_id: UUID
    conversation_id: Optional[UUID] = None
    status: str
    input_data: Dict[str, Any]
    output_data: Optional[Dict[str, Any]] = None
    error_message: Optional[str] = None
