from typing import Optional


class EngineError(Exception):
    """Base class for errors raised by the orchestration engine."""

    code = "engine_error"


class ConfigurationError(EngineError):
    """Required configuration is missing or malformed. Never retried."""

    code = "configuration_error"


class ValidationError(EngineError):
    """Input failed validation (date, time, email, URL, required parameter)."""

    code = "validation_error"


class LimitExceeded(EngineError):
    code = "limit_exceeded"

    def __init__(self, scope: str, used: int, limit: int, conversation_id=None):
        self.scope = scope
        self.used = used
        self.limit = limit
        self.conversation_id = conversation_id
        super().__init__(f"{scope} token limit reached ({used}/{limit})")

    @property
    def reason(self) -> str:
        return f"{self.scope}_token_limit"


class UpstreamError(EngineError):
    """Language model, webhook or email provider call failed."""

    code = "upstream_error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)
