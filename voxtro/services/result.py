"""Soft-failure return type for completion and extraction calls."""

from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

from voxtro.services.errors import EngineError, UpstreamError

T = TypeVar("T")


@dataclass
class Result(Generic[T]):
    ok: bool
    value: Optional[T] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    @staticmethod
    def success(value: T) -> "Result[T]":
        return Result(ok=True, value=value)

    @staticmethod
    def failure(error: str, code: str = "unknown") -> "Result[T]":
        return Result(ok=False, error=error, error_code=code)

    def unwrap(self) -> T:
        """Value on success. Upstream failures raise UpstreamError, the rest EngineError."""
        if self.ok:
            return self.value
        message = self.error or "operation failed"
        if self.error_code == "upstream_error":
            raise UpstreamError(message)
        raise EngineError(message)
