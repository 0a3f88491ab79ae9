import time
from typing import List, Optional

from voxtro.config import settings
from voxtro.logging_config import get_logger
from voxtro.services.errors import UpstreamError
from voxtro.services.llm import LLMResponse, OpenAIProvider
from voxtro.services.result import Result

logger = get_logger("completion_service")

_llm_provider = None


def get_llm_provider() -> OpenAIProvider:
    """Get or create LLM provider instance."""
    global _llm_provider
    if _llm_provider is None:
        _llm_provider = OpenAIProvider(
            api_key=settings.openai_api_key,
            default_model=settings.default_model,
            base_url=settings.openai_base_url,
        )
    return _llm_provider


def _log_timing(stage: str, elapsed_ms: float, *, extra: Optional[dict] = None) -> None:
    context: dict = dict(extra or {})
    context["stage"] = stage
    context["elapsed_ms"] = round(elapsed_ms, 2)
    logger.info("Timing", extra={"context": context})


def complete(
    messages: List[dict],
    *,
    model: str,
    temperature: float,
    max_tokens: int,
) -> Result[LLMResponse]:
    """Call the language model; failures come back as Result.failure."""
    max_tokens = min(max_tokens, settings.llm_max_tokens_cap)
    started = time.monotonic()
    try:
        response = get_llm_provider().generate(
            messages,
            model=model,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
        )
    except UpstreamError as exc:
        _log_timing("llm_ms", (time.monotonic() - started) * 1000, extra={"model": model, "ok": False})
        logger.error("Completion failed", extra={"context": {"model": model, "error": str(exc)}})
        return Result.failure(str(exc), "upstream_error")

    _log_timing("llm_ms", (time.monotonic() - started) * 1000, extra={"model": model, "ok": True})
    return Result.success(response)
