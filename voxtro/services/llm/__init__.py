from voxtro.services.llm.base import LLMProvider, LLMResponse
from voxtro.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
