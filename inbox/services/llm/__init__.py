from inbox.services.llm.base import LLMProvider, LLMResponse
from inbox.services.llm.openai_provider import OpenAIProvider

__all__ = ["LLMProvider", "LLMResponse", "OpenAIProvider"]
