from .llm_adapter import LanguageModelGateway, LLMResult, LLMStatus, normalize_llm_response
from .openai_client import OpenAIChatClient, OpenAIEmbeddingClient
from .serpapi_client import SerpApiClient

__all__ = [
    "LLMResult",
    "LLMStatus",
    "LanguageModelGateway",
    "OpenAIChatClient",
    "OpenAIEmbeddingClient",
    "SerpApiClient",
    "normalize_llm_response",
]
