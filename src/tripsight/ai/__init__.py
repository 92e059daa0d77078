"""Gemini access for the analysis sub-tasks.

client.py wraps google-genai; provider.py turns it into the
ContentProvider the orchestrator fans sub-tasks out to.
"""

from tripsight.ai.client import (
    AIAuthenticationError,
    AIBadRequestError,
    AIClient,
    AIClientError,
    AIQuotaExceededError,
    AIRateLimitError,
    AIResponse,
    AIServerError,
    AITimeoutError,
    AIUnavailableError,
    APIKeyMissingError,
    ContentBlockedError,
    ModelNotAvailableError,
    StructuredAIResponse,
    get_client,
)
from tripsight.ai.prompts import PROMPTS, PromptTemplate, get_prompt
from tripsight.ai.provider import ContentProvider, GeminiContentProvider

__all__ = [
    "AIClient",
    "get_client",
    "AIResponse",
    "StructuredAIResponse",
    "AIClientError",
    "AIUnavailableError",
    "APIKeyMissingError",
    "AIAuthenticationError",
    "AIRateLimitError",
    "AIQuotaExceededError",
    "AIServerError",
    "AIBadRequestError",
    "AITimeoutError",
    "ModelNotAvailableError",
    "ContentBlockedError",
    "PromptTemplate",
    "PROMPTS",
    "get_prompt",
    "ContentProvider",
    "GeminiContentProvider",
]
