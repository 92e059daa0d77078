"""Gemini client used by the analysis sub-tasks.

Only this module imports google-genai. Everything above it sees
``AIClient`` and the ``AIClientError`` family, so swapping SDK versions
never reaches the orchestrator.

What the client adds on top of the SDK:
- typed, retriable-or-not errors mapped from HTTP codes and transport failures
- exponential backoff with jitter for the retriable ones
- JSON mode with a lenient parser for models that still wrap output in prose
- a per-request timeout from ``ai.timeout_seconds``

Prompts contain a user's visit history and responses describe it, so
neither is ever logged. Only sizes, token counts and timings are.

Example:
    >>> client = get_client()
    >>> reply = client.generate_json("Analyze these visits ...")
    >>> reply.data["temporalPatterns"]
"""

from __future__ import annotations

import json
import logging
import random
import re
import time
from typing import Any, Callable, Literal

from google import genai
from google.genai import errors as genai_errors
from google.genai import types as genai_types
from pydantic import BaseModel, Field

from tripsight.config import APIKeyNotFoundError, AppConfig, get_api_key, get_config


class RedactingFilter(logging.Filter):
    """Scrub credentials from log messages and their arguments.

    ``api_key=...``, ``token: ...`` and bearer headers keep their label;
    bare Gemini keys (``AIza...``) are replaced entirely.
    """

    LABELLED = re.compile(
        r'((?:api_key|key|token)\s*[=:]\s*|bearer\s+)["\']?[A-Za-z0-9_\-]{20,}["\']?',
        re.IGNORECASE,
    )
    GEMINI_KEY = re.compile(r"\bAIza[A-Za-z0-9_\-]{30,}\b")

    def filter(self, record: logging.LogRecord) -> bool:
        if isinstance(record.msg, str):
            record.msg = self.scrub(record.msg)
        if record.args:
            record.args = tuple(self.scrub(a) if isinstance(a, str) else a for a in record.args)
        return True

    def scrub(self, text: str) -> str:
        text = self.LABELLED.sub(r"\1[REDACTED]", text)
        return self.GEMINI_KEY.sub("[REDACTED]", text)


logger = logging.getLogger(__name__)
logger.addFilter(RedactingFilter())


# =============================================================================
# Errors
# =============================================================================


class AIClientError(Exception):
    """Base class for Gemini failures.

    Subclasses set ``default_message`` and ``retriable``; the retry loop
    only looks at ``retriable``. ``details`` may hold request data and is
    not meant for logs.
    """

    default_message = "Gemini request failed"
    retriable = False

    def __init__(
        self,
        message: str | None = None,
        retriable: bool | None = None,
        details: dict[str, Any] | None = None,
        original_error: Exception | None = None,
    ) -> None:
        self.message = message or self.default_message
        super().__init__(self.message)
        if retriable is not None:
            self.retriable = retriable
        self.details = details or {}
        self.original_error = original_error

    def __str__(self) -> str:
        return self.message


UnavailableReason = Literal["disabled", "no_api_key", "offline", "service_down"]


class AIUnavailableError(AIClientError):
    """Gemini cannot be used at all right now."""

    REASON_MESSAGES: dict[str, str] = {
        "disabled": "AI is disabled (ai.mode = disabled)",
        "no_api_key": "No Gemini API key is configured",
        "offline": "Gemini is unreachable from this machine",
        "service_down": "Gemini is down",
    }

    def __init__(self, reason: UnavailableReason, message: str | None = None) -> None:
        self.reason = reason
        super().__init__(message or self.REASON_MESSAGES.get(reason, f"Gemini unavailable ({reason})"))


class APIKeyMissingError(AIUnavailableError):
    HINT = "Export GEMINI_API_KEY or store one with 'tripsight config set-key'."

    def __init__(self, message: str | None = None) -> None:
        super().__init__("no_api_key", message or f"No Gemini API key found. {self.HINT}")


class AIAuthenticationError(AIClientError):
    default_message = "Gemini rejected the API key"


class AIRateLimitError(AIClientError):
    """Too many requests; ``retry_after_seconds`` is honoured when known."""

    default_message = "Gemini rate limit hit"
    retriable = True

    def __init__(self, message: str | None = None, retry_after_seconds: float | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.retry_after_seconds = retry_after_seconds


class AIQuotaExceededError(AIClientError):
    """The key's daily or billing quota is spent. Waiting will not help."""

    default_message = "Gemini quota for this key is exhausted"

    def __init__(self, message: str | None = None, quota_type: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.quota_type = quota_type


class AIServerError(AIClientError):
    default_message = "Gemini returned a server error"
    retriable = True

    def __init__(self, message: str | None = None, status_code: int | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.status_code = status_code


class AIBadRequestError(AIClientError):
    default_message = "Gemini rejected the request as malformed"


class AITimeoutError(AIClientError):
    retriable = True

    def __init__(self, timeout_seconds: float, message: str | None = None, **kwargs: Any) -> None:
        super().__init__(message or f"No reply from Gemini within {timeout_seconds}s", **kwargs)
        self.timeout_seconds = timeout_seconds


class ModelNotAvailableError(AIClientError):
    def __init__(self, model_name: str, message: str | None = None, **kwargs: Any) -> None:
        super().__init__(
            message or f"Model '{model_name}' is not available to this key (see ai.model_name)",
            **kwargs,
        )
        self.model_name = model_name


class ContentBlockedError(AIClientError):
    default_message = "Gemini withheld the reply (safety filters)"

    def __init__(self, message: str | None = None, blocked_reason: str | None = None, **kwargs: Any) -> None:
        super().__init__(message, **kwargs)
        self.blocked_reason = blocked_reason


# =============================================================================
# Responses
# =============================================================================


class AIResponse(BaseModel):
    """One completed generate_content call."""

    text: str = Field(..., description="Reply text")
    model: str = Field(..., description="Model that produced the reply")
    prompt_tokens: int | None = None
    completion_tokens: int | None = None
    total_tokens: int | None = None
    finish_reason: str | None = None
    latency_ms: float | None = None

    def is_truncated(self) -> bool:
        return self.finish_reason in {"MAX_TOKENS", "RECITATION"}


class StructuredAIResponse(BaseModel):
    """A reply requested as JSON.

    When the text could not be parsed, ``parse_success`` is False,
    ``parse_error`` says why and ``data`` is empty.
    """

    data: dict[str, Any] | list[Any] = Field(default_factory=dict)
    raw_text: str
    model: str
    tokens_used: int | None = None
    latency_ms: float | None = None
    parse_success: bool = True
    parse_error: str | None = None


_FENCED = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")
_EMBEDDED = re.compile(r"(\{[\s\S]*\}|\[[\s\S]*\])")


def parse_json_text(text: str) -> tuple[dict[str, Any] | list[Any], str | None]:
    """Parse a model reply as JSON, tolerating fences and surrounding prose.

    Returns ``(data, None)`` on success and ``({}, error)`` otherwise.
    """
    text = text.strip()
    try:
        return json.loads(text), None
    except json.JSONDecodeError as e:
        reason = e.msg

    for pattern, where in ((_FENCED, "code block"), (_EMBEDDED, "extracted content")):
        match = pattern.search(text)
        if match is None:
            continue
        try:
            return json.loads(match.group(1)), None
        except json.JSONDecodeError:
            return {}, f"JSON parse error in {where}: {reason}"

    return {}, f"JSON parse error: {reason}"


JSON_ONLY_INSTRUCTION = (
    "Reply with valid JSON only: a single JSON value, no markdown fences "
    "and no commentary before or after it."
)


# =============================================================================
# Client
# =============================================================================


class AIClient:
    """Thin, retrying wrapper over ``genai.Client``.

    The SDK client is built on first request; constructing an AIClient
    with AI disabled or without a key succeeds and only fails on use.
    """

    MAX_RETRY_DELAY: float = 30.0

    def __init__(self, config: AppConfig | None = None, api_key: str | None = None) -> None:
        self._config = config or get_config()
        self._client: Any = None
        self._api_key: str | None = api_key
        self._logger = logging.getLogger(f"{__name__}.AIClient")
        self._logger.addFilter(RedactingFilter())

        if not self._config.ai.is_enabled():
            self._logger.info("Gemini disabled by configuration")
        elif self._api_key is None:
            try:
                self._api_key = get_api_key().get_secret_value()
            except APIKeyNotFoundError:
                self._logger.warning("Gemini enabled but no API key found")

    @property
    def model_name(self) -> str:
        return self._config.ai.model_name

    def is_available(self) -> bool:
        return self._config.ai.is_enabled() and bool(self._api_key)

    def _ensure_available(self) -> None:
        if not self._config.ai.is_enabled():
            raise AIUnavailableError("disabled")
        if not self._api_key:
            raise APIKeyMissingError()

    def _sdk(self) -> Any:
        if self._client is None:
            self._client = genai.Client(
                api_key=self._api_key,
                http_options=genai_types.HttpOptions(timeout=int(self._config.ai.timeout_seconds * 1000)),
            )
            self._logger.debug(f"SDK client ready ({self.model_name})")
        return self._client

    def generate(
        self,
        prompt: str,
        system_instruction: str | None = None,
        model: str | None = None,
        **overrides: Any,
    ) -> AIResponse:
        """Send one prompt and return the reply.

        ``overrides`` are passed into ``GenerateContentConfig`` on top of the
        configured temperature and output-token limit.

        Raises:
            AIClientError: After mapping, once retries (if any) are used up.
        """
        self._ensure_available()
        model_name = model or self.model_name
        settings: dict[str, Any] = {
            "temperature": self._config.ai.temperature,
            "max_output_tokens": self._config.ai.max_output_tokens,
        }
        if system_instruction:
            settings["system_instruction"] = system_instruction
        settings.update(overrides)

        started = time.monotonic()
        try:
            raw = self._with_retries(
                self._sdk().models.generate_content,
                model=model_name,
                contents=prompt,
                config=genai_types.GenerateContentConfig(**settings),
            )
        except AIClientError as e:
            self._logger.error(f"Gemini call failed for {len(prompt)}-char prompt: {type(e).__name__}")
            raise

        response = self._to_response(raw, model_name, (time.monotonic() - started) * 1000)
        self._logger.info(
            f"Gemini replied: {response.total_tokens or '?'} tokens, {response.latency_ms:.0f}ms"
        )
        return response

    @staticmethod
    def _to_response(raw: Any, model_name: str, latency_ms: float) -> AIResponse:
        text = raw.text or ""
        if not text:
            feedback = getattr(raw, "prompt_feedback", None)
            block_reason = getattr(feedback, "block_reason", None)
            if block_reason:
                raise ContentBlockedError(blocked_reason=str(block_reason))

        finish_reason = None
        if raw.candidates:
            reason = getattr(raw.candidates[0], "finish_reason", None)
            if reason is not None:
                finish_reason = getattr(reason, "name", str(reason))

        usage = getattr(raw, "usage_metadata", None)
        return AIResponse(
            text=text,
            model=model_name,
            prompt_tokens=getattr(usage, "prompt_token_count", None),
            completion_tokens=getattr(usage, "candidates_token_count", None),
            total_tokens=getattr(usage, "total_token_count", None),
            finish_reason=finish_reason,
            latency_ms=latency_ms,
        )

    def generate_json(
        self,
        prompt: str,
        system_instruction: str | None = None,
        schema_hint: str | None = None,
        **overrides: Any,
    ) -> StructuredAIResponse:
        """Generate in JSON mode and parse the reply.

        A reply that is not JSON does not raise; check ``parse_success``.
        """
        instruction = JSON_ONLY_INSTRUCTION
        if system_instruction:
            instruction = f"{system_instruction}\n\n{JSON_ONLY_INSTRUCTION}"
        if schema_hint:
            prompt = f"{prompt}\n\nThe JSON must follow this schema:\n{schema_hint}"
        overrides.setdefault("response_mime_type", "application/json")

        response = self.generate(prompt, system_instruction=instruction, **overrides)
        data, parse_error = parse_json_text(response.text)
        if parse_error:
            self._logger.warning(f"Reply of {len(response.text)} chars is not JSON: {parse_error}")

        return StructuredAIResponse(
            data=data,
            raw_text=response.text,
            model=response.model,
            tokens_used=response.total_tokens,
            latency_ms=response.latency_ms,
            parse_success=parse_error is None,
            parse_error=parse_error,
        )

    # -------------------------------------------------------------------------
    # Retries and error mapping
    # -------------------------------------------------------------------------

    def _backoff(self, attempt: int, error: AIClientError) -> float:
        base = self._config.ai.retry_base_delay
        delay = min(base * 2**attempt, self.MAX_RETRY_DELAY) + random.uniform(0, base)
        if isinstance(error, AIRateLimitError) and error.retry_after_seconds:
            delay = max(delay, error.retry_after_seconds)
        return delay

    def _with_retries(self, func: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Call ``func``, sleeping and retrying while the mapped error is retriable."""
        retries = self._config.ai.max_retries
        attempt = 0
        while True:
            try:
                return func(*args, **kwargs)
            except Exception as e:
                error = self._map_exception(e)
                if not error.retriable:
                    raise error
                if attempt >= retries:
                    self._logger.error(f"Giving up after {retries} retries: {type(error).__name__}")
                    raise error
                delay = self._backoff(attempt, error)
                attempt += 1
                self._logger.warning(
                    f"{type(error).__name__}; retry {attempt}/{retries} in {delay:.1f}s"
                )
                time.sleep(delay)

    def _from_status(self, code: int, error: Exception, text: str) -> AIClientError | None:
        if code == 400:
            return AIBadRequestError(str(error), original_error=error)
        if code in (401, 403):
            return AIAuthenticationError(original_error=error)
        if code == 404:
            return ModelNotAvailableError(self.model_name, original_error=error)
        if code == 408:
            return AITimeoutError(self._config.ai.timeout_seconds, original_error=error)
        if code == 429:
            if "quota" in text and ("day" in text or "billing" in text):
                return AIQuotaExceededError(original_error=error)
            return AIRateLimitError(original_error=error)
        if code >= 500:
            return AIServerError(status_code=code, original_error=error)
        return None

    def _map_exception(self, error: Exception) -> AIClientError:
        """Translate an SDK or transport exception into an AIClientError."""
        if isinstance(error, AIClientError):
            return error

        text = str(error).lower()
        code = getattr(error, "code", None) if isinstance(error, genai_errors.APIError) else None
        if code is not None:
            mapped = self._from_status(code, error, text)
            if mapped is not None:
                return mapped

        timeout = self._config.ai.timeout_seconds
        if "timeout" in type(error).__name__.lower():
            return AITimeoutError(timeout, original_error=error)

        # Message heuristics for errors without a status code, in priority order
        hints: list[tuple[tuple[str, ...], Callable[[], AIClientError]]] = [
            (("blocked", "safety"), lambda: ContentBlockedError(original_error=error)),
            (("401", "403", "unauthorized"), lambda: AIAuthenticationError(original_error=error)),
            (("429", "rate limit"), lambda: AIRateLimitError(original_error=error)),
            (("quota", "billing"), lambda: AIQuotaExceededError(original_error=error)),
            (("timeout", "timed out", "deadline"), lambda: AITimeoutError(timeout, original_error=error)),
            (("500", "502", "503"), lambda: AIServerError(original_error=error)),
            (("connection", "network"), lambda: AIServerError("Gemini is unreachable", original_error=error)),
        ]
        for needles, build in hints:
            if any(needle in text for needle in needles):
                return build()

        return AIClientError(str(error), retriable=False, original_error=error)


def get_client(config: AppConfig | None = None) -> AIClient:
    """Build an AIClient, failing fast if Gemini cannot be used.

    Raises:
        AIUnavailableError: AI is disabled or no key is configured.
    """
    client = AIClient(config=config)
    client._ensure_available()
    return client
