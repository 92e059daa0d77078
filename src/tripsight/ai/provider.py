"""Generative content provider used by the analysis sub-tasks.

The orchestrator depends only on the ContentProvider protocol:
``generate(template, visit_shapes) -> dict``. GeminiContentProvider is the
production implementation; tests substitute scripted providers.

Any provider failure surfaces as ProviderError so the orchestrator handles
a single taxonomy; the Gemini client's typed error is kept as
``original_error``.
"""

from __future__ import annotations

import logging
from typing import Any, Protocol

from tripsight.ai.client import AIClient, AIClientError
from tripsight.ai.prompts import PromptTemplate, build_prompt_variables
from tripsight.errors import MalformedOutputError, ProviderError

logger = logging.getLogger(__name__)


class ContentProvider(Protocol):
    """Black-box structured content generator."""

    def generate(self, template: PromptTemplate, visit_shapes: list[dict[str, Any]]) -> dict[str, Any]:
        """Return the JSON object produced for ``template``.

        Raises:
            ProviderError: On any failure.
        """
        ...


class GeminiContentProvider:
    """ContentProvider backed by the Gemini client."""

    def __init__(self, client: AIClient) -> None:
        self._client = client
        self._logger = logging.getLogger(f"{__name__}.GeminiContentProvider")

    def generate(self, template: PromptTemplate, visit_shapes: list[dict[str, Any]]) -> dict[str, Any]:
        system, user = template.render(**build_prompt_variables(visit_shapes))
        section = template.section.value

        try:
            response = self._client.generate_json(
                prompt=user,
                system_instruction=system,
            )
        except AIClientError as e:
            raise ProviderError(
                f"Gemini request for {section} analysis failed: {e.message}",
                section=section,
                original_error=e,
                details={"retriable": e.retriable},
            ) from e

        if not response.parse_success:
            raise MalformedOutputError(
                f"Gemini returned unparseable {section} analysis: {response.parse_error}",
                section=section,
            )
        if not isinstance(response.data, dict):
            raise MalformedOutputError(
                f"Gemini returned a {type(response.data).__name__} for {section} analysis, "
                "expected an object",
                section=section,
            )

        self._logger.debug(
            f"{template.id}: {response.tokens_used or '?'} tokens in {response.latency_ms or 0:.0f}ms"
        )
        return response.data
