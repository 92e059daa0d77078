"""Tests for tripsight.ai.prompts and tripsight.ai.provider."""

from __future__ import annotations

import json
from unittest.mock import MagicMock

import pytest

from tripsight.ai.client import AIRateLimitError, StructuredAIResponse
from tripsight.ai.prompts import PROMPTS, build_prompt_variables, get_prompt
from tripsight.ai.provider import GeminiContentProvider
from tripsight.analysis.orchestrator import validate_section
from tripsight.core.models import SectionKind
from tripsight.errors import MalformedOutputError, ProviderError

SHAPES = [
    {"name": "Prado", "placeType": "museum", "visitDate": "2024-03-02"},
    {"name": "Retiro", "placeType": "park", "visitDate": "2023-05-14"},
]


def _structured(data, parse_error=None):
    return StructuredAIResponse(
        data=data,
        raw_text=json.dumps(data),
        model="gemini-2.0-flash",
        parse_success=parse_error is None,
        parse_error=parse_error,
    )


class TestPromptTemplates:
    """The six sub-task templates."""

    def test_one_template_per_section(self):
        assert set(PROMPTS) == set(SectionKind)
        for kind, template in PROMPTS.items():
            assert template.section is kind
            assert get_prompt(kind) is template

    @pytest.mark.parametrize("kind", list(SectionKind))
    def test_output_schema_validates(self, kind):
        """Each example output shape is accepted by its section model."""
        section = validate_section(kind, PROMPTS[kind].output_schema)
        assert section.kind == kind.value

    def test_render_fills_placeholders(self):
        """Rendering substitutes visits, count, date range and schema."""
        template = get_prompt(SectionKind.TEMPORAL)

        system, user = template.render(**build_prompt_variables(SHAPES))

        assert system == template.system_instruction
        assert '"Prado"' in user
        assert "2023-05-14 to 2024-03-02" in user
        assert "yearlyProgression" in user
        assert "$" not in user

    def test_render_missing_variables(self):
        with pytest.raises(ValueError, match="visit_count"):
            get_prompt(SectionKind.SPATIAL).render(visits="[]")

    def test_variables_without_dates(self):
        variables = build_prompt_variables([{"name": "Nowhere"}])

        assert variables["visit_count"] == 1
        assert variables["date_range"] == "unknown"


class TestGeminiContentProvider:
    """Adapter from the Gemini client to the provider protocol."""

    def test_returns_object(self):
        client = MagicMock()
        client.generate_json.return_value = _structured({"benchmarks": []})
        provider = GeminiContentProvider(client)

        result = provider.generate(get_prompt(SectionKind.COMPARATIVE), SHAPES)

        assert result == {"benchmarks": []}
        prompt = client.generate_json.call_args.kwargs["prompt"]
        assert "Retiro" in prompt

    def test_client_error_wrapped(self):
        """Client failures become ProviderError carrying the section."""
        client = MagicMock()
        client.generate_json.side_effect = AIRateLimitError()
        provider = GeminiContentProvider(client)

        with pytest.raises(ProviderError) as exc_info:
            provider.generate(get_prompt(SectionKind.SPATIAL), SHAPES)

        assert exc_info.value.section == "spatial"
        assert isinstance(exc_info.value.original_error, AIRateLimitError)
        assert exc_info.value.details["retriable"] is True

    def test_unparseable_output(self):
        client = MagicMock()
        client.generate_json.return_value = _structured({}, parse_error="JSON parse error: x")

        with pytest.raises(MalformedOutputError):
            GeminiContentProvider(client).generate(get_prompt(SectionKind.INSIGHTS), SHAPES)

    def test_array_output_rejected(self):
        """A JSON array is not a section object."""
        client = MagicMock()
        client.generate_json.return_value = _structured([1, 2, 3])

        with pytest.raises(MalformedOutputError, match="expected an object"):
            GeminiContentProvider(client).generate(get_prompt(SectionKind.INSIGHTS), SHAPES)
