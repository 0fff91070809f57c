"""
Unit tests for the Ollama tooltip generator.
"""
import json
from unittest.mock import Mock

import httpx
import pytest

from core.errors import (
    GenerationTimeoutError,
    RateLimitError,
    ResponseParseError,
    ServiceUnavailableError,
)
from core.prompt_manager import PromptManager
from models.tooltip_models import SubjectContext
from services.tooltips.generator import TooltipGenerator, extract_json


@pytest.fixture
def prompts(tmp_path):
    """Prompt manager with no prompt files, so built-in templates are used."""
    return PromptManager(prompts_dir=tmp_path)


def make_generator(prompts, response=None, error=None):
    client = Mock()
    client.timeout = 30.0
    if error is not None:
        client.call_tooltip_model.side_effect = error
    else:
        client.call_tooltip_model.return_value = response
    return TooltipGenerator(client=client, prompt_manager=prompts), client


def http_error(status, headers=None):
    request = httpx.Request("POST", "http://localhost:11434/api/generate")
    response = httpx.Response(status, request=request, headers=headers or {})
    return httpx.HTTPStatusError(f"HTTP {status}", request=request, response=response)


class TestPrompt:
    """Test prompt rendering."""

    def test_prompt_lists_terms_and_context(self, prompts):
        generator, client = make_generator(prompts, response='{"tooltips": {}}')
        context = SubjectContext(subject="Physics", module_title="Optics", module_description="Light and lenses")

        generator.generate(["refraction", "focal length"], context)

        prompt = client.call_tooltip_model.call_args[0][0]
        assert "Physics" in prompt
        assert "Optics" in prompt
        assert "refraction\nfocal length" in prompt
        assert '"tooltips"' in prompt

    def test_prompt_file_overrides_fallback(self, tmp_path):
        (tmp_path / "tooltip_generation.txt").write_text("Explain for {subject}: {concept_list}")
        generator, client = make_generator(PromptManager(prompts_dir=tmp_path), response='{"tooltips": {}}')

        generator.generate(["atom"], SubjectContext(subject="Chemistry"))

        assert client.call_tooltip_model.call_args[0][0] == "Explain for Chemistry: atom"

    def test_no_terms_no_call(self, prompts):
        generator, client = make_generator(prompts)
        assert generator.generate([]) == {}
        client.call_tooltip_model.assert_not_called()


class TestParsing:
    """Test turning model output into an explanation map."""

    def test_valid_payload(self, prompts):
        body = json.dumps({"tooltips": {"atom": "### Atom\n\nSmallest unit.", "ion": "### Ion\n\nCharged."}})
        generator, _ = make_generator(prompts, response=body)

        assert generator.generate(["atom", "ion"]) == {
            "atom": "### Atom\n\nSmallest unit.",
            "ion": "### Ion\n\nCharged.",
        }

    def test_json_wrapped_in_prose(self, prompts):
        body = 'Sure! Here you go:\n{"tooltips": {"atom": "Smallest unit."}}\nHope this helps.'
        generator, _ = make_generator(prompts, response=body)
        assert generator.generate(["atom"]) == {"atom": "Smallest unit."}

    def test_keys_mapped_back_case_insensitively(self, prompts):
        body = json.dumps({"tooltips": {"dna": "Genetic material.", "RNA ": "Messenger."}})
        generator, _ = make_generator(prompts, response=body)
        assert generator.generate(["DNA", "RNA"]) == {"DNA": "Genetic material.", "RNA": "Messenger."}

    def test_skipped_terms_are_absent(self, prompts):
        body = json.dumps({"tooltips": {"atom": "Smallest unit.", "ion": "   "}})
        generator, _ = make_generator(prompts, response=body)
        assert generator.generate(["atom", "ion", "molecule"]) == {"atom": "Smallest unit."}

    @pytest.mark.parametrize("body", [
        "no json here",
        '{"tooltips": ["not", "a", "map"]}',
        '{"something_else": {}}',
        '{"tooltips": {"atom": "unterminated}',
    ])
    def test_unusable_response(self, prompts, body):
        generator, _ = make_generator(prompts, response=body)
        with pytest.raises(ResponseParseError):
            generator.generate(["atom"])

    def test_extract_json(self):
        assert extract_json('prefix {"a": {"b": 1}} suffix') == '{"a": {"b": 1}}'
        with pytest.raises(ValueError):
            extract_json("plain text")


class TestTransportErrors:
    """Test classification of HTTP failures."""

    def test_rate_limit(self, prompts):
        generator, _ = make_generator(prompts, error=http_error(429, {"retry-after": "3"}))

        with pytest.raises(RateLimitError) as excinfo:
            generator.generate(["atom"])

        assert excinfo.value.retry_after == 3.0
        assert excinfo.value.retryable is True

    def test_timeout(self, prompts):
        generator, _ = make_generator(prompts, error=httpx.ReadTimeout("timed out"))
        with pytest.raises(GenerationTimeoutError):
            generator.generate(["atom"])

    def test_server_error(self, prompts):
        generator, _ = make_generator(prompts, error=http_error(503))
        with pytest.raises(ServiceUnavailableError) as excinfo:
            generator.generate(["atom"])
        assert "503" in str(excinfo.value)

    def test_connection_refused(self, prompts):
        generator, _ = make_generator(prompts, error=httpx.ConnectError("connection refused"))
        with pytest.raises(ServiceUnavailableError):
            generator.generate(["atom"])
