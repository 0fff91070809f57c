"""
Generation service adapter: one Ollama call explains a batch of terms.
"""
import json
import logging
import re
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel, ValidationError

from core.errors import (
    GenerationTimeoutError,
    RateLimitError,
    ResponseParseError,
    ServiceUnavailableError,
)
from models.tooltip_models import SubjectContext

logger = logging.getLogger(__name__)

PROVIDER = "ollama"


class TooltipPayload(BaseModel):
    """Shape the model is asked to answer with."""
    tooltips: Dict[str, str]


def extract_json(text: str) -> str:
    """Return the outermost {...} span of a model response."""
    match = re.search(r"\{.*\}", text, re.DOTALL)
    if not match:
        raise ValueError("no JSON object found in response")
    return match.group(0)


def _retry_after(response: httpx.Response) -> Optional[float]:
    raw = response.headers.get("retry-after")
    try:
        return float(raw) if raw is not None else None
    except ValueError:
        return None


class TooltipGenerator:
    """Turns a list of terms into explanations with a single model call."""

    def __init__(self, client=None, prompt_manager=None):
        if client is None:
            from core.ollama_client import ollama
            client = ollama
        if prompt_manager is None:
            from core.prompt_manager import prompt_manager as default_prompt_manager
            prompt_manager = default_prompt_manager
        self.client = client
        self.prompt_manager = prompt_manager

    def build_prompt(self, terms: List[str], context: SubjectContext) -> str:
        return self.prompt_manager.render(
            "tooltip_generation",
            subject=context.subject or "general knowledge",
            module_title=context.module_title or "(untitled)",
            module_description=context.module_description,
            concept_list="\n".join(terms),
        )

    def generate(self, terms: List[str], context: Optional[SubjectContext] = None) -> Dict[str, str]:
        """
        Explain terms in one request.

        Keys the model returns in a different case are mapped back to the
        requested spelling; terms the model skipped are simply absent.

        Raises:
            RateLimitError: HTTP 429
            GenerationTimeoutError: request exceeded the client timeout
            ServiceUnavailableError: connection failure or other HTTP error
            ResponseParseError: response was not a valid tooltip payload
        """
        if not terms:
            return {}

        prompt = self.build_prompt(terms, context or SubjectContext())

        try:
            raw = self.client.call_tooltip_model(prompt)
        except httpx.TimeoutException as e:
            raise GenerationTimeoutError(PROVIDER, getattr(self.client, "timeout", 0), e)
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise RateLimitError(PROVIDER, _retry_after(e.response))
            raise ServiceUnavailableError(PROVIDER, f"HTTP {e.response.status_code}", e)
        except httpx.HTTPError as e:
            raise ServiceUnavailableError(PROVIDER, str(e), e)

        try:
            payload = TooltipPayload(**json.loads(extract_json(raw)))
        except (ValueError, TypeError, ValidationError) as e:
            logger.debug(f"Unparseable tooltip response: {raw[:200]!r}")
            raise ResponseParseError(PROVIDER, str(e), e)

        by_lower = {term.lower(): term for term in terms}
        explanations: Dict[str, str] = {}
        for key, text in payload.tooltips.items():
            term = key if key in terms else by_lower.get(key.strip().lower())
            if term and text.strip() and term not in explanations:
                explanations[term] = text.strip()

        logger.debug(f"Generated {len(explanations)}/{len(terms)} tooltips")
        return explanations
