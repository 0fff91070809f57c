"""
Ollama API client wrapper.
"""
import httpx
from typing import Any, Dict, List, Optional
from core.config import (
    OLLAMA_BASE_URL,
    OLLAMA_TIMEOUT_SEC,
    TOOLTIP_MODEL,
    TOOLTIP_TEMPERATURE,
    TOOLTIP_MAX_TOKENS,
)


class OllamaClient:
    """Client for interacting with Ollama models."""

    def __init__(self, base_url: str = OLLAMA_BASE_URL, timeout: float = OLLAMA_TIMEOUT_SEC):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.client = httpx.Client(timeout=timeout)

    def _call_model(
        self,
        model: str,
        prompt: str,
        temperature: float = TOOLTIP_TEMPERATURE,
        max_tokens: int = TOOLTIP_MAX_TOKENS,
        response_format: Optional[str] = None,
    ) -> str:
        """
        Generic method to call any Ollama model.

        Transport errors (httpx.TimeoutException, httpx.HTTPStatusError,
        httpx.TransportError) propagate unchanged so callers can classify them.
        """
        url = f"{self.base_url}/api/generate"
        payload: Dict[str, Any] = {
            "model": model,
            "prompt": prompt,
            "options": {
                "temperature": temperature,
                "num_predict": max_tokens,
            },
            "stream": False,
        }
        if response_format:
            payload["format"] = response_format

        response = self.client.post(url, json=payload)
        response.raise_for_status()
        result = response.json()
        return result.get("response", "")

    def call_tooltip_model(
        self,
        prompt: str,
        temperature: float = TOOLTIP_TEMPERATURE,
        max_tokens: int = TOOLTIP_MAX_TOKENS,
    ) -> str:
        """Call the tooltip model in JSON mode."""
        return self._call_model(
            TOOLTIP_MODEL,
            prompt,
            temperature,
            max_tokens,
            response_format="json",
        )

    def list_models(self) -> List[str]:
        """Names of the models pulled on the Ollama host."""
        response = self.client.get(f"{self.base_url}/api/tags")
        response.raise_for_status()
        return [model["name"] for model in response.json().get("models", [])]


# Global Ollama client instance
ollama = OllamaClient()
