"""
Centralized prompt file management with fallback templates.
"""
import logging
from pathlib import Path
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class PromptManager:
    """Manages prompt file loading with consistent fallback behavior."""

    def __init__(self, prompts_dir: Optional[Path] = None):
        from core.config import PROMPTS_DIR
        self.prompts_dir = prompts_dir or PROMPTS_DIR
        self.loaded_prompts: Dict[str, str] = {}

        # Fallback templates
        self.fallback_templates = {
            "tooltip_generation": self._get_tooltip_generation_fallback(),
        }

    def get_prompt(self, prompt_name: str) -> str:
        """
        Load prompt by name with fallback.

        Args:
            prompt_name: Name of prompt file (without .txt extension)

        Returns:
            Prompt template string
        """
        # Return cached if already loaded
        if prompt_name in self.loaded_prompts:
            return self.loaded_prompts[prompt_name]

        # Try to load from file
        prompt_file = self.prompts_dir / f"{prompt_name}.txt"

        if prompt_file.exists():
            try:
                with open(prompt_file, "r") as f:
                    template = f.read()

                # Validate not empty
                if not template.strip():
                    raise ValueError(f"Prompt file is empty: {prompt_file}")

                self.loaded_prompts[prompt_name] = template
                return template

            except Exception as e:
                logger.warning(f"Failed to load prompt file {prompt_file}: {e}")
                # Fall through to fallback

        if prompt_name in self.fallback_templates:
            logger.info(f"Using fallback template for: {prompt_name}")
            template = self.fallback_templates[prompt_name]
            self.loaded_prompts[prompt_name] = template
            return template

        raise FileNotFoundError(
            f"Prompt file not found and no fallback available: {prompt_name}.txt. "
            f"Expected at: {prompt_file}"
        )

    def render(self, prompt_name: str, **variables: str) -> str:
        """Load a template and fill in its {placeholders}."""
        return self.get_prompt(prompt_name).format(**variables)

    def _get_tooltip_generation_fallback(self) -> str:
        """Fallback template for batched tooltip generation."""
        return """You are helping explain concepts in the context of learning this subject: ({subject}).

Module: {module_title}
{module_description}

For each concept, create a concise explanation formatted as one or two short paragraphs. Each tooltip should:

1. Start with an ### h3 header that serves as a title for the concept
2. Provide a clear, concise explanation of the concept in the context of this subject
3. Include why it's important or how it's used in practical applications

Format requirements:
- Keep explanations to one or two short paragraphs
- Use **bold** for important terms or phrases

IMPORTANT: Your response MUST be a valid JSON object with the following structure:
{{
  "tooltips": {{
    "concept1": "### Concept Title\\n\\nMarkdown formatted explanation...",
    "concept2": "### Another Title\\n\\nMarkdown formatted explanation..."
  }}
}}

Use each concept exactly as written below as its key. Do not include any text outside of this JSON structure.

All concepts must be covered.

Concepts:
{concept_list}"""


# Global prompt manager instance
prompt_manager = PromptManager()
