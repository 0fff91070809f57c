"""
Configuration validation for the Glossa tooltip backend.
Validates batch settings, prompt files, Ollama, database and directories on startup.
"""
import sqlite3
import requests
from typing import List, Dict, Any


class ConfigurationError(Exception):
    """Raised when configuration is invalid."""
    pass


class ConfigValidator:
    """Validates system configuration before the scheduler runs."""

    def __init__(self):
        self.errors: List[str] = []
        self.warnings: List[str] = []

    def validate_all(self) -> Dict[str, Any]:
        """
        Run all validation checks.

        Returns:
            {
                "valid": bool,
                "errors": List[str],
                "warnings": List[str]
            }
        """
        self.errors = []
        self.warnings = []

        self._validate_batch_settings()
        self._validate_prompt_files()
        available_models = self._validate_ollama_connection()
        if available_models is not None:
            self._validate_ollama_models(available_models)
        self._validate_database()
        self._validate_directories()

        return {
            "valid": len(self.errors) == 0,
            "errors": self.errors,
            "warnings": self.warnings
        }

    def _validate_batch_settings(self):
        """Validate batch sizing, retry and concurrency ranges."""
        from core.config import (
            MIN_BATCH_SIZE,
            MAX_BATCH_SIZE,
            DEFAULT_BATCH_SIZE,
            FIRST_BATCH_SIZE,
            EXPLORATION_BATCH_SIZES,
            MIN_SAMPLES_PER_SIZE,
            MIN_EXPLORED_SIZES,
            MAX_RETRIES,
            CONCURRENCY_LIMIT,
            LAUNCH_DELAY_MS,
            TOOLTIP_TEMPERATURE,
        )

        if MIN_BATCH_SIZE < 1:
            self.errors.append(f"TOOLTIP_MIN_BATCH_SIZE ({MIN_BATCH_SIZE}) must be >= 1")

        if not (MIN_BATCH_SIZE <= DEFAULT_BATCH_SIZE <= MAX_BATCH_SIZE):
            self.errors.append(
                f"Batch sizes must satisfy MIN ({MIN_BATCH_SIZE}) <= DEFAULT ({DEFAULT_BATCH_SIZE}) "
                f"<= MAX ({MAX_BATCH_SIZE})"
            )

        if FIRST_BATCH_SIZE < 1:
            self.errors.append(f"TOOLTIP_FIRST_BATCH_SIZE ({FIRST_BATCH_SIZE}) must be >= 1")

        if not EXPLORATION_BATCH_SIZES:
            self.errors.append("TOOLTIP_EXPLORATION_SIZES must list at least one size")
        elif any(size < 1 for size in EXPLORATION_BATCH_SIZES):
            self.errors.append(
                f"TOOLTIP_EXPLORATION_SIZES ({EXPLORATION_BATCH_SIZES}) must all be positive"
            )
        else:
            outside = [s for s in EXPLORATION_BATCH_SIZES if not MIN_BATCH_SIZE <= s <= MAX_BATCH_SIZE]
            if outside:
                self.warnings.append(
                    f"Exploration sizes {outside} fall outside [{MIN_BATCH_SIZE}, {MAX_BATCH_SIZE}] "
                    "and will be clamped"
                )
            if MIN_EXPLORED_SIZES > len(EXPLORATION_BATCH_SIZES):
                self.errors.append(
                    f"TOOLTIP_MIN_EXPLORED_SIZES ({MIN_EXPLORED_SIZES}) exceeds the number of "
                    f"exploration sizes ({len(EXPLORATION_BATCH_SIZES)}); exploration would never end"
                )

        if MIN_SAMPLES_PER_SIZE < 1:
            self.errors.append(f"TOOLTIP_MIN_SAMPLES ({MIN_SAMPLES_PER_SIZE}) must be >= 1")

        if MAX_RETRIES < 0:
            self.errors.append(f"TOOLTIP_MAX_RETRIES ({MAX_RETRIES}) must be >= 0")

        if CONCURRENCY_LIMIT < 1:
            self.errors.append(f"TOOLTIP_CONCURRENCY_LIMIT ({CONCURRENCY_LIMIT}) must be >= 1")

        if LAUNCH_DELAY_MS < 0:
            self.errors.append(f"TOOLTIP_LAUNCH_DELAY_MS ({LAUNCH_DELAY_MS}) must be >= 0")

        if not (0.0 <= TOOLTIP_TEMPERATURE <= 1.0):
            self.warnings.append(
                f"TOOLTIP_TEMPERATURE ({TOOLTIP_TEMPERATURE}) outside normal range [0.0, 1.0]"
            )

    def _validate_prompt_files(self):
        """Prompt files are optional; built-in fallbacks cover them."""
        from core.config import PROMPTS_DIR

        path = PROMPTS_DIR / "tooltip_generation.txt"
        if not path.exists():
            self.warnings.append(
                f"Prompt file not found at {path}. Using built-in tooltip_generation template."
            )
        elif path.stat().st_size == 0:
            self.warnings.append(f"Prompt file is empty: {path.name}")

    def _ollama_problem(self, message: str):
        from core.config import FAIL_ON_OLLAMA_UNAVAILABLE

        if FAIL_ON_OLLAMA_UNAVAILABLE:
            self.errors.append(message)
        else:
            self.warnings.append(message)

    def _validate_ollama_connection(self):
        """Check that Ollama is reachable; returns the pulled model names or None."""
        from core.config import OLLAMA_BASE_URL

        try:
            response = requests.get(f"{OLLAMA_BASE_URL}/api/tags", timeout=5)
            response.raise_for_status()
            return [model["name"] for model in response.json().get("models", [])]
        except requests.exceptions.ConnectionError:
            self._ollama_problem(
                f"Cannot connect to Ollama at {OLLAMA_BASE_URL}. "
                "Ensure Ollama is running: `ollama serve`"
            )
        except requests.exceptions.Timeout:
            self._ollama_problem(
                f"Ollama connection timeout at {OLLAMA_BASE_URL}. "
                "Check network or Ollama performance."
            )
        except Exception as e:
            self._ollama_problem(f"Ollama connection error: {e}")
        return None

    def _validate_ollama_models(self, available_models: List[str]):
        """Check that the tooltip model is pulled."""
        from core.config import TOOLTIP_MODEL

        if TOOLTIP_MODEL not in available_models:
            self._ollama_problem(
                f"Tooltip model not found: {TOOLTIP_MODEL}. "
                f"Pull it with: `ollama pull {TOOLTIP_MODEL}`"
            )

    def _validate_database(self):
        """Check that the key-value store is reachable."""
        from core.config import DB_PATH

        if not DB_PATH.exists():
            self.warnings.append(
                f"Database file not found at {DB_PATH}. "
                "Will be created on first run."
            )
            return

        try:
            from core.database import db

            with db.get_connection() as conn:
                row = conn.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' AND name='kv_store'"
                ).fetchone()
            if not row:
                self.errors.append(
                    "Required database table missing: kv_store. Run schema initialization."
                )
        except sqlite3.Error as e:
            self.errors.append(f"Database connection error: {e}")

    def _validate_directories(self):
        """Check that required directories exist."""
        from core.config import DATA_DIR, DB_PATH

        directories = {
            "Data directory": DATA_DIR,
            "Database directory": DB_PATH.parent,
        }

        for name, path in directories.items():
            if not path.exists():
                self.warnings.append(
                    f"{name} not found at {path}. Will be created automatically."
                )


# Global validator instance
config_validator = ConfigValidator()
