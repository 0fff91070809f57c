"""
Configuration management for the Glossa tooltip backend.
Loads configuration from environment variables and .env file.
"""
import os
from pathlib import Path
from typing import List
from dotenv import load_dotenv

# Load environment variables from .env file
# Look for .env file in the backend directory or project root
BACKEND_DIR = Path(__file__).parent.parent
PROJECT_ROOT = BACKEND_DIR.parent
ENV_FILE = PROJECT_ROOT / ".env"

# Load .env file if it exists
if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
else:
    # Also try loading from backend directory
    backend_env = BACKEND_DIR / ".env"
    if backend_env.exists():
        load_dotenv(backend_env)


def _int_list(raw: str) -> List[int]:
    """Parse a comma-separated list of integers ("4,8,12,16")."""
    return [int(part.strip()) for part in raw.split(",") if part.strip()]


# Base paths
BASE_DIR = PROJECT_ROOT
DATA_DIR = Path(os.getenv("GLOSSA_DATA_DIR", str(BASE_DIR / "data")))
PROMPTS_DIR = BACKEND_DIR / "prompts"
DB_PATH = Path(os.getenv("GLOSSA_DB_PATH", str(DATA_DIR / "glossa.db")))

# Ensure directories exist
DATA_DIR.mkdir(parents=True, exist_ok=True)

# Logging
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Ollama configuration
OLLAMA_BASE_URL = os.getenv("OLLAMA_BASE_URL", "http://localhost:11434")
OLLAMA_MIXTRAL_MODEL = os.getenv("OLLAMA_MIXTRAL_MODEL", "mixtral:latest")
OLLAMA_TIMEOUT_SEC = float(os.getenv("OLLAMA_TIMEOUT_SEC", "120"))

# Tooltip generation (LLM) settings
TOOLTIP_MODEL = os.getenv("TOOLTIP_MODEL", OLLAMA_MIXTRAL_MODEL)
TOOLTIP_TEMPERATURE = float(os.getenv("TOOLTIP_TEMPERATURE", "0.3"))
TOOLTIP_MAX_TOKENS = int(os.getenv("TOOLTIP_MAX_TOKENS", "1024"))

# Batch sizing
MIN_BATCH_SIZE = int(os.getenv("TOOLTIP_MIN_BATCH_SIZE", "3"))
MAX_BATCH_SIZE = int(os.getenv("TOOLTIP_MAX_BATCH_SIZE", "20"))
DEFAULT_BATCH_SIZE = int(os.getenv("TOOLTIP_DEFAULT_BATCH_SIZE", "8"))
FIRST_BATCH_SIZE = int(os.getenv("TOOLTIP_FIRST_BATCH_SIZE", "4"))  # sized for interactivity

# Batch-size learning (explore / exploit)
EXPLORATION_BATCH_SIZES = _int_list(os.getenv("TOOLTIP_EXPLORATION_SIZES", "4,8,12,16"))
MIN_SAMPLES_PER_SIZE = int(os.getenv("TOOLTIP_MIN_SAMPLES", "3"))
MIN_EXPLORED_SIZES = int(os.getenv("TOOLTIP_MIN_EXPLORED_SIZES", "3"))

# Retry and concurrency
MAX_RETRIES = int(os.getenv("TOOLTIP_MAX_RETRIES", "2"))
CONCURRENCY_LIMIT = int(os.getenv("TOOLTIP_CONCURRENCY_LIMIT", "3"))
LAUNCH_DELAY_MS = int(os.getenv("TOOLTIP_LAUNCH_DELAY_MS", "200"))

# Persistent store keys (one JSON document each)
TOOLTIP_CACHE_KEY = os.getenv("TOOLTIP_CACHE_KEY", "tooltip-cache")
TOOLTIP_METRICS_KEY = os.getenv("TOOLTIP_METRICS_KEY", "tooltip-batch-metrics")

# API configuration
API_V1_PREFIX = "/api/v1"
# CORS origins can be comma-separated list in env var
CORS_ORIGINS_STR = os.getenv("CORS_ORIGINS", "http://localhost:3000,http://localhost:3001")
CORS_ORIGINS = [origin.strip() for origin in CORS_ORIGINS_STR.split(",")]

# Validation
FAIL_ON_OLLAMA_UNAVAILABLE = os.getenv("FAIL_ON_OLLAMA_UNAVAILABLE", "false").lower() == "true"
