import logging
import os

from dotenv import load_dotenv

load_dotenv()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
)

logger = logging.getLogger("viberr_backend")

# --- Configuration ---
DATABASE_URL        = os.getenv("DATABASE_URL", "sqlite:///viberr.db")
DATA_DIR            = os.getenv("DATA_DIR", ".data")

CHAT_MODEL          = os.getenv("CHAT_MODEL", "claude-sonnet-4-20250514")
STRUCTURED_MODEL    = os.getenv("STRUCTURED_MODEL", "claude-sonnet-4-20250514")

LLM_TIMEOUT         = float(os.getenv("LLM_TIMEOUT")) if os.getenv("LLM_TIMEOUT") else None

# Credentials are resolved per request, never cached at import time.
PROVIDER_CREDENTIAL_ENV = {
    "anthropic": "ANTHROPIC_API_KEY",
    "openai": "OPENAI_API_KEY",
}


def get_env_credential(name: str) -> str | None:
    value = os.environ.get(name)
    if value is None:
        return None
    value = value.strip()
    return value or None


def submissions_dir() -> str:
    return os.path.join(DATA_DIR, "submissions")


def uploads_dir() -> str:
    return os.path.join(DATA_DIR, "uploads")
