"""
Configuration - Environment-driven settings for Microlearn
"""

import os
from dotenv import load_dotenv

load_dotenv()


def _get_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _get_list(name: str, default: str) -> list:
    value = os.getenv(name, default)
    return [item.strip() for item in value.split(",") if item.strip()]


# ===== MODEL CLIENT =====
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
LLM_MODEL_NAME = os.getenv("LLM_MODEL_NAME", "gpt-4o-mini")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.7"))
USE_STREAMING = _get_bool("USE_STREAMING", True)

# ===== CURRICULUM SHAPE =====
INITIAL_UNIT_COUNT = int(os.getenv("INITIAL_UNIT_COUNT", "5"))
MORE_UNITS_COUNT = int(os.getenv("MORE_UNITS_COUNT", "3"))
CARDS_PER_UNIT = int(os.getenv("CARDS_PER_UNIT", "3"))
MAX_RETRIES = int(os.getenv("MAX_RETRIES", "3"))
STRICT_PARSING = _get_bool("STRICT_PARSING", True)
PROMPT_STYLE = os.getenv("PROMPT_STYLE", "casual")  # "casual" or "formal"
ESTIMATED_TOTAL_CHUNKS = int(os.getenv("ESTIMATED_TOTAL_CHUNKS", "50"))

# ===== PERSISTENCE =====
DATA_DIR = os.getenv("DATA_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "data"))
STORAGE_JSON_PATH = os.getenv("STORAGE_JSON_PATH", os.path.join(DATA_DIR, "curricula.json"))
RECENT_SEARCHES_LIMIT = int(os.getenv("RECENT_SEARCHES_LIMIT", "10"))

# ===== MODERATION =====
BLOCKED_KEYWORDS = _get_list(
    "BLOCKED_KEYWORDS",
    "porn,pornography,nude,nsfw,suicide,self-harm,bomb making,terrorism,genocide",
)

# ===== SERVERS =====
API_HOST = os.getenv("API_HOST", "127.0.0.1")
API_PORT = int(os.getenv("API_PORT", "5001"))
WEBSOCKET_HOST = os.getenv("WEBSOCKET_HOST", "0.0.0.0")
WEBSOCKET_PORT = int(os.getenv("WEBSOCKET_PORT", "8765"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
