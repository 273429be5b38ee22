"""
Configuration loader.
Reads settings from .env file and makes them available to the rest of the app.
"""

import logging
import os
from dotenv import load_dotenv

load_dotenv()

# LLM settings (any OpenAI-compatible server works via OPENAI_BASE_URL)
OPENAI_API_KEY = os.getenv("OPENAI_API_KEY")
OPENAI_BASE_URL = os.getenv("OPENAI_BASE_URL") or None
LLM_MODEL = os.getenv("LLM_MODEL", "gpt-4o-mini")
LLM_TEMPERATURE = float(os.getenv("LLM_TEMPERATURE", "0.2"))
STRUCTURED_RETRIES = int(os.getenv("STRUCTURED_RETRIES", "3"))

# Bounded network calls
FETCH_TIMEOUT_SECONDS = float(os.getenv("FETCH_TIMEOUT_SECONDS", "90"))
LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "120"))

# One SQLite file shared by all apps
DATABASE_PATH = os.getenv(
    "DATABASE_PATH",
    os.path.join(os.path.dirname(os.path.dirname(__file__)), "data", "review_radar.db"),
)

# Apps, analyses and comparisons older than this are refreshed
APP_DATA_TTL_DAYS = int(os.getenv("APP_DATA_TTL_DAYS", "30"))

# Review sampling
REVIEW_COUNT = int(os.getenv("REVIEW_COUNT", "100"))
SAMPLE_SIZE = int(os.getenv("SAMPLE_SIZE", "50"))
ANALYSIS_DEPTH = os.getenv("ANALYSIS_DEPTH", "detailed")

# Store locale
STORE_COUNTRY = os.getenv("STORE_COUNTRY", "us")
STORE_LANGUAGE = os.getenv("STORE_LANGUAGE", "en")
APP_STORE_PAGE_DELAY = float(os.getenv("APP_STORE_PAGE_DELAY", "0.5"))

# Stream console
API_URL = os.getenv("API_URL", "http://localhost:8000")
DASHBOARD_USER_ID = os.getenv("DASHBOARD_USER_ID", "local-user")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def configure_logging(level: str = LOG_LEVEL) -> None:
    """Install one stream handler for the whole service. Safe to call repeatedly."""
    logging.basicConfig(
        level=level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
