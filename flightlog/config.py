# config.py
import os
from dotenv import load_dotenv
load_dotenv()

from typing import Optional

import google.generativeai as genai

import logging
from .logging_utils import configure_logging

configure_logging()
logger = logging.getLogger("flightlog.config")

GEMINI_API_KEY = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
if not GEMINI_API_KEY:
    logger.warning("GEMINI_API_KEY missing - vision extraction will need --api-key")

MODEL = os.getenv("FLIGHTLOG_MODEL", "gemini-2.5-flash-lite")
MAX_TOKENS = int(os.getenv("FLIGHTLOG_MAX_TOKENS", "8192"))
TEMPERATURE = float(os.getenv("FLIGHTLOG_TEMPERATURE", "0.1"))
TIMEOUT = float(os.getenv("FLIGHTLOG_TIMEOUT", "120"))
RETRY_ATTEMPTS = int(os.getenv("FLIGHTLOG_RETRY_ATTEMPTS", "3"))

DEFAULT_CONCURRENCY = int(os.getenv("FLIGHTLOG_CONCURRENCY", "10"))
DEFAULT_DPI = int(os.getenv("FLIGHTLOG_DPI", "200"))

_configured_key: Optional[str] = None


def resolve_api_key(explicit: Optional[str] = None) -> Optional[str]:
    """CLI flag wins over the environment."""
    return explicit or GEMINI_API_KEY


def configure_gemini(api_key: str) -> None:
    global _configured_key
    if api_key == _configured_key:
        return
    genai.configure(api_key=api_key)
    _configured_key = api_key
    logger.info(f"Gemini configured: model={MODEL}, timeout={TIMEOUT}s")
