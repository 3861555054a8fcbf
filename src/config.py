"""
Configuration module for the Virtual Try-On combine API
Contains logger setup and environment variables
"""

import os
import logging
from typing import List

from dotenv import load_dotenv

# Load environment variables
load_dotenv()


# -------------------------
# Logger Setup
# -------------------------
def setup_logger(name: str = __name__, log_file: str = "tryon.log") -> logging.Logger:
    """
    Set up and return a logger with both file and console handlers

    Args:
        name: Logger name (usually __name__)
        log_file: Path to log file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)

    # Avoid adding duplicate handlers
    if logger.handlers:
        return logger

    # Create formatter
    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )

    # File handler
    file_handler = logging.FileHandler(log_file, mode="a")
    file_handler.setLevel(logging.DEBUG)
    file_handler.setFormatter(formatter)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)

    # Add handlers to logger
    logger.addHandler(file_handler)
    logger.addHandler(console_handler)

    return logger


def _int_env(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError:
        return default
    return value if value >= 1 else default


def _float_env(name: str, default: float) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _bool_env(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def _csv_env(name: str, default: List[str]) -> List[str]:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return list(default)
    values = [item.strip() for item in raw.split(",") if item.strip()]
    return values or list(default)


# Create the main application logger
LOG_FILE = os.getenv("LOG_FILE", "tryon.log")
logger = setup_logger("src", LOG_FILE)

# -------------------------
# Environment Variables
# -------------------------
GEMINI_KEY = os.getenv("GEMINI_KEY") or os.getenv("GEMINI_API_KEY")
GEMINI_MODEL = os.getenv("GEMINI_MODEL", "gemini-2.5-flash-image-preview")
GEMINI_API_BASE = os.getenv(
    "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
)
GEMINI_TIMEOUT_SECONDS = _float_env("GEMINI_TIMEOUT_SECONDS", 55.0)

# rate limiting
PER_IDENTITY_SOFT_LIMIT = _int_env("PER_IDENTITY_SOFT_LIMIT", 30)
PER_IDENTITY_HARD_LIMIT = _int_env("PER_IDENTITY_HARD_LIMIT", 40)
GLOBAL_DAILY_LIMIT = _int_env("GLOBAL_DAILY_LIMIT", 400)
DELAY_WINDOW_SECONDS = _int_env("DELAY_WINDOW_SECONDS", 60)

# When true, quota is charged before the provider call, so failed generations count
CHARGE_FAILED_GENERATIONS = _bool_env("CHARGE_FAILED_GENERATIONS", True)

CORS_ORIGINS = _csv_env("CORS_ORIGINS", ["*"])


# Log configuration status
logger.info("Configuration loaded successfully")
logger.debug(f"GEMINI_KEY configured: {bool(GEMINI_KEY)}")
logger.debug(f"GEMINI_MODEL: {GEMINI_MODEL}")
logger.debug(f"GEMINI_TIMEOUT_SECONDS: {GEMINI_TIMEOUT_SECONDS}")
logger.debug(
    "Rate limits: soft=%s hard=%s global=%s delay=%ss charge_failed=%s",
    PER_IDENTITY_SOFT_LIMIT,
    PER_IDENTITY_HARD_LIMIT,
    GLOBAL_DAILY_LIMIT,
    DELAY_WINDOW_SECONDS,
    CHARGE_FAILED_GENERATIONS,
)
