"""FastAPI dependencies shared across try-on endpoints."""

from src import config
from src.core.gemini import GeminiClient
from src.core.rate_limit import RateLimiter

# Process-wide limiter; every worker process holds its own counters
rate_limiter = RateLimiter(
    soft_limit=config.PER_IDENTITY_SOFT_LIMIT,
    hard_limit=config.PER_IDENTITY_HARD_LIMIT,
    global_daily_limit=config.GLOBAL_DAILY_LIMIT,
    delay_seconds=config.DELAY_WINDOW_SECONDS,
)


def get_rate_limiter() -> RateLimiter:
    return rate_limiter


def get_generation_client() -> GeminiClient:
    """Build a Gemini client from the current configuration."""
    return GeminiClient(
        api_key=config.GEMINI_KEY,
        model=config.GEMINI_MODEL,
        base_url=config.GEMINI_API_BASE,
        timeout=config.GEMINI_TIMEOUT_SECONDS,
    )


def get_charge_failed_generations() -> bool:
    return config.CHARGE_FAILED_GENERATIONS
