"""Request gates shared by the API routes: rate limiting, auth and CORS."""

from .config import Settings, get_settings
from .logging_config import configure_logging
from .rate_limit import RateLimiter, RateLimitStore

__all__ = ["Settings", "get_settings", "configure_logging", "RateLimiter", "RateLimitStore"]
