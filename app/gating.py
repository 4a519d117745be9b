"""FastAPI dependencies that put routes behind the request gates."""
from __future__ import annotations

from functools import lru_cache
from typing import Awaitable, Callable, Optional

from fastapi import Depends, Request, Response

from app.auth import require_admin_auth, require_api_key, require_seed_auth
from app.config import Settings, get_settings
from app.rate_limit import DEFAULT_POLICY, RateLimiter, RateLimitStore, check_rate_limit


class GateRejected(Exception):
    """Carries the terminal response produced by a failed gate."""

    def __init__(self, response: Response) -> None:
        super().__init__(response.status_code)
        self.response = response


@lru_cache()
def get_rate_limiter() -> RateLimiter:
    """Return the process-wide limiter."""

    return RateLimiter.from_settings(get_settings(), RateLimitStore())


def _raise_if(rejection: Optional[Response]) -> None:
    if rejection is not None:
        raise GateRejected(rejection)


def rate_limited(policy_name: str = DEFAULT_POLICY) -> Callable[..., Awaitable[None]]:
    """Build a dependency enforcing the named rate limit policy."""

    async def dependency(
        request: Request, limiter: RateLimiter = Depends(get_rate_limiter)
    ) -> None:
        _raise_if(check_rate_limit(request, limiter, policy_name))

    return dependency


async def admin_required(request: Request, settings: Settings = Depends(get_settings)) -> None:
    _raise_if(require_admin_auth(request, settings))


async def seed_required(request: Request, settings: Settings = Depends(get_settings)) -> None:
    _raise_if(require_seed_auth(request, settings))


async def api_key_required(request: Request, settings: Settings = Depends(get_settings)) -> None:
    _raise_if(require_api_key(request, settings))
