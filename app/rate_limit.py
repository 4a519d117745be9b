"""In-memory fixed-window rate limiter.

Windows are process-local: with several instances behind a load balancer each
one enforces its own ceiling.
"""
from __future__ import annotations

import asyncio
import logging
import math
import time
from dataclasses import dataclass
from threading import Lock
from typing import Callable, Dict, Optional, Tuple, TypeVar

from fastapi import Request
from fastapi.responses import JSONResponse

from app.config import Settings
from app.utils import get_client_identity

LOGGER = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_POLICY = "default"
STRICT_POLICY = "strict"


@dataclass
class RateWindow:
    identity: str
    count: int
    reset_at: float


@dataclass(frozen=True)
class RatePolicy:
    name: str
    max_requests: int
    window_seconds: int


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    reset_at: float
    retry_after: int = 0


def build_policies(settings: Settings) -> Dict[str, RatePolicy]:
    """Return the named policies configured for this process."""

    window = settings.rate_limit_window_seconds
    return {
        DEFAULT_POLICY: RatePolicy(DEFAULT_POLICY, settings.rate_limit_default_requests, window),
        STRICT_POLICY: RatePolicy(STRICT_POLICY, settings.rate_limit_strict_requests, window),
    }


class RateLimitStore:
    """Window table keyed by client identity."""

    def __init__(self) -> None:
        self._windows: Dict[str, RateWindow] = {}
        self._lock = Lock()

    def init(self) -> None:
        with self._lock:
            self._windows.clear()

    def teardown(self) -> None:
        with self._lock:
            self._windows.clear()

    def get(self, identity: str) -> Optional[RateWindow]:
        with self._lock:
            return self._windows.get(identity)

    def update(
        self,
        identity: str,
        apply: Callable[[Optional[RateWindow]], Tuple[RateWindow, T]],
    ) -> T:
        """Replace the window for ``identity`` with ``apply(current)`` atomically.

        ``apply`` returns the window to keep and a result handed back to the caller.
        """

        with self._lock:
            window, result = apply(self._windows.get(identity))
            self._windows[identity] = window
        return result

    def sweep(self, now: float, window_seconds: float) -> int:
        """Drop windows that expired more than one full window ago."""

        with self._lock:
            stale = [
                identity
                for identity, window in self._windows.items()
                if now > window.reset_at + window_seconds
            ]
            for identity in stale:
                del self._windows[identity]
        return len(stale)

    def __len__(self) -> int:
        return len(self._windows)


class RateLimiter:
    """Counts requests per identity within fixed windows."""

    def __init__(
        self,
        store: RateLimitStore,
        policies: Dict[str, RatePolicy],
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._store = store
        self.policies = policies
        self._clock = clock

    @classmethod
    def from_settings(
        cls, settings: Settings, store: RateLimitStore, clock: Callable[[], float] = time.time
    ) -> "RateLimiter":
        return cls(store, build_policies(settings), clock=clock)

    @property
    def store(self) -> RateLimitStore:
        return self._store

    def policy(self, name: str) -> RatePolicy:
        try:
            return self.policies[name]
        except KeyError as exc:
            raise ValueError(f"Unknown rate limit policy: {name}") from exc

    def check(self, identity: str, policy: RatePolicy) -> RateLimitDecision:
        now = self._clock()

        def apply(window: Optional[RateWindow]) -> Tuple[RateWindow, RateLimitDecision]:
            if window is None or now > window.reset_at:
                window = RateWindow(identity, 1, now + policy.window_seconds)
                return window, self._decision(True, policy, window, now)

            if window.count < policy.max_requests:
                window.count += 1
                return window, self._decision(True, policy, window, now)

            return window, self._decision(False, policy, window, now)

        return self._store.update(identity, apply)

    def sweep(self) -> int:
        window_seconds = max(policy.window_seconds for policy in self.policies.values())
        return self._store.sweep(self._clock(), window_seconds)

    @staticmethod
    def _decision(
        allowed: bool, policy: RatePolicy, window: RateWindow, now: float
    ) -> RateLimitDecision:
        remaining = max(policy.max_requests - window.count, 0)
        retry_after = 0
        if not allowed:
            remaining = 0
            retry_after = max(math.ceil(window.reset_at - now), 0)
        return RateLimitDecision(
            allowed=allowed,
            limit=policy.max_requests,
            remaining=remaining,
            reset_at=window.reset_at,
            retry_after=retry_after,
        )


class RateLimitSweeper:
    """Periodically evicts stale windows from the limiter's store."""

    def __init__(self, limiter: RateLimiter, interval_seconds: float) -> None:
        self._limiter = limiter
        self._interval = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._run())

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._interval)
            try:
                removed = self._limiter.sweep()
            except Exception:  # noqa: BLE001
                LOGGER.exception("rate limit sweep failed")
                continue
            if removed:
                LOGGER.debug("rate limit sweep", extra={"reason": f"removed {removed} windows"})


def rate_limit_response(decision: RateLimitDecision) -> JSONResponse:
    """Build the 429 payload for a rejected decision."""

    return JSONResponse(
        {
            "error": "Too many requests",
            "message": "Rate limit exceeded. Please try again later.",
            "retryAfter": decision.retry_after,
        },
        status_code=429,
        headers={
            "Retry-After": str(decision.retry_after),
            "X-RateLimit-Limit": str(decision.limit),
            "X-RateLimit-Remaining": str(decision.remaining),
            "X-RateLimit-Reset": str(int(decision.reset_at * 1000)),
        },
    )


def check_rate_limit(
    request: Request, limiter: RateLimiter, policy_name: str = DEFAULT_POLICY
) -> Optional[JSONResponse]:
    """Return a 429 response when the caller is over the limit, else ``None``."""

    identity = get_client_identity(request.headers)
    decision = limiter.check(identity, limiter.policy(policy_name))
    if decision.allowed:
        return None
    LOGGER.warning(
        "rate limit exceeded",
        extra={
            "client_ip": identity,
            "path": request.url.path,
            "policy": policy_name,
            "retry_after": decision.retry_after,
        },
    )
    return rate_limit_response(decision)
