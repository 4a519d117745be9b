"""Credential checks for admin, seed and API-key protected routes."""
from __future__ import annotations

import base64
import binascii
import enum
import hmac
import logging
from dataclasses import dataclass
from typing import Dict, Optional

from fastapi import Request
from fastapi.responses import JSONResponse

from app.config import Settings
from app.utils import get_client_identity

LOGGER = logging.getLogger(__name__)

ADMIN_REALM = 'Basic realm="Admin Area"'


class AuthOutcome(enum.Enum):
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"
    UNCONFIGURED = "unconfigured"


@dataclass(frozen=True)
class Verification:
    """Result of a credential check.

    ``error`` and ``message`` are only set for failed checks; ``challenge``
    marks failures that should carry a ``WWW-Authenticate`` header.
    """

    outcome: AuthOutcome
    error: Optional[str] = None
    message: Optional[str] = None
    challenge: bool = False

    @property
    def ok(self) -> bool:
        return self.outcome is AuthOutcome.AUTHENTICATED

    def to_response(self) -> JSONResponse:
        status = 503 if self.outcome is AuthOutcome.UNCONFIGURED else 401
        body: Dict[str, str] = {"error": self.error or "Unauthorized"}
        if self.message:
            body["message"] = self.message
        headers = {"WWW-Authenticate": ADMIN_REALM} if self.challenge else None
        return JSONResponse(body, status_code=status, headers=headers)


AUTHENTICATED = Verification(AuthOutcome.AUTHENTICATED)


def _matches(provided: str, expected: str) -> bool:
    return hmac.compare_digest(provided.encode("utf-8"), expected.encode("utf-8"))


def _decode_basic(payload: str) -> Optional[tuple[str, str]]:
    try:
        decoded = base64.b64decode(payload.strip(), validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    if ":" not in decoded:
        return None
    username, password = decoded.split(":", 1)
    return username, password


def verify_admin(authorization: Optional[str], settings: Settings) -> Verification:
    """Check an ``Authorization`` header against the admin credentials."""

    if not settings.admin_auth_configured:
        if settings.is_development:
            LOGGER.warning("ADMIN_PASSWORD not set - admin routes unprotected in development")
            return AUTHENTICATED
        return Verification(
            AuthOutcome.UNCONFIGURED, error="Admin authentication not configured"
        )

    if not authorization:
        return Verification(
            AuthOutcome.UNAUTHENTICATED, error="Authentication required", challenge=True
        )

    if not authorization.startswith("Basic "):
        return Verification(
            AuthOutcome.UNAUTHENTICATED,
            error="Invalid authentication method. Use Basic auth.",
        )

    credentials = _decode_basic(authorization[len("Basic "):])
    if credentials is not None:
        username, password = credentials
        # both comparisons always run
        username_ok = _matches(username, settings.admin_username)
        password_ok = _matches(password, settings.admin_password or "")
        if username_ok and password_ok:
            return AUTHENTICATED

    return Verification(AuthOutcome.UNAUTHENTICATED, error="Invalid credentials", challenge=True)


def verify_seed(authorization: Optional[str], settings: Settings) -> Verification:
    """Check a bearer token against the seed secret."""

    if not settings.seed_auth_configured:
        return Verification(
            AuthOutcome.UNCONFIGURED,
            error="Seed endpoint disabled",
            message="Seed token not configured",
        )

    token = ""
    if authorization and authorization.startswith("Bearer "):
        token = authorization[len("Bearer "):]
    if not token or not _matches(token, settings.seed_secret_token or ""):
        return Verification(
            AuthOutcome.UNAUTHENTICATED, error="Unauthorized - invalid or missing seed token"
        )
    return AUTHENTICATED


def verify_api_key(api_key: Optional[str], settings: Settings) -> Verification:
    """Check ``X-API-Key``; open when no key is configured."""

    if not settings.api_secret_key:
        return AUTHENTICATED
    if not api_key or not _matches(api_key, settings.api_secret_key):
        return Verification(AuthOutcome.UNAUTHENTICATED, error="Invalid or missing API key")
    return AUTHENTICATED


def _reject(request: Request, verification: Verification, kind: str) -> JSONResponse:
    LOGGER.warning(
        f"{kind} authentication rejected",
        extra={
            "client_ip": get_client_identity(request.headers),
            "path": request.url.path,
            "reason": verification.outcome.value,
        },
    )
    return verification.to_response()


def require_admin_auth(request: Request, settings: Settings) -> Optional[JSONResponse]:
    """Return ``None`` when the caller is an authenticated admin."""

    verification = verify_admin(request.headers.get("authorization"), settings)
    if verification.ok:
        return None
    return _reject(request, verification, "admin")


def require_seed_auth(request: Request, settings: Settings) -> Optional[JSONResponse]:
    """Return ``None`` when the caller presented the seed token."""

    verification = verify_seed(request.headers.get("authorization"), settings)
    if verification.ok:
        return None
    return _reject(request, verification, "seed")


def require_api_key(request: Request, settings: Settings) -> Optional[JSONResponse]:
    """Return ``None`` when the caller presented a valid API key."""

    verification = verify_api_key(request.headers.get("x-api-key"), settings)
    if verification.ok:
        return None
    return _reject(request, verification, "api key")
