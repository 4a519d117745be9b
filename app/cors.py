"""CORS headers for the public API."""
from __future__ import annotations

from typing import Dict, Optional

from fastapi import Request, Response

from app.config import Settings

ALLOWED_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
ALLOWED_HEADERS = "Content-Type, Authorization, X-Requested-With"
MAX_AGE_SECONDS = 24 * 60 * 60


def cors_headers(origin: Optional[str], settings: Settings) -> Dict[str, str]:
    """Compute the CORS headers for a request from ``origin``."""

    echo_origin = bool(origin) and (
        settings.cors_allow_all_origins or origin in settings.cors_allowed_origins
    )
    return {
        "Access-Control-Allow-Origin": origin if echo_origin else "*",
        "Access-Control-Allow-Methods": ALLOWED_METHODS,
        "Access-Control-Allow-Headers": ALLOWED_HEADERS,
        "Access-Control-Allow-Credentials": "true",
        "Access-Control-Max-Age": str(MAX_AGE_SECONDS),
    }


def handle_options(request: Request, settings: Settings) -> Response:
    """Answer a preflight request."""

    return Response(
        status_code=200,
        headers=cors_headers(request.headers.get("origin"), settings),
    )


def with_cors(response: Response, request: Request, settings: Settings) -> Response:
    """Merge CORS headers into ``response``."""

    for key, value in cors_headers(request.headers.get("origin"), settings).items():
        response.headers[key] = value
    if response.headers.get("Access-Control-Allow-Origin") != "*":
        _vary_on_origin(response)
    return response


def _vary_on_origin(response: Response) -> None:
    vary = response.headers.get("Vary")
    if not vary:
        response.headers["Vary"] = "Origin"
    elif "origin" not in vary.lower():
        response.headers["Vary"] = f"{vary}, Origin"
