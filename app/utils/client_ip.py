"""Client identity helpers."""
from __future__ import annotations

from typing import Mapping

UNKNOWN_CLIENT = "unknown"


def get_client_identity(headers: Mapping[str, str]) -> str:
    """Derive the caller's identity from proxy headers.

    Checks ``x-forwarded-for`` (first hop), ``x-real-ip`` and
    ``cf-connecting-ip`` in that order and falls back to ``unknown``.
    """

    forwarded = _header(headers, "x-forwarded-for")
    if forwarded:
        first_hop = forwarded.split(",")[0].strip()
        if first_hop:
            return first_hop
    for name in ("x-real-ip", "cf-connecting-ip"):
        value = _header(headers, name)
        if value:
            return value
    return UNKNOWN_CLIENT


def _header(headers: Mapping[str, str], name: str) -> str | None:
    value = headers.get(name)
    if value is None and not hasattr(headers, "getlist"):
        # plain dicts are case-sensitive
        lowered = {key.lower(): val for key, val in headers.items()}
        value = lowered.get(name)
    return value
