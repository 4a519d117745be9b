"""Utility helpers."""
from .client_ip import UNKNOWN_CLIENT, get_client_identity  # noqa: F401
