"""Utility modules."""

from subsync.utils.config import Settings, get_assrt_token, get_settings

__all__ = [
    "Settings",
    "get_assrt_token",
    "get_settings",
]
