"""
secgate configuration.

Pydantic-based settings loaded from environment variables and .env files.
"""

from secgate.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
