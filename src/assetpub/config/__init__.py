"""
assetpub configuration.

Pydantic-based settings loaded from ASSETPUB_* environment variables
and an optional .env file.
"""

from assetpub.config.settings import Settings, get_settings

__all__ = [
    "Settings",
    "get_settings",
]
