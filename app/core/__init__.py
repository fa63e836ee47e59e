"""Core app configuration, database and auth primitives."""

from app.core.config import AuthConfig, get_settings, settings
from app.core.database import get_db

__all__ = ["AuthConfig", "get_settings", "settings", "get_db"]
