"""Core app configuration, database and shared errors."""

from app.core.config import SettingsProvider, get_settings, settings
from app.core.database import get_db

__all__ = ["SettingsProvider", "get_settings", "settings", "get_db"]
