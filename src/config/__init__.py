"""Configuration module for the authorization service."""

from .database import DatabaseSettings, get_database_settings
from .settings import AuthzSettings, get_settings

__all__ = [
    "DatabaseSettings",
    "get_database_settings",
    "AuthzSettings",
    "get_settings",
]
