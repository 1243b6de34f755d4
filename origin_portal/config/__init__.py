"""Configuration package for the origin portal."""
from .settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
