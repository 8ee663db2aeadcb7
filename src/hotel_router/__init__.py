"""Hotel query router package."""

from .config import RouterSettings, load_settings

__all__ = ["RouterSettings", "load_settings"]
