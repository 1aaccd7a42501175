"""Configuration management for watchbudget.

Loads and validates YAML-based configuration with Pydantic models.
Supports environment variable overrides for deployment values like
the database URL.
"""

from watchbudget.config.settings import Settings, load_settings

__all__ = ["Settings", "load_settings"]
