"""
Configuration management for shipctl.

Contains the Pydantic settings object and its cached accessor.
"""
from shipctl.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
