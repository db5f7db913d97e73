"""Configuration package for the basket performance service."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
