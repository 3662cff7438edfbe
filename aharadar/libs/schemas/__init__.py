"""Pydantic settings and schema utilities."""

from .settings import AppSettings, get_settings

__all__ = ["AppSettings", "get_settings"]
