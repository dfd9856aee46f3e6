"""
Configuration package for the media sync engine.
"""

from .settings import AppConfig, SyncSettings, WebDavSettings, ensure_directories

__all__ = ["AppConfig", "SyncSettings", "WebDavSettings", "ensure_directories"]
