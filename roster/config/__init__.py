"""Configuration module for the roster service."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
