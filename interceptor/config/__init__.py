"""Configuration module for the interceptor service."""
from .settings import AppConfig, load_settings

__all__ = ["AppConfig", "load_settings"]
