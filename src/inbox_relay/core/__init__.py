"""Core utilities for configuration, logging, errors, and dependency wiring."""

from .config import AppSettings, TenantSettings, load_app_settings
from .container import ServiceContainer
from .errors import MessagingError
from .logging import configure_logging

__all__ = [
    "AppSettings",
    "MessagingError",
    "ServiceContainer",
    "TenantSettings",
    "configure_logging",
    "load_app_settings",
]
