"""Core module for configuration and utilities."""

from tenantpay.core.config import Settings, settings
from tenantpay.core.database import Base

__all__ = [
    "Settings",
    "settings",
    "Base",
]
