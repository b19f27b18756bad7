"""Route modules for the billing API."""

from . import admin, billing, profile

__all__ = [
    "admin",
    "billing",
    "profile",
]
