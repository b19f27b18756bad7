"""HTTP API for the billing service."""

from .main import create_app, create_app_from_env

__all__ = ["create_app", "create_app_from_env"]
