"""
Authentication for the billing API.

This module provides:
- Supabase JWT validation
- Bearer header parsing
- Role-based admin checks
"""

from .manager import AuthManager, SupabaseAuthManager, create_auth_manager, has_role, require_auth

__all__ = [
    'AuthManager',
    'SupabaseAuthManager',
    'create_auth_manager',
    'has_role',
    'require_auth',
]
