"""
Authentication module for Supabase integration.

This module provides:
- JWT token validation
- User authentication helpers
- Admin role resolution
"""

from typing import Any, Dict, Iterable, List, Optional
import logging

import jwt
import base64
import binascii
from fastapi import HTTPException, status
from supabase import Client, create_client


logger = logging.getLogger(__name__)

class SupabaseAuthManager:
    """Manages authentication with Supabase Auth."""

    def __init__(
        self,
        supabase_url: Optional[str],
        supabase_key: Optional[str],
        jwt_secret: Optional[str] = None,
        *,
        client: Optional[Client] = None,
    ):
        """Initialize the AuthManager with a Supabase client used as validation fallback."""
        if client is None:
            if not all([supabase_url, supabase_key]):
                raise ValueError("SUPABASE_URL and SUPABASE_ANON_KEY (or SUPABASE_SERVICE_ROLE_KEY) are required")
            client = create_client(supabase_url, supabase_key)
        self.supabase: Client = client
        self._jwt_secret_candidates = self._prepare_jwt_secret_candidates(jwt_secret)

    @staticmethod
    def _prepare_jwt_secret_candidates(secret: Optional[str]) -> list:
        candidates: list = []
        if not secret:
            return candidates

        raw = secret.strip()
        if raw:
            candidates.append(raw)
            try:
                decoded = base64.b64decode(raw, validate=True)
                if decoded:
                    candidates.append(decoded)
            except (binascii.Error, ValueError):
                pass
        return candidates

    def _load_user_via_supabase(self, token: str) -> Optional[Dict[str, Any]]:
        """Fallback to Supabase SDK for token validation."""
        try:
            user = self.supabase.auth.get_user(token)
        except Exception as exc:
            logger.warning("Supabase auth get_user raised an exception: %s", exc)
            return None
        if not user or not getattr(user, "user", None):
            return None
        supa_user = user.user
        return {
            "sub": supa_user.id,
            "email": supa_user.email,
            "user_metadata": supa_user.user_metadata or {},
            "app_metadata": getattr(supa_user, "app_metadata", None) or {},
        }

    def verify_jwt_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Verify and decode a JWT token from Supabase Auth.

        Args:
            token: The JWT token to verify

        Returns:
            Decoded token payload if valid, None if invalid
        """
        if not token:
            logger.debug("verify_jwt_token received empty token")
            return None
        for candidate in self._jwt_secret_candidates:
            try:
                return jwt.decode(
                    token,
                    candidate,
                    algorithms=["HS256"],
                    audience="authenticated",
                )
            except jwt.InvalidTokenError:
                logger.debug("JWT decode failed for one candidate; trying next")
                continue
        logger.debug("Falling back to Supabase SDK token validation")
        result = self._load_user_via_supabase(token)
        if not result:
            logger.warning("Supabase SDK could not validate token")
        return result

    def get_user_from_token(self, token: str) -> Optional[Dict[str, Any]]:
        """
        Extract user information from a valid JWT token.

        Args:
            token: The JWT token

        Returns:
            User information dict or None if invalid
        """
        payload = self.verify_jwt_token(token)
        if not payload:
            return None

        return {
            "id": payload.get("sub"),
            "email": payload.get("email"),
            "metadata": payload.get("user_metadata") or {},
            "app_metadata": payload.get("app_metadata") or {},
        }

    def authenticate_request_token(self, authorization_header: str) -> Optional[Dict[str, Any]]:
        """
        Extract and validate JWT token from Authorization header.

        Args:
            authorization_header: The Authorization header value

        Returns:
            User information if valid, None if invalid
        """
        if not authorization_header or not authorization_header.startswith("Bearer "):
            return None

        token = authorization_header[7:].strip()  # Remove "Bearer " prefix
        if not token:
            return None
        user_info = self.get_user_from_token(token)
        return user_info if user_info and user_info.get("id") else None


AuthManager = SupabaseAuthManager


def create_auth_manager(config: Any) -> AuthManager:
    key = getattr(config, "supabase_anon_key", None) or getattr(config, "supabase_service_role_key", None)
    return AuthManager(
        getattr(config, "supabase_url", None),
        key,
        getattr(config, "supabase_jwt_secret", None),
    )


def token_roles(user_info: Dict[str, Any]) -> List[str]:
    """Roles carried in the token's ``app_metadata`` (``roles`` list or single ``role``)."""
    app_metadata = user_info.get("app_metadata") or {}
    if not isinstance(app_metadata, dict):
        return []
    roles: Iterable[Any] = app_metadata.get("roles") or []
    if isinstance(roles, str):
        roles = [roles]
    collected = [str(role).strip().lower() for role in roles if role]
    single = app_metadata.get("role")
    if single:
        collected.append(str(single).strip().lower())
    return collected


def has_role(user_info: Dict[str, Any], role: str, *, stored_roles: Iterable[str] = ()) -> bool:
    wanted = (role or "").strip().lower()
    if not wanted:
        return False
    if wanted in token_roles(user_info):
        return True
    return wanted in {str(item).strip().lower() for item in stored_roles}


def require_auth(auth_manager: AuthManager, authorization: str = None) -> Dict[str, Any]:
    """
    Require a valid bearer token.

    Args:
        auth_manager: Manager used to validate the token
        authorization: Authorization header value

    Returns:
        Authenticated user information (id, email, metadata, app_metadata)

    Raises:
        HTTPException: If authentication fails
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required",
            headers={"WWW-Authenticate": "Bearer"}
        )

    user_info = auth_manager.authenticate_request_token(authorization)

    if not user_info:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"}
        )

    return user_info
