"""
Database client for the billing service.
Handles user profiles, subscription history, webhook bookkeeping and settings.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from supabase import Client, create_client

logger = logging.getLogger(__name__)

PROFILES_TABLE = "profiles"
HISTORY_TABLE = "subscription_history"
WEBHOOK_EVENTS_TABLE = "stripe_webhook_events"
SETTINGS_TABLE = "platform_settings"
ROLES_TABLE = "user_roles"


class DatabaseWriteError(RuntimeError):
    """Raised when a write to the database fails and the caller must not continue."""


class DatabaseReadError(RuntimeError):
    """Raised by lookups called with ``raise_on_error=True`` when the query itself fails."""


class SupabaseDatabaseClient:
    """Database client for Supabase operations."""

    def __init__(self, supabase_url: Optional[str], supabase_key: Optional[str], *, client: Optional[Client] = None):
        if client is not None:
            self.client = client
            return
        if not supabase_url or not supabase_key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_ANON_KEY) are required")
        self.client = create_client(supabase_url, supabase_key)

    # ------------------------------------------------------------------
    # Profiles
    # ------------------------------------------------------------------
    def get_profile(self, user_id: str, *, raise_on_error: bool = False) -> Optional[Dict[str, Any]]:
        if not user_id:
            return None
        return self._select_first(PROFILES_TABLE, "id", user_id, raise_on_error=raise_on_error)

    def get_profile_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        if not email:
            return None
        return self._select_first(PROFILES_TABLE, "email", email)

    def get_profile_by_customer_id(
        self, customer_id: str, *, raise_on_error: bool = False
    ) -> Optional[Dict[str, Any]]:
        if not customer_id:
            return None
        return self._select_first(PROFILES_TABLE, "stripe_customer_id", customer_id, raise_on_error=raise_on_error)

    def update_profile(self, user_id: str, updates: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        """Overwrite the given profile columns. Raises ``DatabaseWriteError`` on failure."""
        try:
            result = (
                self.client.table(PROFILES_TABLE)
                .update(dict(updates))
                .eq("id", user_id)
                .execute()
            )
        except Exception as exc:
            logger.error("Failed to update profile %s: %s", user_id, exc)
            raise DatabaseWriteError(f"Failed to update profile {user_id}") from exc
        return result.data[0] if result and result.data else None

    def add_ai_tokens(self, user_id: str, tokens: int) -> int:
        """Add ``tokens`` to the profile's usage counter and return the new total."""
        profile = self.get_profile(user_id) or {}
        current = _coerce_int(profile.get("ai_tokens_used"))
        total = current + max(int(tokens), 0)
        self.update_profile(user_id, {"ai_tokens_used": total})
        return total

    # ------------------------------------------------------------------
    # Subscription history
    # ------------------------------------------------------------------
    def insert_subscription_history(self, entry: Dict[str, Any]) -> None:
        try:
            self.client.table(HISTORY_TABLE).insert(dict(entry)).execute()
        except Exception as exc:
            logger.error("Failed to append subscription history for %s: %s", entry.get("user_id"), exc)
            raise DatabaseWriteError("Failed to append subscription history") from exc

    def list_subscription_history(self, user_id: str, limit: int = 10) -> List[Dict[str, Any]]:
        try:
            result = (
                self.client.table(HISTORY_TABLE)
                .select("*")
                .eq("user_id", user_id)
                .order("created_at", desc=True)
                .limit(limit)
                .execute()
            )
            return result.data or []
        except Exception as exc:
            logger.warning("Error listing subscription history for %s: %s", user_id, exc)
            return []

    # ------------------------------------------------------------------
    # Webhook bookkeeping
    # ------------------------------------------------------------------
    def has_webhook_event(self, stripe_event_id: str, *, raise_on_error: bool = False) -> bool:
        if not stripe_event_id:
            return False
        record = self._select_first(
            WEBHOOK_EVENTS_TABLE,
            "stripe_event_id",
            stripe_event_id,
            columns="id",
            raise_on_error=raise_on_error,
        )
        return record is not None

    def record_webhook_event(
        self,
        *,
        stripe_event_id: str,
        event_type: str,
        user_id: Optional[str],
        outcome: str,
    ) -> None:
        if not stripe_event_id:
            return
        body = {
            "stripe_event_id": stripe_event_id,
            "event_type": event_type,
            "user_id": user_id,
            "outcome": outcome,
        }
        try:
            self.client.table(WEBHOOK_EVENTS_TABLE).upsert(body, on_conflict="stripe_event_id").execute()
        except Exception as exc:
            logger.warning("Error recording webhook event %s: %s", stripe_event_id, exc)

    # ------------------------------------------------------------------
    # Resource counts (plan limit checks)
    # ------------------------------------------------------------------
    def count_user_rows(self, table: str, user_id: str) -> int:
        try:
            result = (
                self.client.table(table)
                .select("id", count="exact")
                .eq("user_id", user_id)
                .execute()
            )
        except Exception as exc:
            logger.warning("Error counting %s for user %s: %s", table, user_id, exc)
            return 0
        if result is None:
            return 0
        if result.count is not None:
            return int(result.count)
        return len(result.data or [])

    # ------------------------------------------------------------------
    # Platform settings & roles
    # ------------------------------------------------------------------
    def get_platform_setting(self, key: str) -> Optional[Any]:
        record = self._select_first(SETTINGS_TABLE, "key", key)
        return record.get("value") if record else None

    def upsert_platform_setting(self, key: str, value: Any) -> None:
        body = {
            "key": key,
            "value": value,
            "updated_at": datetime.now(timezone.utc).isoformat(),
        }
        try:
            self.client.table(SETTINGS_TABLE).upsert(body, on_conflict="key").execute()
        except Exception as exc:
            logger.error("Failed to store platform setting %s: %s", key, exc)
            raise DatabaseWriteError(f"Failed to store platform setting {key}") from exc

    def get_user_roles(self, user_id: str) -> List[str]:
        if not user_id:
            return []
        try:
            result = self.client.table(ROLES_TABLE).select("role").eq("user_id", user_id).execute()
        except Exception as exc:
            logger.warning("Error fetching roles for user %s: %s", user_id, exc)
            return []
        return [str(row.get("role")).lower() for row in result.data or [] if row.get("role")]

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------
    def _select_first(
        self,
        table: str,
        column: str,
        value: Any,
        *,
        columns: str = "*",
        raise_on_error: bool = False,
    ) -> Optional[Dict[str, Any]]:
        """First matching row, or ``None``. Query errors are logged and read as a miss
        unless ``raise_on_error`` is set, in which case ``DatabaseReadError`` is raised.
        """
        try:
            result = (
                self.client.table(table)
                .select(columns)
                .eq(column, value)
                .limit(1)
                .execute()
            )
            return result.data[0] if result and result.data else None
        except Exception as exc:
            if raise_on_error:
                logger.error("Failed to read %s where %s=%s: %s", table, column, value, exc)
                raise DatabaseReadError(f"Failed to read {table}") from exc
            logger.warning("Error reading %s where %s=%s: %s", table, column, value, exc)
            return None


# Simple alias for readability
DatabaseClient = SupabaseDatabaseClient


def create_database_client(config: Any) -> SupabaseDatabaseClient:
    """Build a client from settings, preferring the service role key to bypass RLS."""

    key = getattr(config, "supabase_service_role_key", None) or getattr(config, "supabase_anon_key", None)
    if not getattr(config, "supabase_service_role_key", None):
        logger.warning("SUPABASE_SERVICE_ROLE_KEY not set; webhook writes may be blocked by RLS")
    return SupabaseDatabaseClient(getattr(config, "supabase_url", None), key)


def _coerce_int(value: Any) -> int:
    try:
        return int(value or 0)
    except (TypeError, ValueError):
        return 0
