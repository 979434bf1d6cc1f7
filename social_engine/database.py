"""
Unified async database client for all engine operations.

ALL database operations go through the SupabaseDB class defined here.
No direct Supabase calls should appear anywhere else in the codebase.

Status transitions on ``scheduled_posts`` and token rotation on
``platform_credentials`` are compare-and-set updates: the ``UPDATE``
carries the expected current values as filters and the caller learns
whether it won from whether any row came back.

Usage::

    from social_engine.database import SupabaseDB, get_db

    # In async context:
    db = await get_db()
    rows = await db.get_active_credentials(user_id, "youtube")
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Union

from supabase import AsyncClient, create_async_client

from social_engine.exceptions import DatabaseError, ValidationError
from social_engine.utils import to_iso

logger = logging.getLogger(__name__)

CREDENTIALS_TABLE = "platform_credentials"
POSTS_TABLE = "scheduled_posts"
SNAPSHOTS_TABLE = "social_analytics_snapshots"
LOGS_TABLE = "engine_logs"


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or an empty string.

    Args:
        value: The value to check.
        name: Human-readable field name used in error messages.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive (> 0).

    Args:
        value: The numeric value to check.
        name: Human-readable field name used in error messages.

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


def claim_available_filter(lease_cutoff: datetime) -> str:
    """PostgREST ``or`` filter: row unclaimed, or its claim lease expired."""
    return f"claim_token.is.null,claimed_at.lt.{to_iso(lease_cutoff)}"


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase configuration loaded from environment variables.

    Attributes:
        url: The Supabase project URL (``SUPABASE_URL``).
        key: The service-role key for full server-side access
            (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str  # service_role key, tokens are stored server-side only

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Create a config instance from environment variables.

        Reads ``SUPABASE_URL`` and ``SUPABASE_SERVICE_KEY``.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError(
                "SUPABASE_URL and SUPABASE_SERVICE_KEY must be set"
            )

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE DATABASE CLIENT
# =============================================================================


class SupabaseDB:
    """Unified **async** database client for all engine operations.

    ALL database operations go through this class.
    No direct Supabase calls elsewhere in the codebase.

    **Important:** Use the :meth:`create` factory method instead of
    ``__init__`` directly -- the underlying async client requires an
    ``await`` during initialisation.
    """

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor.  Use :meth:`create` factory method."""
        self.client = client

    @classmethod
    async def create(
        cls, config: Optional[SupabaseConfig] = None
    ) -> "SupabaseDB":
        """Factory method to create an async :class:`SupabaseDB` instance.

        Args:
            config: Optional configuration.  When ``None``,
                :meth:`SupabaseConfig.from_env` is used.

        Returns:
            A fully initialised :class:`SupabaseDB` instance.
        """
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # PLATFORM CREDENTIALS
    # -----------------------------------------------------------------

    async def save_credential(self, credential: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a newly connected credential.

        Args:
            credential: Row dict.  Must contain ``user_id``, ``platform``
                and ``access_token``.

        Returns:
            The inserted row.

        Raises:
            ValidationError: On missing / invalid fields.
            DatabaseError: When the insert returns no data.
        """
        if not credential:
            raise ValidationError("credential cannot be None or empty")
        for key in ("user_id", "platform", "access_token"):
            validate_not_empty(credential.get(key), key)

        result = await (
            self.client.table(CREDENTIALS_TABLE).insert(credential).execute()
        )
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    async def get_credential(self, credential_id: str) -> Optional[Dict[str, Any]]:
        """Get a single credential by ID.

        Returns:
            The credential row, or ``None`` if not found.
        """
        validate_not_empty(credential_id, "credential_id")

        result = await (
            self.client.table(CREDENTIALS_TABLE)
            .select("*")
            .eq("id", credential_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_active_credentials(
        self, user_id: str, platform: str
    ) -> List[Dict[str, Any]]:
        """Get the active credentials of a user on a platform.

        Returns:
            Credential rows ordered by ``created_at`` ascending, so the
            first element is the oldest connected account.
        """
        validate_not_empty(user_id, "user_id")
        validate_not_empty(platform, "platform")

        result = await (
            self.client.table(CREDENTIALS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("platform", platform)
            .eq("is_active", True)
            .order("created_at", desc=False)
            .execute()
        )
        return result.data

    async def update_credential_tokens(
        self,
        credential_id: str,
        expected_access_token: str,
        access_token: str,
        refresh_token: Optional[str],
        token_expires_at: Optional[datetime],
        updated_at: datetime,
    ) -> bool:
        """Persist rotated tokens if nobody rotated them first.

        The update only matches while the row is still active and still
        holds *expected_access_token*.

        Returns:
            ``True`` if this call wrote the new tokens.
        """
        validate_not_empty(credential_id, "credential_id")
        validate_not_empty(access_token, "access_token")

        result = await (
            self.client.table(CREDENTIALS_TABLE)
            .update({
                "access_token": access_token,
                "refresh_token": refresh_token,
                "token_expires_at": to_iso(token_expires_at),
                "updated_at": to_iso(updated_at),
            })
            .eq("id", credential_id)
            .eq("access_token", expected_access_token)
            .eq("is_active", True)
            .execute()
        )
        return bool(result.data)

    async def deactivate_credential(
        self, credential_id: str, updated_at: datetime
    ) -> None:
        """Soft-delete a credential (``is_active = false``)."""
        validate_not_empty(credential_id, "credential_id")

        await (
            self.client.table(CREDENTIALS_TABLE)
            .update({"is_active": False, "updated_at": to_iso(updated_at)})
            .eq("id", credential_id)
            .execute()
        )

    # -----------------------------------------------------------------
    # SCHEDULED POSTS
    # -----------------------------------------------------------------

    async def create_scheduled_post(self, post: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a scheduled post.

        Args:
            post: Row dict.  Must contain ``user_id``, ``platform``,
                ``content_type`` and ``scheduled_date``.

        Returns:
            The inserted row.

        Raises:
            ValidationError: On missing / invalid fields.
            DatabaseError: When the insert returns no data.
        """
        if not post:
            raise ValidationError("post cannot be None or empty")
        for key in ("user_id", "platform", "content_type", "scheduled_date"):
            validate_not_empty(post.get(key), key)

        result = await self.client.table(POSTS_TABLE).insert(post).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]

    async def get_scheduled_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        """Get a scheduled post by ID, or ``None`` if not found."""
        validate_not_empty(post_id, "post_id")

        result = await (
            self.client.table(POSTS_TABLE)
            .select("*")
            .eq("id", post_id)
            .limit(1)
            .execute()
        )
        return result.data[0] if result.data else None

    async def get_due_posts(
        self,
        window_start: datetime,
        now: datetime,
        lease_cutoff: datetime,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Get posts that are due for publishing.

        Selects rows with status ``"scheduled"`` whose ``scheduled_date``
        lies in ``[window_start, now]`` and that are not held by a live
        claim.  Terminal rows are excluded by the query itself.

        Returns:
            Post rows ordered by ``scheduled_date`` ascending.
        """
        validate_positive(limit, "limit")

        result = await (
            self.client.table(POSTS_TABLE)
            .select("*")
            .eq("status", "scheduled")
            .gte("scheduled_date", to_iso(window_start))
            .lte("scheduled_date", to_iso(now))
            .or_(claim_available_filter(lease_cutoff))
            .order("scheduled_date", desc=False)
            .limit(limit)
            .execute()
        )
        return result.data

    async def get_due_retries(
        self,
        retry_window_start: datetime,
        window_start: datetime,
        lease_cutoff: datetime,
        limit: int = 50,
    ) -> List[Dict[str, Any]]:
        """Get failed posts still waiting for another attempt.

        Selects ``"scheduled"`` rows with ``retry_count > 0`` whose
        ``scheduled_date`` lies in ``[retry_window_start, window_start)``,
        i.e. older than the due window but inside the retry window.  Rows
        inside the due window are returned by :meth:`get_due_posts`.

        Returns:
            Post rows ordered by ``scheduled_date`` ascending.
        """
        validate_positive(limit, "limit")

        result = await (
            self.client.table(POSTS_TABLE)
            .select("*")
            .eq("status", "scheduled")
            .gt("retry_count", 0)
            .gte("scheduled_date", to_iso(retry_window_start))
            .lt("scheduled_date", to_iso(window_start))
            .or_(claim_available_filter(lease_cutoff))
            .order("scheduled_date", desc=False)
            .limit(limit)
            .execute()
        )
        return result.data

    async def claim_post(
        self,
        post_id: str,
        claim_token: str,
        claimed_at: datetime,
        lease_cutoff: datetime,
    ) -> bool:
        """Atomically claim a scheduled post for one dispatch pass.

        Only succeeds if the post is still ``"scheduled"`` and not held by
        another unexpired claim, preventing double-publishing.

        Returns:
            ``True`` if the claim succeeded.
        """
        validate_not_empty(post_id, "post_id")
        validate_not_empty(claim_token, "claim_token")

        result = await (
            self.client.table(POSTS_TABLE)
            .update({
                "claim_token": claim_token,
                "claimed_at": to_iso(claimed_at),
            })
            .eq("id", post_id)
            .eq("status", "scheduled")
            .or_(claim_available_filter(lease_cutoff))
            .execute()
        )
        # If data is returned, the update matched and the claim succeeded
        return bool(result.data)

    async def mark_published(
        self,
        post_id: str,
        platform_post_id: str,
        platform_metadata: Dict[str, Any],
        published_date: datetime,
        claim_token: Optional[str] = None,
    ) -> bool:
        """Transition ``scheduled -> published``.

        Returns:
            ``True`` if the row was still ``"scheduled"`` (and still held by
            *claim_token*, when given) and has been updated.
        """
        validate_not_empty(post_id, "post_id")
        validate_not_empty(platform_post_id, "platform_post_id")

        query = (
            self.client.table(POSTS_TABLE)
            .update({
                "status": "published",
                "platform_post_id": platform_post_id,
                "platform_metadata": platform_metadata,
                "published_date": to_iso(published_date),
                "publishing_error": None,
                "claim_token": None,
                "claimed_at": None,
            })
            .eq("id", post_id)
            .eq("status", "scheduled")
        )
        if claim_token:
            query = query.eq("claim_token", claim_token)
        result = await query.execute()
        return bool(result.data)

    async def mark_cancelled(
        self,
        post_id: str,
        error: str,
        claim_token: Optional[str] = None,
        retry_count: Optional[int] = None,
    ) -> bool:
        """Transition ``scheduled -> cancelled`` with an error recorded.

        Args:
            post_id: UUID of the post.
            error: User-facing error message (must be non-empty).
            claim_token: When given, the row must still hold this claim.
            retry_count: When given, stored alongside the cancellation.

        Returns:
            ``True`` if the transition was applied.
        """
        validate_not_empty(post_id, "post_id")
        validate_not_empty(error, "error")

        values: Dict[str, Any] = {
            "status": "cancelled",
            "publishing_error": error,
            "claim_token": None,
            "claimed_at": None,
        }
        if retry_count is not None:
            values["retry_count"] = retry_count

        query = (
            self.client.table(POSTS_TABLE)
            .update(values)
            .eq("id", post_id)
            .eq("status", "scheduled")
        )
        if claim_token:
            query = query.eq("claim_token", claim_token)
        result = await query.execute()
        return bool(result.data)

    async def record_retry(
        self,
        post_id: str,
        expected_retry_count: int,
        error: str,
        claim_token: Optional[str] = None,
    ) -> bool:
        """Retry in place: ``scheduled -> scheduled`` with retry_count + 1.

        Releases the claim so the next pass can pick the post up again.

        Returns:
            ``True`` if the row still had *expected_retry_count* and was
            updated.
        """
        validate_not_empty(post_id, "post_id")

        query = (
            self.client.table(POSTS_TABLE)
            .update({
                "retry_count": expected_retry_count + 1,
                "publishing_error": error,
                "claim_token": None,
                "claimed_at": None,
            })
            .eq("id", post_id)
            .eq("status", "scheduled")
            .eq("retry_count", expected_retry_count)
        )
        if claim_token:
            query = query.eq("claim_token", claim_token)
        result = await query.execute()
        return bool(result.data)

    async def expire_stale_posts(
        self,
        before: datetime,
        lease_cutoff: datetime,
        error: str,
        platform: Optional[str] = None,
        retried: bool = False,
    ) -> List[Dict[str, Any]]:
        """Cancel unclaimed scheduled posts that fell out of their window.

        Never-attempted posts (``retry_count = 0``) and retried posts
        (``retry_count > 0``) are expired separately because retried posts
        use the longer retry window.

        Args:
            before: Posts scheduled strictly before this instant expire.
            lease_cutoff: Claims taken before this instant count as expired.
            error: Message stored as ``publishing_error``.
            platform: Restrict to one platform (so the message can name it).
            retried: Expire retried posts instead of never-attempted ones.

        Returns:
            The rows that were cancelled.
        """
        validate_not_empty(error, "error")

        query = (
            self.client.table(POSTS_TABLE)
            .update({
                "status": "cancelled",
                "publishing_error": error,
                "claim_token": None,
                "claimed_at": None,
            })
            .eq("status", "scheduled")
            .lt("scheduled_date", to_iso(before))
            .or_(claim_available_filter(lease_cutoff))
        )
        query = query.gt("retry_count", 0) if retried else query.eq("retry_count", 0)
        if platform:
            query = query.eq("platform", platform)
        result = await query.execute()
        return result.data or []

    async def get_published_posts(
        self,
        user_id: str,
        platform: str,
        since: datetime,
    ) -> List[Dict[str, Any]]:
        """Get a user's published posts on a platform since *since*.

        Returns:
            Post rows ordered by ``published_date`` ascending.
        """
        validate_not_empty(user_id, "user_id")
        validate_not_empty(platform, "platform")

        result = await (
            self.client.table(POSTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .eq("platform", platform)
            .eq("status", "published")
            .gte("published_date", to_iso(since))
            .order("published_date", desc=False)
            .execute()
        )
        return result.data

    # -----------------------------------------------------------------
    # ANALYTICS SNAPSHOTS
    # -----------------------------------------------------------------

    async def upsert_analytics_snapshot(self, snapshot: Dict[str, Any]) -> None:
        """Store one account statistics snapshot per credential per day.

        Raises:
            ValidationError: If ``credential_id`` or ``snapshot_date`` is
                missing.
        """
        if not snapshot:
            raise ValidationError("snapshot cannot be None or empty")
        validate_not_empty(snapshot.get("credential_id"), "credential_id")
        validate_not_empty(snapshot.get("snapshot_date"), "snapshot_date")

        await (
            self.client.table(SNAPSHOTS_TABLE)
            .upsert(snapshot, on_conflict="credential_id,snapshot_date")
            .execute()
        )

    async def get_analytics_history(
        self,
        user_id: str,
        since: date,
        platform: Optional[str] = None,
    ) -> List[Dict[str, Any]]:
        """Get a user's account snapshots taken on or after *since*.

        Returns:
            Snapshot rows ordered by ``snapshot_date`` ascending.
        """
        validate_not_empty(user_id, "user_id")

        query = (
            self.client.table(SNAPSHOTS_TABLE)
            .select("*")
            .eq("user_id", user_id)
            .gte("snapshot_date", since.isoformat())
        )
        if platform:
            query = query.eq("platform", platform)
        result = await query.order("snapshot_date", desc=False).execute()
        return result.data

    # -----------------------------------------------------------------
    # ENGINE LOGS
    # -----------------------------------------------------------------

    async def save_engine_log(self, log_entry: Dict[str, Any]) -> str:
        """Save a structured log entry.

        Args:
            log_entry: Log entry dict.  Must contain ``timestamp``
                and ``level``.

        Returns:
            UUID of the inserted log row.

        Raises:
            ValidationError: On missing / invalid fields.
            DatabaseError: When the insert returns no data.
        """
        if not log_entry:
            raise ValidationError("log_entry cannot be None or empty")
        if "timestamp" not in log_entry or "level" not in log_entry:
            raise ValidationError(
                "log_entry must have 'timestamp' and 'level'"
            )

        result = await self.client.table(LOGS_TABLE).insert(log_entry).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]


# =============================================================================
# GLOBAL DATABASE INSTANCE (Singleton)
# =============================================================================

# One async connection for the entire application.
_db_instance: Optional[SupabaseDB] = None
_db_lock: Optional[asyncio.Lock] = None

# Thread lock for safe initialisation of the async lock itself.
_init_lock = threading.Lock()


async def get_db() -> SupabaseDB:
    """Get the global async database instance.

    Thread-safe **and** async-safe.  The first call creates the
    :class:`SupabaseDB` singleton; subsequent calls return the same
    instance.  Only the entrypoint should call this; components receive
    the instance through their constructors.

    Returns:
        The singleton :class:`SupabaseDB` instance.
    """
    global _db_instance, _db_lock

    # Thread-safe lazy initialisation of the async lock.
    if _db_lock is None:
        with _init_lock:
            # Double-check after acquiring thread lock.
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            # Double-check after acquiring async lock.
            if _db_instance is None:
                _db_instance = await SupabaseDB.create()

    return _db_instance


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "SupabaseConfig",
    "SupabaseDB",
    "get_db",
    "validate_not_empty",
    "validate_positive",
    "claim_available_filter",
    "CREDENTIALS_TABLE",
    "POSTS_TABLE",
    "SNAPSHOTS_TABLE",
    "LOGS_TABLE",
]
