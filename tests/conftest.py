"""Shared fixtures for the publishing engine test suite."""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest

from social_engine.models import (
    ContentType,
    Platform,
    PlatformCredential,
    PostStatus,
    ScheduledPost,
)
from social_engine.utils import generate_id, parse_timestamp, to_iso


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear all API keys and overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ENGINE_TIMEZONE",
        "ENGINE_LOCALE",
        "LOG_LEVEL",
        "LOG_DIR",
        "HTTP_TIMEOUT_SECONDS",
        "DISPATCH_INTERVAL_SECONDS",
        "DISPATCH_DUE_WINDOW_MINUTES",
        "DISPATCH_RETRY_WINDOW_MINUTES",
        "DISPATCH_CLAIM_LEASE_MINUTES",
        "DISPATCH_BATCH_SIZE",
        "DISPATCH_MAX_CONCURRENCY",
        "DISPATCH_MAX_RETRIES",
        "TOKEN_REFRESH_MARGIN_MINUTES",
    ]
    for platform in Platform:
        keys.append(f"{platform.value.upper()}_CLIENT_ID")
        keys.append(f"{platform.value.upper()}_CLIENT_SECRET")
    for key in keys:
        monkeypatch.delenv(key, raising=False)


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests (a Sunday)."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FrozenClock:
    """Injectable clock that only moves when told to."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def clock(sample_utc_now):
    return FrozenClock(sample_utc_now)


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client.

    ``client.execute_result.data`` controls what every query returns.
    """
    client = AsyncMock()
    # table().select().execute() chain
    table_mock = MagicMock()
    for method in (
        "select", "insert", "update", "upsert", "delete",
        "eq", "gt", "gte", "lte", "lt", "or_", "order", "limit", "range", "single",
    ):
        getattr(table_mock, method).return_value = table_mock

    client.execute_result = MagicMock(data=[], count=0)

    async def mock_execute():
        return client.execute_result

    table_mock.execute = mock_execute
    client.table = MagicMock(return_value=table_mock)
    client.table_mock = table_mock
    return client


# ---------------------------------------------------------------------------
# In-memory datastore with compare-and-set semantics
# ---------------------------------------------------------------------------
class InMemoryDB:
    """Stand-in for ``SupabaseDB`` that applies the same conditional updates.

    Every method yields to the event loop first so concurrent callers
    interleave the way they would against a real database.
    """

    def __init__(self) -> None:
        self.credentials: Dict[str, Dict[str, Any]] = {}
        self.posts: Dict[str, Dict[str, Any]] = {}
        self.snapshots: Dict[tuple, Dict[str, Any]] = {}
        self.logs: List[Dict[str, Any]] = []

    @staticmethod
    def _claim_free(row: Dict[str, Any], lease_cutoff: datetime) -> bool:
        if row.get("claim_token") is None:
            return True
        claimed_at = parse_timestamp(row.get("claimed_at"))
        return claimed_at is not None and claimed_at < lease_cutoff

    # --- credentials -------------------------------------------------

    async def save_credential(self, credential: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        row = dict(credential)
        row.setdefault("id", generate_id())
        self.credentials[row["id"]] = row
        return dict(row)

    async def get_credential(self, credential_id: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        row = self.credentials.get(credential_id)
        return dict(row) if row else None

    async def get_active_credentials(self, user_id: str, platform: str) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        rows = [
            dict(row)
            for row in self.credentials.values()
            if row["user_id"] == user_id and row["platform"] == platform and row.get("is_active", True)
        ]
        return sorted(rows, key=lambda r: parse_timestamp(r.get("created_at")))

    async def update_credential_tokens(
        self,
        credential_id,
        expected_access_token,
        access_token,
        refresh_token,
        token_expires_at,
        updated_at,
    ) -> bool:
        await asyncio.sleep(0)
        row = self.credentials.get(credential_id)
        if row is None or not row.get("is_active") or row["access_token"] != expected_access_token:
            return False
        row.update({
            "access_token": access_token,
            "refresh_token": refresh_token,
            "token_expires_at": to_iso(token_expires_at),
            "updated_at": to_iso(updated_at),
        })
        return True

    async def deactivate_credential(self, credential_id, updated_at) -> None:
        await asyncio.sleep(0)
        row = self.credentials.get(credential_id)
        if row is not None:
            row.update({"is_active": False, "updated_at": to_iso(updated_at)})

    # --- posts -------------------------------------------------------

    async def create_scheduled_post(self, post: Dict[str, Any]) -> Dict[str, Any]:
        await asyncio.sleep(0)
        row = dict(post)
        row.setdefault("id", generate_id())
        self.posts[row["id"]] = row
        return dict(row)

    async def get_scheduled_post(self, post_id: str) -> Optional[Dict[str, Any]]:
        await asyncio.sleep(0)
        row = self.posts.get(post_id)
        return dict(row) if row else None

    async def get_due_posts(self, window_start, now, lease_cutoff, limit=50) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        rows = [
            dict(row)
            for row in self.posts.values()
            if row["status"] == "scheduled"
            and window_start <= parse_timestamp(row["scheduled_date"]) <= now
            and self._claim_free(row, lease_cutoff)
        ]
        rows.sort(key=lambda r: parse_timestamp(r["scheduled_date"]))
        return rows[:limit]

    async def get_due_retries(
        self, retry_window_start, window_start, lease_cutoff, limit=50
    ) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        rows = [
            dict(row)
            for row in self.posts.values()
            if row["status"] == "scheduled"
            and row.get("retry_count", 0) > 0
            and retry_window_start <= parse_timestamp(row["scheduled_date"]) < window_start
            and self._claim_free(row, lease_cutoff)
        ]
        rows.sort(key=lambda r: parse_timestamp(r["scheduled_date"]))
        return rows[:limit]

    async def claim_post(self, post_id, claim_token, claimed_at, lease_cutoff) -> bool:
        await asyncio.sleep(0)
        row = self.posts.get(post_id)
        if row is None or row["status"] != "scheduled" or not self._claim_free(row, lease_cutoff):
            return False
        row.update({"claim_token": claim_token, "claimed_at": to_iso(claimed_at)})
        return True

    def _held(self, post_id, claim_token) -> Optional[Dict[str, Any]]:
        row = self.posts.get(post_id)
        if row is None or row["status"] != "scheduled":
            return None
        if claim_token and row.get("claim_token") != claim_token:
            return None
        return row

    async def mark_published(
        self, post_id, platform_post_id, platform_metadata, published_date, claim_token=None
    ) -> bool:
        await asyncio.sleep(0)
        row = self._held(post_id, claim_token)
        if row is None:
            return False
        row.update({
            "status": "published",
            "platform_post_id": platform_post_id,
            "platform_metadata": platform_metadata,
            "published_date": to_iso(published_date),
            "publishing_error": None,
            "claim_token": None,
            "claimed_at": None,
        })
        return True

    async def mark_cancelled(self, post_id, error, claim_token=None, retry_count=None) -> bool:
        await asyncio.sleep(0)
        row = self._held(post_id, claim_token)
        if row is None:
            return False
        row.update({
            "status": "cancelled",
            "publishing_error": error,
            "claim_token": None,
            "claimed_at": None,
        })
        if retry_count is not None:
            row["retry_count"] = retry_count
        return True

    async def record_retry(self, post_id, expected_retry_count, error, claim_token=None) -> bool:
        await asyncio.sleep(0)
        row = self._held(post_id, claim_token)
        if row is None or row.get("retry_count", 0) != expected_retry_count:
            return False
        row.update({
            "retry_count": expected_retry_count + 1,
            "publishing_error": error,
            "claim_token": None,
            "claimed_at": None,
        })
        return True

    async def expire_stale_posts(
        self, before, lease_cutoff, error, platform=None, retried=False
    ) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        expired = []
        for row in self.posts.values():
            if (
                row["status"] == "scheduled"
                and (row.get("retry_count", 0) > 0) == retried
                and parse_timestamp(row["scheduled_date"]) < before
                and self._claim_free(row, lease_cutoff)
                and (platform is None or row["platform"] == platform)
            ):
                row.update({
                    "status": "cancelled",
                    "publishing_error": error,
                    "claim_token": None,
                    "claimed_at": None,
                })
                expired.append(dict(row))
        return expired

    async def get_published_posts(self, user_id, platform, since) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        rows = [
            dict(row)
            for row in self.posts.values()
            if row["user_id"] == user_id
            and row["platform"] == platform
            and row["status"] == "published"
            and row.get("published_date")
            and parse_timestamp(row["published_date"]) >= since
        ]
        return sorted(rows, key=lambda r: parse_timestamp(r["published_date"]))

    # --- analytics / logs ----------------------------------------------

    async def upsert_analytics_snapshot(self, snapshot: Dict[str, Any]) -> None:
        await asyncio.sleep(0)
        self.snapshots[(snapshot["credential_id"], snapshot["snapshot_date"])] = dict(snapshot)

    async def get_analytics_history(self, user_id, since, platform=None) -> List[Dict[str, Any]]:
        await asyncio.sleep(0)
        rows = [
            dict(row)
            for row in self.snapshots.values()
            if row["user_id"] == user_id
            and row["snapshot_date"] >= since.isoformat()
            and (platform is None or row["platform"] == platform)
        ]
        return sorted(rows, key=lambda r: r["snapshot_date"])

    async def save_engine_log(self, log_entry: Dict[str, Any]) -> str:
        await asyncio.sleep(0)
        self.logs.append(dict(log_entry))
        return str(len(self.logs))


@pytest.fixture
def memory_db():
    return InMemoryDB()


# ---------------------------------------------------------------------------
# Model factories
# ---------------------------------------------------------------------------
@pytest.fixture
def make_credential(sample_utc_now) -> Callable[..., PlatformCredential]:
    """Factory for credentials that expire in one hour by default."""

    def _make(platform: Platform = Platform.TWITTER, **overrides: Any) -> PlatformCredential:
        from social_engine.credentials.oauth import required_publish_scopes

        values: Dict[str, Any] = {
            "id": generate_id(),
            "user_id": "user-1",
            "platform": platform,
            "account_name": "brand",
            "account_id": "acct-1",
            "access_token": "access-old",
            "refresh_token": "refresh-old",
            "token_expires_at": sample_utc_now + timedelta(hours=1),
            "scopes": set(required_publish_scopes(platform)),
            "created_at": sample_utc_now - timedelta(days=30),
        }
        values.update(overrides)
        return PlatformCredential(**values)

    return _make


@pytest.fixture
def make_post(sample_utc_now) -> Callable[..., ScheduledPost]:
    """Factory for posts due one minute ago."""

    def _make(platform: Platform = Platform.TWITTER, **overrides: Any) -> ScheduledPost:
        values: Dict[str, Any] = {
            "id": generate_id(),
            "user_id": "user-1",
            "title": "Launch day",
            "description": "Our new product is live.",
            "content_type": ContentType.TEXT,
            "platform": platform,
            "scheduled_date": sample_utc_now - timedelta(minutes=1),
            "status": PostStatus.SCHEDULED,
            "created_at": sample_utc_now - timedelta(days=1),
        }
        values.update(overrides)
        return ScheduledPost(**values)

    return _make


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_http():
    """Factory for ``httpx.AsyncClient`` instances backed by a handler.

    The handler receives each ``httpx.Request`` and returns an
    ``httpx.Response``; every request is also recorded on ``client.requests``.
    """

    def _make(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
        requests: List[httpx.Request] = []

        def _record(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return handler(request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(_record))
        client.requests = requests
        return client

    return _make


@pytest.fixture
def no_sleep():
    """Awaitable sleep that returns immediately and records durations."""
    calls: List[float] = []

    async def _sleep(seconds: float) -> None:
        calls.append(seconds)

    _sleep.calls = calls
    return _sleep


# ---------------------------------------------------------------------------
# Adapters
# ---------------------------------------------------------------------------
@pytest.fixture
def scripted_adapter():
    """Factory for adapter classes that replay scripted outcomes.

    Each outcome is a ``PublishResult`` to return or an exception to raise
    inside ``_publish``; the last outcome repeats.  Calls are recorded on
    ``cls.calls`` as ``(credential, content)`` pairs.
    """

    def _make(target: Platform, *outcomes: Any) -> type:
        from social_engine.adapters.base import PlatformAdapter

        script = list(outcomes)
        calls: List[tuple] = []

        class ScriptedAdapter(PlatformAdapter):
            platform = target
            supported_content = frozenset(ContentType)

            async def _publish(self, content):
                calls.append((self.credential, content))
                outcome = script.pop(0) if len(script) > 1 else script[0]
                if isinstance(outcome, Exception):
                    raise outcome
                return outcome

        ScriptedAdapter.calls = calls
        return ScriptedAdapter

    return _make
