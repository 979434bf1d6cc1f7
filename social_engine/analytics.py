"""
Account statistics snapshots.

``AccountStatsService.refresh_all`` walks a user's active YouTube
credentials, makes each one valid, reads the channel statistics through
the YouTube adapter and upserts one ``social_analytics_snapshots`` row per
credential per day.  A failing credential is logged and counted; it never
stops the others.  ``get_history`` reads the stored snapshots back.
"""

import logging
from contextlib import nullcontext
from dataclasses import dataclass, field
from datetime import timedelta
from typing import Any, Dict, List, Optional

import httpx

from social_engine.adapters.youtube import YouTubeAdapter
from social_engine.credentials.lifecycle import CredentialManager
from social_engine.database import SupabaseDB, validate_positive
from social_engine.exceptions import PublishingError
from social_engine.logging import ComponentLogger, EngineLogger, LogComponent
from social_engine.models import Platform, PlatformCredential
from social_engine.utils import Clock, utc_now

logger = logging.getLogger(__name__)


@dataclass
class StatsRefreshReport:
    """Outcome of one ``refresh_all`` call."""

    refreshed: int = 0
    failed: int = 0
    errors: Dict[str, str] = field(default_factory=dict)
    snapshots: List[Dict[str, Any]] = field(default_factory=list)


class AccountStatsService:
    """Stores daily channel statistics for connected YouTube accounts.

    Args:
        db: Database client.
        credentials: Credential lifecycle manager.
        http: Shared ``httpx.AsyncClient``.
        clock: Returns the current UTC time.
        event_logger: Optional structured event log; refreshes are timed.
    """

    def __init__(
        self,
        db: SupabaseDB,
        credentials: CredentialManager,
        http: httpx.AsyncClient,
        clock: Clock = utc_now,
        event_logger: Optional[EngineLogger] = None,
    ) -> None:
        self.db = db
        self.credentials = credentials
        self.http = http
        self.clock = clock
        self.log = (
            ComponentLogger(LogComponent.ANALYTICS, event_logger)
            if event_logger is not None
            else None
        )

    async def refresh_all(self, user_id: str) -> StatsRefreshReport:
        """Snapshot every active YouTube account of *user_id*."""
        report = StatsRefreshReport()
        rows = await self.db.get_active_credentials(user_id, Platform.YOUTUBE.value)

        for row in rows:
            credential = PlatformCredential.from_row(row)
            timed = (
                self.log.timed(f"Channel stats for {credential.account_name}")
                if self.log is not None
                else nullcontext()
            )
            try:
                async with timed:
                    snapshot = await self._refresh_one(credential)
            except (PublishingError, httpx.HTTPError) as exc:
                report.failed += 1
                report.errors[credential.id] = str(exc)
                logger.warning(
                    "[ANALYTICS] Stats refresh failed for credential %s: %s",
                    credential.id,
                    exc,
                )
                continue
            report.refreshed += 1
            report.snapshots.append(snapshot)

        logger.info(
            "[ANALYTICS] User %s: %d snapshot(s) stored, %d failed",
            user_id,
            report.refreshed,
            report.failed,
        )
        return report

    async def get_history(
        self,
        user_id: str,
        days: int = 30,
        platform: Optional[Platform] = None,
    ) -> List[Dict[str, Any]]:
        """Snapshots of the last *days* days, oldest first.

        Raises:
            ValidationError: If *days* is not positive.
        """
        validate_positive(days, "days")
        since = self.clock().date() - timedelta(days=days)
        return await self.db.get_analytics_history(
            user_id, since, platform=platform.value if platform else None
        )

    async def _refresh_one(self, credential: PlatformCredential) -> Dict[str, Any]:
        credential = await self.credentials.ensure_valid(credential)
        stats = await YouTubeAdapter(credential, self.http).get_channel_stats()
        now = self.clock()
        snapshot = {
            "credential_id": credential.id,
            "user_id": credential.user_id,
            "platform": credential.platform.value,
            "snapshot_date": now.date().isoformat(),
            "followers": stats["subscriber_count"],
            "total_views": stats["view_count"],
            "total_posts": stats["video_count"],
            "metadata": {"channel_id": stats["channel_id"], "title": stats["title"]},
            "captured_at": now.isoformat(),
        }
        await self.db.upsert_analytics_snapshot(snapshot)
        return snapshot


__all__ = ["AccountStatsService", "StatsRefreshReport"]
