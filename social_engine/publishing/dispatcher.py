"""
Scheduled dispatch loop: publishes due posts and runs the retry state machine.

``DispatchLoop.run_once`` is one pass, safe to trigger from cron or from the
built-in periodic loop (``start`` / ``stop``):

1. Expire unclaimed ``scheduled`` posts that fell out of their window
   (``PUBLISH_WINDOW_MISSED``): never-attempted posts after ``due_window``,
   posts that already failed transiently after ``retry_window``.
2. Select due posts: ``scheduled``, ``now - due_window <= scheduled_date <=
   now``, plus retried posts with ``now - retry_window <= scheduled_date``,
   not held by a live claim, oldest first.
3. Claim each post with a compare-and-set; a lost claim skips the post.
4. Run the publishing orchestrator.
5. On a transient failure either record a retry (``retry_count + 1``, post
   stays ``scheduled``) or, once ``max_retries`` attempts were made, cancel it.

State machine::

    scheduled --success--------------------------------> published
    scheduled --terminal failure-----------------------> cancelled
    scheduled --transient, retry_count + 1 <  max------> scheduled (retry_count + 1)
    scheduled --transient, retry_count + 1 >= max------> cancelled

Every write is conditional on ``status = 'scheduled'`` and on the claim
token, so concurrent passes never produce two terminal transitions.
"""

import asyncio
import logging
from dataclasses import asdict, dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from social_engine.config import Settings
from social_engine.database import SupabaseDB
from social_engine.exceptions import ErrorKind
from social_engine.logging import DispatchRunLogger, EngineLogger
from social_engine.messages import DEFAULT_LOCALE, format_error
from social_engine.models import Platform, PublishResult, ScheduledPost
from social_engine.publishing.orchestrator import PublishingOrchestrator
from social_engine.utils import Clock, generate_id, utc_now

logger = logging.getLogger(__name__)

# Per-post outcomes of one pass
PUBLISHED = "published"
RETRY = "retry"
CANCELLED = "cancelled"
SKIPPED = "skipped"
ERROR = "error"


@dataclass
class DispatchSummary:
    """Counts of what one dispatch pass did."""

    run_id: str
    due: int = 0
    published: int = 0
    retried: int = 0
    cancelled: int = 0
    expired: int = 0
    skipped: int = 0
    errored: int = 0

    def add(self, outcome: str) -> None:
        if outcome == PUBLISHED:
            self.published += 1
        elif outcome == RETRY:
            self.retried += 1
        elif outcome == CANCELLED:
            self.cancelled += 1
        elif outcome == SKIPPED:
            self.skipped += 1
        else:
            self.errored += 1

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class DispatchLoop:
    """Periodic publisher of due scheduled posts.

    Args:
        db: Database client (:class:`~social_engine.database.SupabaseDB`).
        orchestrator: Runs one publish attempt per post.
        clock: Returns the current UTC time.
        due_window: How far back a scheduled_date may lie and still be due
            for a first attempt.
        retry_window: How far back a scheduled_date may lie and still be
            retried after a transient failure.
        claim_lease: How long a claim protects a post from other passes.
        batch_size: Maximum posts selected per pass.
        max_concurrency: Posts processed in parallel (1 = sequential).
        expire_stale: Cancel posts that fell out of the due window.
        check_interval_seconds: Sleep between passes in :meth:`start`.
        locale: Language of the window-missed message.
        event_logger: Optional structured event log for per-pass records.
        sleep: Awaitable sleep used between passes.
    """

    def __init__(
        self,
        db: SupabaseDB,
        orchestrator: PublishingOrchestrator,
        clock: Clock = utc_now,
        due_window: timedelta = timedelta(minutes=5),
        retry_window: timedelta = timedelta(hours=1),
        claim_lease: timedelta = timedelta(minutes=10),
        batch_size: int = 50,
        max_concurrency: int = 1,
        expire_stale: bool = True,
        check_interval_seconds: int = 60,
        locale: str = DEFAULT_LOCALE,
        event_logger: Optional[EngineLogger] = None,
        sleep: Any = asyncio.sleep,
    ) -> None:
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be >= 1")
        if retry_window < due_window:
            raise ValueError("retry_window must be >= due_window")
        self.db = db
        self.orchestrator = orchestrator
        self.clock = clock
        self.due_window = due_window
        self.retry_window = retry_window
        self.claim_lease = claim_lease
        self.batch_size = batch_size
        self.max_concurrency = max_concurrency
        self.expire_stale = expire_stale
        self.check_interval_seconds = check_interval_seconds
        self.locale = locale
        self.event_logger = event_logger
        self.sleep = sleep
        self._running: bool = False

    @classmethod
    def from_settings(
        cls,
        db: SupabaseDB,
        orchestrator: PublishingOrchestrator,
        settings: Settings,
        **kwargs: Any,
    ) -> "DispatchLoop":
        """Build a loop from the ``dispatch`` section of *settings*."""
        dispatch = settings.dispatch
        return cls(
            db,
            orchestrator,
            due_window=timedelta(minutes=dispatch.due_window_minutes),
            retry_window=timedelta(minutes=dispatch.retry_window_minutes),
            claim_lease=timedelta(minutes=dispatch.claim_lease_minutes),
            batch_size=dispatch.batch_size,
            max_concurrency=dispatch.max_concurrency,
            expire_stale=dispatch.expire_stale,
            check_interval_seconds=dispatch.interval_seconds,
            locale=settings.locale,
            **kwargs,
        )

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Run :meth:`run_once` every ``check_interval_seconds`` until stopped."""
        self._running = True
        logger.info(
            "[DISPATCH] Dispatch loop started (interval=%ds, concurrency=%d)",
            self.check_interval_seconds,
            self.max_concurrency,
        )

        while self._running:
            try:
                await self.run_once()
            except asyncio.CancelledError:
                logger.info("[DISPATCH] Dispatch loop cancelled")
                break
            except Exception:
                logger.exception("[DISPATCH] Unexpected error in dispatch pass")

            if not self._running:
                break
            try:
                await self.sleep(self.check_interval_seconds)
            except asyncio.CancelledError:
                logger.info("[DISPATCH] Dispatch loop sleep cancelled")
                break

        logger.info("[DISPATCH] Dispatch loop stopped")

    async def stop(self) -> None:
        """Ask :meth:`start` to exit after the current pass."""
        self._running = False
        logger.info("[DISPATCH] Dispatch loop stop requested")

    @property
    def is_running(self) -> bool:
        return self._running

    # ================================================================
    # ONE PASS
    # ================================================================

    async def run_once(self) -> DispatchSummary:
        """Run one dispatch pass.

        Returns:
            A :class:`DispatchSummary` with per-outcome counts.

        Raises:
            DatabaseError / postgrest errors: When expiry or the due-post
                query fails.  Failures while processing a single post are
                logged and counted as ``errored`` instead.
        """
        run_id = generate_id()
        now = self.clock()
        window_start = now - self.due_window
        retry_window_start = now - self.retry_window
        lease_cutoff = now - self.claim_lease
        summary = DispatchSummary(run_id=run_id)
        run_log = (
            DispatchRunLogger(run_id, self.event_logger)
            if self.event_logger is not None
            else None
        )

        if self.expire_stale:
            summary.expired = await self._expire_missed(
                window_start, retry_window_start, lease_cutoff, run_log
            )

        retries = await self.db.get_due_retries(
            retry_window_start, window_start, lease_cutoff, limit=self.batch_size
        )
        fresh = await self.db.get_due_posts(
            window_start, now, lease_cutoff, limit=self.batch_size
        )
        # Retries are older than every fresh row, so this keeps oldest first
        rows = (retries + fresh)[: self.batch_size]
        summary.due = len(rows)
        if rows:
            logger.info("[DISPATCH] %d post(s) due (run %s)", len(rows), run_id)

        semaphore = asyncio.Semaphore(self.max_concurrency)

        async def _bounded(row: Dict[str, Any]) -> str:
            async with semaphore:
                return await self._process_row(row, run_log)

        for outcome in await asyncio.gather(*(_bounded(row) for row in rows)):
            summary.add(outcome)

        if run_log is not None:
            await run_log.finish()

        if rows or summary.expired:
            logger.info(
                "[DISPATCH] Pass %s: published=%d retried=%d cancelled=%d "
                "expired=%d skipped=%d errored=%d",
                run_id,
                summary.published,
                summary.retried,
                summary.cancelled,
                summary.expired,
                summary.skipped,
                summary.errored,
            )
        return summary

    async def _process_row(
        self, row: Dict[str, Any], run_log: Optional[DispatchRunLogger]
    ) -> str:
        post_id = row.get("id", "?")
        try:
            post = ScheduledPost.from_row(row)
            return await self.process_post(post, run_log)
        except Exception as exc:
            # The claim (if taken) lapses with the lease; the post is retried
            logger.exception("[DISPATCH] Failed to process post %s", post_id)
            if run_log is not None:
                await run_log.record(post_id, row.get("platform"), ERROR, str(exc), error=exc)
            return ERROR

    async def process_post(
        self,
        post: ScheduledPost,
        run_log: Optional[DispatchRunLogger] = None,
    ) -> str:
        """Claim *post*, publish it and apply the retry state machine.

        Returns:
            One of ``"published"``, ``"retry"``, ``"cancelled"`` or
            ``"skipped"`` (claim or bookkeeping write lost to another pass).
        """
        token = generate_id()
        claimed_at = self.clock()
        claimed = await self.db.claim_post(
            post.id, token, claimed_at, claimed_at - self.claim_lease
        )
        if not claimed:
            logger.info("[DISPATCH] Post %s already claimed or transitioned, skipping", post.id)
            await self._record(run_log, post, SKIPPED, "claim lost")
            return SKIPPED

        post = replace(post, claim_token=token, claimed_at=claimed_at)
        result = await self.orchestrator.publish_post(post)

        if result.success:
            await self._record(run_log, post, PUBLISHED, result.url)
            return PUBLISHED
        if result.is_terminal_failure:
            await self._record(run_log, post, CANCELLED, result.error)
            return CANCELLED

        outcome = await self._handle_transient(post, result)
        await self._record(run_log, post, outcome, result.error)
        return outcome

    async def _handle_transient(self, post: ScheduledPost, result: PublishResult) -> str:
        attempts = post.retry_count + 1
        error = result.error or format_error(
            ErrorKind.PLATFORM_API_ERROR, post.platform.value, locale=self.locale
        )

        if attempts >= post.max_retries:
            applied = await self.db.mark_cancelled(
                post.id, error, claim_token=post.claim_token, retry_count=attempts
            )
            if applied:
                logger.warning(
                    "[DISPATCH] Post %s cancelled after %d/%d attempts",
                    post.id,
                    attempts,
                    post.max_retries,
                )
                return CANCELLED
        else:
            applied = await self.db.record_retry(
                post.id, post.retry_count, error, claim_token=post.claim_token
            )
            if applied:
                logger.info(
                    "[DISPATCH] Post %s will be retried (attempt %d/%d failed)",
                    post.id,
                    attempts,
                    post.max_retries,
                )
                return RETRY

        logger.warning(
            "[DISPATCH] Post %s changed while publishing; retry bookkeeping skipped",
            post.id,
        )
        return SKIPPED

    async def _expire_missed(
        self,
        window_start: datetime,
        retry_window_start: datetime,
        lease_cutoff: datetime,
        run_log: Optional[DispatchRunLogger],
    ) -> int:
        expired = 0
        for platform in Platform:
            message = format_error(
                ErrorKind.PUBLISH_WINDOW_MISSED, platform.value, locale=self.locale
            )
            rows = await self.db.expire_stale_posts(
                window_start, lease_cutoff, message, platform=platform.value
            )
            rows += await self.db.expire_stale_posts(
                retry_window_start,
                lease_cutoff,
                message,
                platform=platform.value,
                retried=True,
            )
            for row in rows:
                logger.warning(
                    "[DISPATCH] Post %s missed its publish window (scheduled %s)",
                    row.get("id"),
                    row.get("scheduled_date"),
                )
                if run_log is not None:
                    await run_log.record(row.get("id"), platform.value, "expired", message)
            expired += len(rows)
        return expired

    @staticmethod
    async def _record(
        run_log: Optional[DispatchRunLogger],
        post: ScheduledPost,
        outcome: str,
        detail: Optional[str],
    ) -> None:
        if run_log is not None:
            await run_log.record(post.id, post.platform.value, outcome, detail)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "DispatchLoop",
    "DispatchSummary",
]
