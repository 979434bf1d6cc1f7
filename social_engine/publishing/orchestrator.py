"""
Publishing orchestrator: one publish attempt for one scheduled post.

``PublishingOrchestrator.publish_post`` runs the attempt end to end:

1. Look up the user's active credentials for the post's platform.
2. Select the first (oldest) one; accounts are not load-balanced.
3. Make it valid through the credential manager.
4. Check the granted scopes cover the platform's publishing scopes.
5. Dispatch to the adapter registered for the platform.
6. Persist the outcome: success -> ``published``; terminal failure ->
   ``cancelled``.  Transient failures are left ``scheduled`` for the
   dispatch loop's retry bookkeeping.

Every status write is a compare-and-set on ``status = 'scheduled'`` (and
on the dispatch claim token when one is held), so a post already moved to
a terminal state by a concurrent pass is never overwritten.
"""

import asyncio
import logging
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Type

import httpx

from social_engine.adapters import ADAPTERS, PlatformAdapter, get_adapter_class
from social_engine.adapters.base import Sleep
from social_engine.credentials.lifecycle import CredentialManager
from social_engine.credentials.oauth import required_publish_scopes
from social_engine.database import SupabaseDB
from social_engine.exceptions import (
    ErrorKind,
    InsufficientScopeError,
    NoAccountConnectedError,
    PublishingError,
    ValidationError,
)
from social_engine.messages import DEFAULT_LOCALE, format_error
from social_engine.models import (
    Platform,
    PlatformCredential,
    PostContent,
    PostStatus,
    PublishResult,
    ScheduledPost,
)
from social_engine.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class PublishingOrchestrator:
    """Publishes scheduled posts and records their outcome.

    Args:
        db: Database client (:class:`~social_engine.database.SupabaseDB`).
        credentials: Credential lifecycle manager.
        http: Shared ``httpx.AsyncClient`` handed to adapters.
        clock: Returns the current UTC time.
        locale: Language of user-facing error messages.
        adapters: Platform -> adapter class registry (defaults to
            :data:`~social_engine.adapters.ADAPTERS`).
        sleep: Awaitable sleep handed to adapters for status polling.
    """

    def __init__(
        self,
        db: SupabaseDB,
        credentials: CredentialManager,
        http: httpx.AsyncClient,
        clock: Clock = utc_now,
        locale: str = DEFAULT_LOCALE,
        adapters: Optional[Mapping[Platform, Type[PlatformAdapter]]] = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.db = db
        self.credentials = credentials
        self.http = http
        self.clock = clock
        self.locale = locale
        self.adapters = dict(adapters or ADAPTERS)
        self.sleep = sleep

    # ================================================================
    # PUBLISH
    # ================================================================

    async def publish_post(self, post: ScheduledPost) -> PublishResult:
        """Run one publish attempt for *post* and persist its outcome.

        Args:
            post: A post in ``scheduled`` status.  ``post.claim_token`` is
                honoured when set by the dispatch loop.

        Returns:
            The attempt's ``PublishResult``.  On failure ``error`` holds the
            localized message and ``detail`` the raw cause.

        Raises:
            ValidationError: If *post* is not in a status that may move to
                ``published`` (drafts and terminal posts).
            DatabaseError / postgrest errors: Datastore failures propagate.
        """
        if not post.status.can_transition_to(PostStatus.PUBLISHED):
            raise ValidationError(
                f"Post {post.id} is {post.status.value}; only scheduled posts can be published"
            )

        logger.info(
            "[PUBLISH] Publishing post %s to %s (attempt %d/%d)",
            post.id,
            post.platform.value,
            post.retry_count + 1,
            post.max_retries,
        )

        credential: Optional[PlatformCredential] = None
        try:
            credential = await self._select_credential(post)
            credential = await self.credentials.ensure_valid(credential)
            self._check_scopes(credential)
            result = await self._dispatch(post, credential)
        except PublishingError as exc:
            result = PublishResult.failed(exc.kind, str(exc))

        if not result.success:
            result = self._localize(post, result)

        await self._record_outcome(post, result, credential)
        return result

    async def _select_credential(self, post: ScheduledPost) -> PlatformCredential:
        """Steps 1-2: first active credential for (user, platform)."""
        rows = await self.db.get_active_credentials(post.user_id, post.platform.value)
        if not rows:
            raise NoAccountConnectedError(post.user_id, post.platform.value)
        if len(rows) > 1:
            logger.debug(
                "[PUBLISH] User %s has %d active %s accounts, using the first",
                post.user_id,
                len(rows),
                post.platform.value,
            )
        return PlatformCredential.from_row(rows[0])

    def _check_scopes(self, credential: PlatformCredential) -> None:
        """Step 4: granted scopes must cover the publishing scopes."""
        missing = required_publish_scopes(credential.platform) - credential.scopes
        if missing:
            raise InsufficientScopeError(credential.platform.value, missing)

    async def _dispatch(
        self, post: ScheduledPost, credential: PlatformCredential
    ) -> PublishResult:
        """Step 5: hand the content to the platform adapter."""
        try:
            adapter_cls = get_adapter_class(post.platform, self.adapters)
        except ValueError as exc:
            raise PublishingError(str(exc), kind=ErrorKind.UNSUPPORTED_CONTENT) from exc
        adapter = adapter_cls(credential, self.http, sleep=self.sleep)
        return await adapter.publish(PostContent.from_post(post))

    def _localize(self, post: ScheduledPost, result: PublishResult) -> PublishResult:
        kind = result.error_kind or ErrorKind.PLATFORM_API_ERROR
        detail = result.detail or result.error
        return replace(
            result,
            error_kind=kind,
            error=format_error(kind, post.platform.value, detail, self.locale),
            detail=detail,
        )

    # ================================================================
    # OUTCOME
    # ================================================================

    async def _record_outcome(
        self,
        post: ScheduledPost,
        result: PublishResult,
        credential: Optional[PlatformCredential],
    ) -> None:
        """Step 6: write the result back onto the post row."""
        if result.success:
            now = self.clock()
            metadata = self._result_metadata(result, credential, now)
            applied = await self.db.mark_published(
                post.id,
                platform_post_id=result.post_id,
                platform_metadata=metadata,
                published_date=now,
                claim_token=post.claim_token,
            )
            if applied:
                logger.info(
                    "[PUBLISH] Post %s published on %s: %s",
                    post.id,
                    post.platform.value,
                    result.url,
                )
            else:
                # Published on the platform but the row moved on meanwhile
                logger.error(
                    "[PUBLISH] Post %s published as %s but its row is no longer "
                    "scheduled/claimed; status not updated",
                    post.id,
                    result.post_id,
                )
            return

        if result.is_terminal_failure:
            applied = await self.db.mark_cancelled(
                post.id,
                error=result.error,
                claim_token=post.claim_token,
            )
            logger.warning(
                "[PUBLISH] Post %s cancelled (%s)%s: %s",
                post.id,
                result.error_kind.value,
                "" if applied else " [row already transitioned]",
                result.detail,
            )
            return

        logger.warning(
            "[PUBLISH] Post %s transient failure (%s): %s",
            post.id,
            result.error_kind.value if result.error_kind else "unknown",
            result.detail,
        )

    @staticmethod
    def _result_metadata(
        result: PublishResult,
        credential: Optional[PlatformCredential],
        now: datetime,
    ) -> Dict[str, Any]:
        metadata: Dict[str, Any] = dict(result.metadata)
        metadata.update({
            "url": result.url,
            "status": result.status.value,
            "published_at": now.isoformat(),
        })
        if credential is not None:
            metadata["credential_id"] = credential.id
            metadata["account_name"] = credential.account_name
        return metadata


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "PublishingOrchestrator",
]
