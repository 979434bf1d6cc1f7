"""
Core data models for the publishing engine.

Defines the data structures shared by every component:
- ``Platform``: Supported social networks.
- ``ContentType``: Kind of content a post carries.
- ``PostStatus``: Lifecycle status of a scheduled post.
- ``PublishStatus``: Canonical status returned by platform adapters.
- ``PlatformCredential``: A stored OAuth token set for one account.
- ``ScheduledPost``: The unit of work driven by the dispatch loop.
- ``PostContent``: Adapter input derived from a ``ScheduledPost``.
- ``PublishResult``: The contract returned by every adapter.
- ``PostTiming``: Per-platform timing analysis.
- ``SchedulingSuggestion``: Advisory posting time for one platform.

Row conversion helpers (``from_row`` / ``to_row``) map to and from the
Supabase ``platform_credentials`` and ``scheduled_posts`` tables.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Set

from social_engine.exceptions import ErrorKind
from social_engine.utils import parse_timestamp, to_iso, utc_now


# =============================================================================
# ENUMS
# =============================================================================


class Platform(Enum):
    """Supported social platforms."""

    YOUTUBE = "youtube"
    INSTAGRAM = "instagram"
    TIKTOK = "tiktok"
    FACEBOOK = "facebook"
    TWITTER = "twitter"
    LINKEDIN = "linkedin"


class ContentType(Enum):
    """Kind of content attached to a scheduled post."""

    VIDEO = "video"
    IMAGE = "image"
    TEXT = "text"
    LINK = "link"


class PostStatus(Enum):
    """Lifecycle status of a scheduled post.

    Transitions:
        DRAFT -> SCHEDULED -> SCHEDULED (retry in place)
                           -> PUBLISHED
                           -> CANCELLED
        DRAFT -> CANCELLED
    """

    DRAFT = "draft"
    SCHEDULED = "scheduled"
    PUBLISHED = "published"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (no further transitions allowed)."""
        return self in {PostStatus.PUBLISHED, PostStatus.CANCELLED}

    def can_transition_to(self, target: "PostStatus") -> bool:
        """Check whether moving from this status to *target* is allowed."""
        return target in _ALLOWED_TRANSITIONS[self]


_ALLOWED_TRANSITIONS: Dict[PostStatus, Set[PostStatus]] = {
    PostStatus.DRAFT: {PostStatus.SCHEDULED, PostStatus.CANCELLED},
    PostStatus.SCHEDULED: {
        PostStatus.SCHEDULED,
        PostStatus.PUBLISHED,
        PostStatus.CANCELLED,
    },
    PostStatus.PUBLISHED: set(),
    PostStatus.CANCELLED: set(),
}


class PublishStatus(Enum):
    """Canonical status of a publish attempt as reported by an adapter."""

    PUBLISHED = "published"
    PROCESSING = "processing"
    FAILED = "failed"


# =============================================================================
# PLATFORM CREDENTIAL
# =============================================================================


@dataclass
class PlatformCredential:
    """Stored OAuth token set for one account on one platform.

    Attributes:
        id: Unique identifier (UUID).
        user_id: Owning user.
        platform: Platform the account lives on.
        account_name: Display name / handle of the connected account.
        account_id: Platform-side account identifier (channel id, page id,
            member id, ...).
        access_token: Current OAuth access token.
        refresh_token: Refresh token, when the platform issues one.
        token_expires_at: Expiry of ``access_token``; ``None`` means the
            token does not expire.
        scopes: Granted OAuth scopes.
        metadata: Opaque platform data (e.g. ``page_id`` for Facebook).
        is_active: ``False`` once the credential is unrecoverable or
            disconnected.
    """

    id: str
    user_id: str
    platform: Platform
    account_name: str
    account_id: str
    access_token: str
    refresh_token: Optional[str] = None
    token_expires_at: Optional[datetime] = None
    scopes: Set[str] = field(default_factory=set)
    metadata: Dict[str, Any] = field(default_factory=dict)
    is_active: bool = True
    created_at: datetime = field(default_factory=utc_now)
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PlatformCredential":
        """Build a credential from a ``platform_credentials`` row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            platform=Platform(row["platform"]),
            account_name=row.get("account_name") or "",
            account_id=row.get("account_id") or "",
            access_token=row["access_token"],
            refresh_token=row.get("refresh_token") or None,
            token_expires_at=parse_timestamp(row.get("token_expires_at")),
            scopes=_parse_scopes(row.get("scopes")),
            metadata=dict(row.get("metadata") or {}),
            is_active=bool(row.get("is_active", True)),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
            updated_at=parse_timestamp(row.get("updated_at")),
        )

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a ``platform_credentials`` row dict."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "platform": self.platform.value,
            "account_name": self.account_name,
            "account_id": self.account_id,
            "access_token": self.access_token,
            "refresh_token": self.refresh_token,
            "token_expires_at": to_iso(self.token_expires_at),
            "scopes": sorted(self.scopes),
            "metadata": self.metadata,
            "is_active": self.is_active,
            "created_at": to_iso(self.created_at),
            "updated_at": to_iso(self.updated_at),
        }


def _parse_scopes(value: Any) -> Set[str]:
    """Normalise a scopes column (array or space/comma separated string)."""
    if not value:
        return set()
    if isinstance(value, str):
        return {s for s in value.replace(",", " ").split() if s}
    return {str(s) for s in value if s}


# =============================================================================
# SCHEDULED POST
# =============================================================================


@dataclass
class ScheduledPost:
    """A post scheduled for publication on one platform.

    Attributes:
        id: Unique identifier (UUID).
        user_id: Owning user.
        title: Post title (video title, link title, first line of text).
        description: Post body / caption.
        content_type: Kind of content.
        platform: Target platform.
        scheduled_date: When the post should be published (UTC).
        status: Current lifecycle status.
        content_url: URL of the media or link to publish.
        thumbnail_url: Optional thumbnail / cover image URL.
        tags: Hashtags or keywords.
        retry_count: Number of failed attempts so far.
        max_retries: Attempts allowed before the post is cancelled.
        platform_post_id: Platform identifier, set on success.
        platform_metadata: Result payload (url, status, engagement, ...).
        publishing_error: User-facing error, set on terminal failure.
        published_date: Actual publication timestamp.
        claim_token: Token of the dispatch pass currently holding the post.
        claimed_at: When the current claim was taken.
        scheduling_metadata: How the time was chosen (confidence, rationale).
    """

    # Required fields
    id: str
    user_id: str
    title: str
    content_type: ContentType
    platform: Platform
    scheduled_date: datetime

    # Content
    description: str = ""
    content_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)

    # Status tracking
    status: PostStatus = PostStatus.SCHEDULED
    retry_count: int = 0
    max_retries: int = 3
    platform_post_id: Optional[str] = None
    platform_metadata: Dict[str, Any] = field(default_factory=dict)
    publishing_error: Optional[str] = None
    published_date: Optional[datetime] = None

    # Dispatch claim
    claim_token: Optional[str] = None
    claimed_at: Optional[datetime] = None

    # Metadata
    scheduling_metadata: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=utc_now)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "ScheduledPost":
        """Build a post from a ``scheduled_posts`` row."""
        return cls(
            id=row["id"],
            user_id=row["user_id"],
            title=row.get("title") or "",
            description=row.get("description") or "",
            content_type=ContentType(row["content_type"]),
            platform=Platform(row["platform"]),
            scheduled_date=parse_timestamp(row["scheduled_date"]),
            content_url=row.get("content_url"),
            thumbnail_url=row.get("thumbnail_url"),
            tags=list(row.get("tags") or []),
            status=PostStatus(row.get("status", PostStatus.SCHEDULED.value)),
            retry_count=int(row.get("retry_count") or 0),
            max_retries=int(
                row["max_retries"] if row.get("max_retries") is not None else 3
            ),
            platform_post_id=row.get("platform_post_id"),
            platform_metadata=dict(row.get("platform_metadata") or {}),
            publishing_error=row.get("publishing_error"),
            published_date=parse_timestamp(row.get("published_date")),
            claim_token=row.get("claim_token"),
            claimed_at=parse_timestamp(row.get("claimed_at")),
            scheduling_metadata=dict(row.get("scheduling_metadata") or {}),
            created_at=parse_timestamp(row.get("created_at")) or utc_now(),
        )

    def to_row(self) -> Dict[str, Any]:
        """Serialize to a ``scheduled_posts`` row dict."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "title": self.title,
            "description": self.description,
            "content_type": self.content_type.value,
            "platform": self.platform.value,
            "scheduled_date": to_iso(self.scheduled_date),
            "content_url": self.content_url,
            "thumbnail_url": self.thumbnail_url,
            "tags": list(self.tags),
            "status": self.status.value,
            "retry_count": self.retry_count,
            "max_retries": self.max_retries,
            "platform_post_id": self.platform_post_id,
            "platform_metadata": self.platform_metadata,
            "publishing_error": self.publishing_error,
            "published_date": to_iso(self.published_date),
            "claim_token": self.claim_token,
            "claimed_at": to_iso(self.claimed_at),
            "scheduling_metadata": self.scheduling_metadata,
            "created_at": to_iso(self.created_at),
        }


# =============================================================================
# PUBLISHING CONTRACT
# =============================================================================


@dataclass
class PostContent:
    """Platform-neutral content handed to an adapter."""

    title: str
    description: str
    content_type: ContentType
    media_url: Optional[str] = None
    thumbnail_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    source_post_id: Optional[str] = None

    @classmethod
    def from_post(cls, post: ScheduledPost) -> "PostContent":
        return cls(
            title=post.title,
            description=post.description,
            content_type=post.content_type,
            media_url=post.content_url,
            thumbnail_url=post.thumbnail_url,
            tags=list(post.tags),
            source_post_id=post.id,
        )

    @property
    def text(self) -> str:
        """Title and description joined the way text platforms expect."""
        parts = [p.strip() for p in (self.title, self.description) if p and p.strip()]
        return "\n\n".join(parts)

    def hashtags(self) -> str:
        """Render ``tags`` as a space-separated hashtag string."""
        return " ".join(
            tag if tag.startswith("#") else f"#{tag.replace(' ', '')}"
            for tag in self.tags
            if tag
        )


@dataclass
class PublishResult:
    """Outcome of one publish attempt.

    A successful result (``PUBLISHED`` or ``PROCESSING``) always carries a
    non-empty ``post_id`` and ``url``.  A failed result carries an
    ``error_kind``; ``error`` is the user-facing message and ``detail``
    the raw provider text.
    """

    success: bool
    status: PublishStatus
    post_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[ErrorKind] = None
    detail: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def published(
        cls,
        post_id: str,
        url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "PublishResult":
        _require_identity(post_id, url)
        return cls(
            success=True,
            status=PublishStatus.PUBLISHED,
            post_id=post_id,
            url=url,
            metadata=metadata or {},
        )

    @classmethod
    def processing(
        cls,
        post_id: str,
        url: str,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> "PublishResult":
        """Accepted by the platform but still being processed."""
        _require_identity(post_id, url)
        return cls(
            success=True,
            status=PublishStatus.PROCESSING,
            post_id=post_id,
            url=url,
            metadata=metadata or {},
        )

    @classmethod
    def failed(
        cls,
        kind: ErrorKind,
        error: str,
        detail: Optional[str] = None,
    ) -> "PublishResult":
        return cls(
            success=False,
            status=PublishStatus.FAILED,
            error=error,
            error_kind=kind,
            detail=detail if detail is not None else error,
        )

    @property
    def is_terminal_failure(self) -> bool:
        return (
            not self.success
            and self.error_kind is not None
            and self.error_kind.is_terminal
        )


def _require_identity(post_id: Optional[str], url: Optional[str]) -> None:
    if not post_id or not url:
        raise ValueError(
            f"Successful publish requires post_id and url (got {post_id!r}, {url!r})"
        )


# =============================================================================
# SCHEDULING
# =============================================================================


@dataclass
class PostTiming:
    """Optimal posting time for one platform.

    Attributes:
        platform: Platform analysed.
        optimal_hour: Hour of day, 0-23, in the engine timezone.
        optimal_day: Day of week, 0=Monday .. 6=Sunday.
        confidence: 0-100.
        historical_engagement: Mean engagement of the analysed posts.
        sample_size: Number of posts analysed.
        is_default: ``True`` when the platform default table was used.
    """

    platform: Platform
    optimal_hour: int
    optimal_day: int
    confidence: int
    historical_engagement: float
    sample_size: int = 0
    is_default: bool = False


@dataclass
class SchedulingSuggestion:
    """Advisory posting time for one platform (never persisted as state)."""

    platform: Platform
    suggested_time: datetime
    optimal_hour: int
    optimal_day: int
    confidence: int
    expected_reach: int
    rationale: str
    best_practices: List[str] = field(default_factory=list)
    is_default: bool = False


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "Platform",
    "ContentType",
    "PostStatus",
    "PublishStatus",
    "PlatformCredential",
    "ScheduledPost",
    "PostContent",
    "PublishResult",
    "PostTiming",
    "SchedulingSuggestion",
]
