"""
Scheduling intelligence: when to publish on each platform.

``SchedulingEngine`` looks at a user's published posts of the last
``history_days`` days on a platform and recommends a posting slot:

- Fewer than ``min_data_points`` posts: the platform default slot from
  ``DEFAULT_TIMINGS`` with ``default_confidence``.
- Otherwise engagement is averaged per local hour (0-23) and per weekday
  (0=Monday .. 6=Sunday) and the best bucket of each dimension is taken
  independently.  The two maxima are not jointly optimised, so the
  recommended (hour, day) pair may never have been observed together.
  Confidence is ``min(100, posts * 10)``.

Suggestions are advisory: ``suggest`` never writes.  Only
``schedule_post_intelligently`` creates posts, at the suggested times.
"""

import logging
from datetime import datetime, time, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pytz

from social_engine.config import Settings
from social_engine.database import SupabaseDB
from social_engine.exceptions import ConfigurationError, ValidationError
from social_engine.messages import DEFAULT_LOCALE, best_practices, format_rationale
from social_engine.models import (
    ContentType,
    Platform,
    PostTiming,
    ScheduledPost,
    SchedulingSuggestion,
)
from social_engine.utils import Clock, generate_id, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

# ----------------------------------------------------------------
# Platform defaults (day: 0=Monday), used below the data threshold
# ----------------------------------------------------------------
DEFAULT_TIMINGS: Dict[Platform, Tuple[int, int]] = {
    # platform: (day_of_week, hour)
    Platform.YOUTUBE: (1, 14),
    Platform.INSTAGRAM: (0, 11),
    Platform.TIKTOK: (3, 19),
    Platform.TWITTER: (1, 9),
    Platform.FACEBOOK: (2, 13),
    Platform.LINKEDIN: (0, 8),
}
DEFAULT_ENGAGEMENT = 50.0

BASE_REACH: Dict[Platform, int] = {
    Platform.YOUTUBE: 5000,
    Platform.INSTAGRAM: 2000,
    Platform.TIKTOK: 8000,
    Platform.TWITTER: 1500,
    Platform.FACEBOOK: 3000,
    Platform.LINKEDIN: 1000,
}

# Metadata counters summed when a post carries no ``engagement`` figure
_ENGAGEMENT_COUNTERS = ("likes", "comments", "shares")


def post_engagement(platform_metadata: Optional[Dict[str, Any]]) -> float:
    """Engagement figure of one published post.

    Uses ``engagement`` when present, else the sum of likes, comments and
    shares.  A post with no counters at all weighs 1 so that posting
    frequency alone still shapes the buckets.
    """
    metadata = platform_metadata or {}
    value = metadata.get("engagement")
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        return float(value)

    counters = [
        metadata[key]
        for key in _ENGAGEMENT_COUNTERS
        if isinstance(metadata.get(key), (int, float))
    ]
    if counters:
        return float(sum(counters))
    return 1.0


def _argmax(values: List[float]) -> int:
    """Index of the largest value; ties go to the lowest index."""
    return values.index(max(values))


def _bucket_means(totals: List[float], counts: List[int]) -> List[float]:
    """Mean engagement per bucket; buckets without posts rank below any observed one."""
    return [
        total / count if count else float("-inf")
        for total, count in zip(totals, counts)
    ]


class SchedulingEngine:
    """Recommends posting times from historical engagement.

    Args:
        db: Database client (:class:`~social_engine.database.SupabaseDB`).
        clock: Returns the current UTC time.
        timezone: IANA name of the zone hours and weekdays are counted in.
        locale: Language of rationales and best practices.
        history_days: How far back published posts are analysed.
        min_data_points: Posts needed before history replaces the defaults.
        default_confidence: Confidence reported for default slots.
        default_max_retries: ``max_retries`` of posts created by
            :meth:`schedule_post_intelligently`.
    """

    def __init__(
        self,
        db: SupabaseDB,
        clock: Clock = utc_now,
        timezone: str = "UTC",
        locale: str = DEFAULT_LOCALE,
        history_days: int = 90,
        min_data_points: int = 5,
        default_confidence: int = 60,
        default_max_retries: int = 3,
    ) -> None:
        try:
            self.tz = pytz.timezone(timezone)
        except pytz.UnknownTimeZoneError as exc:
            raise ConfigurationError(f"Unknown timezone: {timezone}") from exc
        self.db = db
        self.clock = clock
        self.locale = locale
        self.history_days = history_days
        self.min_data_points = min_data_points
        self.default_confidence = default_confidence
        self.default_max_retries = default_max_retries

    @classmethod
    def from_settings(cls, db: SupabaseDB, settings: Settings, **kwargs: Any) -> "SchedulingEngine":
        return cls(
            db,
            timezone=settings.timezone,
            locale=settings.locale,
            history_days=settings.scheduling.history_days,
            min_data_points=settings.scheduling.min_data_points,
            default_confidence=settings.scheduling.default_confidence,
            default_max_retries=settings.dispatch.default_max_retries,
            **kwargs,
        )

    # ================================================================
    # ANALYSIS
    # ================================================================

    async def analyze_timing(self, user_id: str, platform: Platform) -> PostTiming:
        """Best (hour, weekday) for *platform* from the user's history."""
        since = self.clock() - timedelta(days=self.history_days)
        rows = await self.db.get_published_posts(user_id, platform.value, since)

        samples: List[Tuple[datetime, float]] = []
        for row in rows:
            published = parse_timestamp(row.get("published_date"))
            if published is None:
                continue
            samples.append((published, post_engagement(row.get("platform_metadata"))))

        if len(samples) < self.min_data_points:
            logger.debug(
                "[SCHEDULING] %d %s post(s) for user %s, using default timing",
                len(samples),
                platform.value,
                user_id,
            )
            return self.default_timing(platform)

        hourly_totals = [0.0] * 24
        hourly_counts = [0] * 24
        daily_totals = [0.0] * 7
        daily_counts = [0] * 7
        for published, engagement in samples:
            local = published.astimezone(self.tz)
            hourly_totals[local.hour] += engagement
            hourly_counts[local.hour] += 1
            daily_totals[local.weekday()] += engagement
            daily_counts[local.weekday()] += 1

        hourly = _bucket_means(hourly_totals, hourly_counts)
        daily = _bucket_means(daily_totals, daily_counts)

        timing = PostTiming(
            platform=platform,
            optimal_hour=_argmax(hourly),
            optimal_day=_argmax(daily),
            confidence=min(100, len(samples) * 10),
            historical_engagement=max(hourly),
            sample_size=len(samples),
        )
        logger.info(
            "[SCHEDULING] %s: day=%d hour=%d confidence=%d (%d posts)",
            platform.value,
            timing.optimal_day,
            timing.optimal_hour,
            timing.confidence,
            timing.sample_size,
        )
        return timing

    def default_timing(self, platform: Platform) -> PostTiming:
        day, hour = DEFAULT_TIMINGS[platform]
        return PostTiming(
            platform=platform,
            optimal_hour=hour,
            optimal_day=day,
            confidence=self.default_confidence,
            historical_engagement=DEFAULT_ENGAGEMENT,
            is_default=True,
        )

    def next_occurrence(self, hour: int, day: int, now: Optional[datetime] = None) -> datetime:
        """Next instant strictly after *now* that falls on *day* at *hour*:00 local.

        Returns:
            A timezone-aware UTC datetime.
        """
        now = now or self.clock()
        local_now = now.astimezone(self.tz)
        days_ahead = (day - local_now.weekday()) % 7

        for extra_weeks in (0, 1):
            date = local_now.date() + timedelta(days=days_ahead + 7 * extra_weeks)
            candidate = self.tz.localize(datetime.combine(date, time(hour)))
            candidate = self.tz.normalize(candidate).astimezone(pytz.utc)
            if candidate > now:
                return candidate
        raise AssertionError("unreachable: a slot one week ahead is always in the future")

    def expected_reach(self, timing: PostTiming) -> int:
        """Platform base reach boosted by up to 50% with confidence."""
        multiplier = 1 + (timing.confidence / 100) * 0.5
        return int(round(BASE_REACH[timing.platform] * multiplier))

    # ================================================================
    # SUGGESTIONS
    # ================================================================

    async def suggest(
        self, platforms: Iterable[Platform], user_id: str
    ) -> List[SchedulingSuggestion]:
        """One advisory suggestion per platform, most confident first."""
        now = self.clock()
        suggestions: List[SchedulingSuggestion] = []
        for platform in platforms:
            timing = await self.analyze_timing(user_id, platform)
            suggestions.append(
                SchedulingSuggestion(
                    platform=platform,
                    suggested_time=self.next_occurrence(timing.optimal_hour, timing.optimal_day, now),
                    optimal_hour=timing.optimal_hour,
                    optimal_day=timing.optimal_day,
                    confidence=timing.confidence,
                    expected_reach=self.expected_reach(timing),
                    rationale=format_rationale(
                        platform.value,
                        timing.optimal_hour,
                        timing.optimal_day,
                        timing.confidence,
                        timing.sample_size,
                        timing.is_default,
                        self.locale,
                    ),
                    best_practices=best_practices(platform.value, self.locale),
                    is_default=timing.is_default,
                )
            )
        suggestions.sort(key=lambda s: s.confidence, reverse=True)
        return suggestions

    async def schedule_post_intelligently(
        self,
        user_id: str,
        post_data: Dict[str, Any],
        platforms: Iterable[Platform],
    ) -> List[Tuple[ScheduledPost, SchedulingSuggestion]]:
        """Create one ``scheduled`` post per platform at its suggested time.

        Args:
            user_id: Owner of the posts.
            post_data: ``title`` and ``content_type`` (required), plus
                optional ``description``, ``content_url``, ``thumbnail_url``
                and ``tags``.
            platforms: Target platforms.

        Returns:
            ``(post, suggestion)`` pairs for the posts that were stored.
            A platform whose insert fails is logged and left out.

        Raises:
            ValidationError: If ``title`` or ``content_type`` is missing or
                invalid.
        """
        title = post_data.get("title")
        if not title:
            raise ValidationError("post_data must have a 'title'")
        try:
            content_type = ContentType(post_data.get("content_type"))
        except ValueError as exc:
            raise ValidationError(
                f"Invalid content_type: {post_data.get('content_type')!r}"
            ) from exc

        created: List[Tuple[ScheduledPost, SchedulingSuggestion]] = []
        for suggestion in await self.suggest(platforms, user_id):
            post = ScheduledPost(
                id=generate_id(),
                user_id=user_id,
                title=title,
                description=post_data.get("description") or "",
                content_type=content_type,
                platform=suggestion.platform,
                scheduled_date=suggestion.suggested_time,
                content_url=post_data.get("content_url"),
                thumbnail_url=post_data.get("thumbnail_url"),
                tags=list(post_data.get("tags") or []),
                max_retries=self.default_max_retries,
                scheduling_metadata={
                    "confidence": suggestion.confidence,
                    "expected_reach": suggestion.expected_reach,
                    "rationale": suggestion.rationale,
                    "is_intelligent_scheduling": True,
                },
                created_at=self.clock(),
            )
            try:
                row = await self.db.create_scheduled_post(post.to_row())
            except Exception:
                logger.exception(
                    "[SCHEDULING] Failed to schedule %s post for user %s",
                    suggestion.platform.value,
                    user_id,
                )
                continue
            created.append((ScheduledPost.from_row(row), suggestion))
            logger.info(
                "[SCHEDULING] Scheduled %s post %s at %s (confidence %d)",
                suggestion.platform.value,
                post.id,
                suggestion.suggested_time.isoformat(),
                suggestion.confidence,
            )
        return created


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "SchedulingEngine",
    "DEFAULT_TIMINGS",
    "DEFAULT_ENGAGEMENT",
    "BASE_REACH",
    "post_engagement",
]
