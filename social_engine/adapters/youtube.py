"""
YouTube adapter: resumable video upload through the Data API v3.

Sequence:
    1. POST the video resource to the resumable upload endpoint with
       ``X-Upload-Content-Length`` / ``X-Upload-Content-Type``; the upload
       session URL comes back in the ``Location`` header.
    2. PUT the video bytes to the session URL; the response is the video
       resource.
    3. Optionally upload a custom thumbnail (best effort, the video is
       already live at that point).

Also exposes channel statistics for the analytics refresh.
"""

import logging
from typing import Any, Dict

import httpx

from social_engine.adapters.base import PlatformAdapter
from social_engine.exceptions import PlatformAPIError, PublishingError
from social_engine.models import ContentType, Platform, PostContent, PublishResult

logger = logging.getLogger(__name__)

UPLOAD_URL = "https://www.googleapis.com/upload/youtube/v3/videos"
THUMBNAIL_URL = "https://www.googleapis.com/upload/youtube/v3/thumbnails/set"
CHANNELS_URL = "https://www.googleapis.com/youtube/v3/channels"

MAX_TITLE_LENGTH = 100
MAX_DESCRIPTION_LENGTH = 5000
DEFAULT_CATEGORY_ID = "22"  # People & Blogs


def watch_url(video_id: str) -> str:
    return f"https://www.youtube.com/watch?v={video_id}"


class YouTubeAdapter(PlatformAdapter):
    """Publishes videos to the credential's YouTube channel."""

    platform = Platform.YOUTUBE
    supported_content = frozenset({ContentType.VIDEO})

    async def _publish(self, content: PostContent) -> PublishResult:
        video_bytes, mime = await self._fetch_media(self._media_url(content))

        session_url = await self._start_upload_session(content, len(video_bytes), mime)
        video = await self._request_json(
            "PUT",
            session_url,
            headers=self._bearer_headers(**{"Content-Type": mime}),
            content=video_bytes,
        )
        video_id = self._require(video, "id")

        thumbnail_set = False
        if content.thumbnail_url:
            thumbnail_set = await self._set_thumbnail(video_id, content.thumbnail_url)

        upload_status = (video.get("status") or {}).get("uploadStatus", "uploaded")
        return PublishResult.published(
            post_id=video_id,
            url=watch_url(video_id),
            metadata={
                "upload_status": upload_status,
                "privacy_status": (video.get("status") or {}).get("privacyStatus"),
                "thumbnail_set": thumbnail_set,
            },
        )

    async def _start_upload_session(self, content: PostContent, size: int, mime: str) -> str:
        description = content.description
        if content.tags:
            description = f"{description}\n\n{content.hashtags()}".strip()

        resource = {
            "snippet": {
                "title": (content.title or "Untitled")[:MAX_TITLE_LENGTH],
                "description": description[:MAX_DESCRIPTION_LENGTH],
                "tags": [t.lstrip("#") for t in content.tags],
                "categoryId": DEFAULT_CATEGORY_ID,
            },
            "status": {
                "privacyStatus": self.credential.metadata.get("privacy_status", "public"),
                "selfDeclaredMadeForKids": False,
            },
        }
        response = await self._request(
            "POST",
            UPLOAD_URL,
            params={"uploadType": "resumable", "part": "snippet,status"},
            headers=self._bearer_headers(**{
                "Content-Type": "application/json; charset=UTF-8",
                "X-Upload-Content-Length": str(size),
                "X-Upload-Content-Type": mime,
            }),
            json=resource,
        )
        location = response.headers.get("location")
        if not location:
            raise PlatformAPIError(
                self.platform.value,
                "resumable upload did not return a session URL",
                status_code=response.status_code,
            )
        return location

    async def _set_thumbnail(self, video_id: str, thumbnail_url: str) -> bool:
        """Upload a custom thumbnail; failures are logged, not raised."""
        try:
            image, mime = await self._fetch_media(thumbnail_url)
            await self._request(
                "POST",
                THUMBNAIL_URL,
                params={"videoId": video_id},
                headers=self._bearer_headers(**{"Content-Type": mime}),
                content=image,
            )
        except (PublishingError, httpx.HTTPError) as exc:
            logger.warning(
                "%s Thumbnail upload failed for video %s: %s",
                self.log_prefix,
                video_id,
                exc,
            )
            return False
        return True

    # ------------------------------------------------------------------
    # Channel statistics
    # ------------------------------------------------------------------

    async def get_channel_stats(self) -> Dict[str, Any]:
        """Fetch statistics of the authenticated channel.

        Returns:
            Dict with ``channel_id``, ``title``, ``subscriber_count``,
            ``view_count`` and ``video_count``.

        Raises:
            PlatformAPIError: On non-2xx or when no channel is returned.
        """
        body = await self._request_json(
            "GET",
            CHANNELS_URL,
            params={"part": "snippet,statistics", "mine": "true"},
            headers=self._bearer_headers(),
        )
        items = body.get("items") or []
        if not items:
            raise PlatformAPIError(self.platform.value, "no channel for this account")
        channel = items[0]
        stats = channel.get("statistics") or {}
        return {
            "channel_id": channel.get("id"),
            "title": (channel.get("snippet") or {}).get("title"),
            "subscriber_count": int(stats.get("subscriberCount", 0)),
            "view_count": int(stats.get("viewCount", 0)),
            "video_count": int(stats.get("videoCount", 0)),
        }


__all__ = ["YouTubeAdapter", "watch_url"]
