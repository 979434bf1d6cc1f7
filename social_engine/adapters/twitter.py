"""
Twitter/X adapter: chunked media upload plus the v2 ``/tweets`` endpoint.

Media goes through INIT / APPEND / FINALIZE on the media upload endpoint.
Videos are processed asynchronously after FINALIZE, so the adapter polls
STATUS until processing succeeds before the tweet references the media.
"""

import logging
from typing import Any, Dict, Optional

from social_engine.adapters.base import PlatformAdapter, chunk_ranges
from social_engine.exceptions import PlatformAPIError
from social_engine.models import ContentType, Platform, PostContent, PublishResult

logger = logging.getLogger(__name__)

API_URL = "https://api.twitter.com/2"
MEDIA_UPLOAD_URL = f"{API_URL}/media/upload"
TWEETS_URL = f"{API_URL}/tweets"

MAX_TWEET_LENGTH = 280
UPLOAD_CHUNK_SIZE = 4 * 1024 * 1024

# URLs are always counted as 23 characters (t.co wrapping)
TCO_URL_LENGTH = 23


def tweet_url(tweet_id: str) -> str:
    return f"https://twitter.com/i/web/status/{tweet_id}"


def fit_tweet(text: str, reserved: int = 0) -> str:
    """Truncate *text* so that it plus *reserved* characters fits a tweet."""
    limit = MAX_TWEET_LENGTH - reserved
    if len(text) <= limit:
        return text
    return text[: max(limit - 3, 0)].rstrip() + "..."


class TwitterAdapter(PlatformAdapter):
    """Publishes tweets, optionally with one image or video."""

    platform = Platform.TWITTER
    supported_content = frozenset({
        ContentType.TEXT,
        ContentType.IMAGE,
        ContentType.VIDEO,
        ContentType.LINK,
    })

    async def _publish(self, content: PostContent) -> PublishResult:
        text = content.text
        if content.tags:
            text = f"{text} {content.hashtags()}".strip()

        payload: Dict[str, Any] = {}
        if content.content_type == ContentType.LINK:
            link = self._media_url(content)
            payload["text"] = f"{self._truncate(text, reserved=TCO_URL_LENGTH + 1)}\n{link}".strip()
        else:
            payload["text"] = self._truncate(text)

        if content.content_type in (ContentType.IMAGE, ContentType.VIDEO):
            media_id = await self._upload_media(content)
            payload["media"] = {"media_ids": [media_id]}

        body = await self._request_json(
            "POST",
            TWEETS_URL,
            headers=self._bearer_headers(),
            json=payload,
        )
        tweet_id = self._require(body, "data", "id")
        return PublishResult.published(
            post_id=tweet_id,
            url=tweet_url(tweet_id),
            metadata={"media_ids": (payload.get("media") or {}).get("media_ids", [])},
        )

    def _truncate(self, text: str, reserved: int = 0) -> str:
        fitted = fit_tweet(text, reserved)
        if fitted != text:
            logger.warning(
                "%s Tweet text truncated from %d to %d characters",
                self.log_prefix,
                len(text),
                len(fitted),
            )
        return fitted

    # ------------------------------------------------------------------
    # Chunked media upload
    # ------------------------------------------------------------------

    async def _upload_media(self, content: PostContent) -> str:
        media, mime = await self._fetch_media(self._media_url(content))
        category = "tweet_video" if content.content_type == ContentType.VIDEO else "tweet_image"

        init = await self._command({
            "command": "INIT",
            "total_bytes": str(len(media)),
            "media_type": mime,
            "media_category": category,
        })
        media_id = _media_id(init)
        if not media_id:
            raise PlatformAPIError(self.platform.value, "media INIT returned no media id")

        for index, (start, end) in enumerate(chunk_ranges(len(media), UPLOAD_CHUNK_SIZE)):
            await self._request(
                "POST",
                MEDIA_UPLOAD_URL,
                headers=self._bearer_headers(),
                data={"command": "APPEND", "media_id": media_id, "segment_index": str(index)},
                files={"media": ("chunk", media[start:end], "application/octet-stream")},
            )

        finalize = await self._command({"command": "FINALIZE", "media_id": media_id})
        await self._wait_for_processing(media_id, _processing_info(finalize))
        return media_id

    async def _command(self, data: Dict[str, str]) -> Dict[str, Any]:
        body = await self._request_json(
            "POST",
            MEDIA_UPLOAD_URL,
            headers=self._bearer_headers(),
            data=data,
        )
        return body.get("data") if isinstance(body.get("data"), dict) else body

    async def _wait_for_processing(
        self, media_id: str, info: Optional[Dict[str, Any]]
    ) -> None:
        """Block until the uploaded media is usable in a tweet."""
        if self._processing_done(media_id, info):
            return

        async def check() -> Optional[bool]:
            body = await self._request_json(
                "GET",
                MEDIA_UPLOAD_URL,
                headers=self._bearer_headers(),
                params={"command": "STATUS", "media_id": media_id},
            )
            if isinstance(body.get("data"), dict):
                body = body["data"]
            return True if self._processing_done(media_id, _processing_info(body)) else None

        if not await self._poll(check, f"media {media_id}"):
            raise PlatformAPIError(
                self.platform.value,
                f"media {media_id} still processing after {self.MAX_POLLS} polls",
            )

    def _processing_done(self, media_id: str, info: Optional[Dict[str, Any]]) -> bool:
        """``True`` once processing succeeded (or was never needed)."""
        if info is None or info.get("state") == "succeeded":
            return True
        if info.get("state") == "failed":
            error = info.get("error") or {}
            raise PlatformAPIError(
                self.platform.value,
                f"media {media_id} processing failed: {error.get('message', 'unknown')}",
            )
        return False


def _media_id(body: Dict[str, Any]) -> Optional[str]:
    value = body.get("id") or body.get("media_id_string") or body.get("media_id")
    return str(value) if value else None


def _processing_info(body: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    info = body.get("processing_info")
    return info if isinstance(info, dict) else None


__all__ = ["TwitterAdapter", "tweet_url", "fit_tweet", "MAX_TWEET_LENGTH"]
