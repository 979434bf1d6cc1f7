"""
TikTok adapter: Content Posting API v2, direct post with file upload.

Sequence:
    1. ``post/publish/video/init/`` with ``source=FILE_UPLOAD`` and the
       chunk layout; returns ``publish_id`` and ``upload_url``.
    2. PUT each chunk to ``upload_url`` with a ``Content-Range`` header.
    3. ``post/publish/status/fetch/``: TikTok processes asynchronously, so
       an accepted-but-not-yet-public video is reported as PROCESSING.
"""

import logging
from typing import Any, Dict, List, Tuple

from social_engine.adapters.base import PlatformAdapter, chunk_ranges
from social_engine.exceptions import PlatformAPIError
from social_engine.models import ContentType, Platform, PostContent, PublishResult

logger = logging.getLogger(__name__)

API_URL = "https://open.tiktokapis.com/v2"
INIT_URL = f"{API_URL}/post/publish/video/init/"
STATUS_URL = f"{API_URL}/post/publish/status/fetch/"

# TikTok accepts chunks between 5 MB and 64 MB; the last chunk absorbs
# the remainder, and videos under 5 MB go up in a single chunk.
MIN_CHUNK_SIZE = 5 * 1024 * 1024
DEFAULT_CHUNK_SIZE = 10 * 1024 * 1024

MAX_TITLE_LENGTH = 2200


def plan_chunks(size: int, chunk_size: int = DEFAULT_CHUNK_SIZE) -> Tuple[int, int]:
    """Return ``(chunk_size, total_chunk_count)`` for a video of *size* bytes."""
    if size <= MIN_CHUNK_SIZE or size <= chunk_size:
        return size, 1
    return chunk_size, size // chunk_size


def chunk_bounds(size: int, chunk_size: int, count: int) -> List[Tuple[int, int]]:
    """Byte ranges for *count* chunks; the last one runs to the end."""
    bounds = list(chunk_ranges(size, chunk_size))[:count]
    start, _ = bounds[-1]
    bounds[-1] = (start, size)
    return bounds


class TikTokAdapter(PlatformAdapter):
    """Publishes videos to a TikTok account."""

    platform = Platform.TIKTOK
    supported_content = frozenset({ContentType.VIDEO})

    def _json_headers(self) -> Dict[str, str]:
        return self._bearer_headers(**{"Content-Type": "application/json; charset=UTF-8"})

    def _check_envelope(self, body: Dict[str, Any]) -> Dict[str, Any]:
        """TikTok reports errors in an ``error`` envelope even on HTTP 200."""
        error = body.get("error") or {}
        if error.get("code") not in (None, "", "ok"):
            raise PlatformAPIError(
                self.platform.value,
                f"{error.get('code')}: {error.get('message', '')}",
            )
        return body.get("data") or {}

    async def _publish(self, content: PostContent) -> PublishResult:
        video, mime = await self._fetch_media(self._media_url(content))
        size = len(video)
        chunk_size, count = plan_chunks(size)

        title = content.text
        if content.tags:
            title = f"{title} {content.hashtags()}".strip()

        init = self._check_envelope(await self._request_json(
            "POST",
            INIT_URL,
            headers=self._json_headers(),
            json={
                "post_info": {
                    "title": title[:MAX_TITLE_LENGTH],
                    "privacy_level": self.credential.metadata.get(
                        "privacy_level", "PUBLIC_TO_EVERYONE"
                    ),
                    "disable_comment": False,
                },
                "source_info": {
                    "source": "FILE_UPLOAD",
                    "video_size": size,
                    "chunk_size": chunk_size,
                    "total_chunk_count": count,
                },
            },
        ))
        publish_id = self._require(init, "publish_id")
        upload_url = self._require(init, "upload_url")

        for start, end in chunk_bounds(size, chunk_size, count):
            await self._request(
                "PUT",
                upload_url,
                headers={
                    "Content-Type": mime,
                    "Content-Length": str(end - start),
                    "Content-Range": f"bytes {start}-{end - 1}/{size}",
                },
                content=video[start:end],
            )
        logger.debug("%s Uploaded %d chunk(s) for %s", self.log_prefix, count, publish_id)

        return await self._fetch_status(publish_id)

    async def _fetch_status(self, publish_id: str) -> PublishResult:
        status = self._check_envelope(await self._request_json(
            "POST",
            STATUS_URL,
            headers=self._json_headers(),
            json={"publish_id": publish_id},
        ))
        state = status.get("status", "PROCESSING_UPLOAD")
        if state == "FAILED":
            raise PlatformAPIError(
                self.platform.value,
                f"publish {publish_id} failed: {status.get('fail_reason', 'unknown')}",
            )

        account = self.credential.account_name.lstrip("@")
        post_ids = status.get("publicaly_available_post_id") or []
        metadata = {"publish_id": publish_id, "tiktok_status": state}
        if state == "PUBLISH_COMPLETE" and post_ids:
            video_id = str(post_ids[0])
            return PublishResult.published(
                post_id=video_id,
                url=f"https://www.tiktok.com/@{account}/video/{video_id}",
                metadata=metadata,
            )

        # Accepted; the public video id is only known once moderation ends
        return PublishResult.processing(
            post_id=publish_id,
            url=f"https://www.tiktok.com/@{account}",
            metadata=metadata,
        )


__all__ = ["TikTokAdapter", "plan_chunks", "chunk_bounds"]
