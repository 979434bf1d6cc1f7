"""
Instagram adapter: content publishing through the Instagram Graph API.

Sequence:
    1. Create a media container from a public ``image_url`` or
       ``video_url`` (videos are published as Reels).
    2. For videos, poll the container's ``status_code`` until FINISHED.
    3. ``media_publish`` the container.
    4. Look up the permalink of the published media (best effort).

Instagram fetches the media itself, so the engine never downloads it.
"""

import logging
from typing import Any, Dict, Optional

import httpx

from social_engine.adapters.base import PlatformAdapter
from social_engine.exceptions import PlatformAPIError, PublishingError
from social_engine.models import ContentType, Platform, PostContent, PublishResult

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.instagram.com/v21.0"

MAX_CAPTION_LENGTH = 2200


class InstagramAdapter(PlatformAdapter):
    """Publishes images and Reels to an Instagram professional account."""

    platform = Platform.INSTAGRAM
    supported_content = frozenset({ContentType.IMAGE, ContentType.VIDEO})

    @property
    def ig_user_id(self) -> str:
        return self.credential.metadata.get("ig_user_id") or self.credential.account_id

    def _params(self, **extra: Any) -> Dict[str, Any]:
        params: Dict[str, Any] = {"access_token": self.credential.access_token}
        params.update(extra)
        return params

    def _caption(self, content: PostContent) -> str:
        parts = [content.text]
        if content.tags:
            parts.append(content.hashtags())
        return "\n\n".join(p for p in parts if p)[:MAX_CAPTION_LENGTH]

    async def _publish(self, content: PostContent) -> PublishResult:
        media_url = self._media_url(content)
        if content.content_type == ContentType.VIDEO:
            container_id = await self._create_video_container(media_url, content)
            await self._wait_until_ready(container_id)
        else:
            container_id = await self._create_image_container(media_url, content)

        published = await self._request_json(
            "POST",
            f"{GRAPH_URL}/{self.ig_user_id}/media_publish",
            data=self._params(creation_id=container_id),
        )
        media_id = self._require(published, "id")
        permalink = await self._permalink(media_id)

        return PublishResult.published(
            post_id=media_id,
            url=permalink or f"https://www.instagram.com/{self.credential.account_name}/",
            metadata={"container_id": container_id, "permalink": permalink},
        )

    # ------------------------------------------------------------------
    # Containers
    # ------------------------------------------------------------------

    async def _create_image_container(self, media_url: str, content: PostContent) -> str:
        body = await self._request_json(
            "POST",
            f"{GRAPH_URL}/{self.ig_user_id}/media",
            data=self._params(image_url=media_url, caption=self._caption(content)),
        )
        return self._require(body, "id")

    async def _create_video_container(self, media_url: str, content: PostContent) -> str:
        fields: Dict[str, Any] = {
            "media_type": "REELS",
            "video_url": media_url,
            "caption": self._caption(content),
            "share_to_feed": "true",
        }
        if content.thumbnail_url:
            fields["cover_url"] = content.thumbnail_url
        body = await self._request_json(
            "POST",
            f"{GRAPH_URL}/{self.ig_user_id}/media",
            data=self._params(**fields),
        )
        return self._require(body, "id")

    async def _wait_until_ready(self, container_id: str) -> None:
        async def check() -> Optional[bool]:
            body = await self._request_json(
                "GET",
                f"{GRAPH_URL}/{container_id}",
                params=self._params(fields="status_code,status"),
            )
            status = body.get("status_code")
            if status == "FINISHED":
                return True
            if status in ("ERROR", "EXPIRED"):
                raise PlatformAPIError(
                    self.platform.value,
                    f"container {container_id} {status}: {body.get('status', '')}",
                )
            return None

        if not await self._poll(check, f"container {container_id}"):
            raise PlatformAPIError(
                self.platform.value,
                f"container {container_id} still processing after {self.MAX_POLLS} polls",
            )

    async def _permalink(self, media_id: str) -> Optional[str]:
        """Permalink of published media; ``None`` if the lookup fails."""
        try:
            body = await self._request_json(
                "GET",
                f"{GRAPH_URL}/{media_id}",
                params=self._params(fields="permalink"),
            )
        except (PublishingError, httpx.HTTPError) as exc:
            logger.warning("%s Permalink lookup failed for %s: %s", self.log_prefix, media_id, exc)
            return None
        return body.get("permalink")


__all__ = ["InstagramAdapter"]
