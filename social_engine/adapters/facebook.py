"""
Facebook adapter: Page publishing through the Graph API.

The destination is a Facebook Page, not the user profile.  The page id
comes from the credential metadata or, failing that, from the first page
returned by ``/me/accounts``; posting uses the page access token.

Image posts upload the photo unpublished, then attach it to a feed post.
Videos go to ``/{page}/videos``.  Links and plain text are feed posts.
"""

import json
import logging
from typing import Any, Dict, Optional, Tuple

from social_engine.adapters.base import PlatformAdapter
from social_engine.exceptions import ErrorKind, PublishingError
from social_engine.models import ContentType, Platform, PostContent, PublishResult

logger = logging.getLogger(__name__)

GRAPH_URL = "https://graph.facebook.com/v18.0"


class FacebookAdapter(PlatformAdapter):
    """Publishes to a Facebook Page managed by the credential's user."""

    platform = Platform.FACEBOOK
    supported_content = frozenset({
        ContentType.IMAGE,
        ContentType.VIDEO,
        ContentType.LINK,
        ContentType.TEXT,
    })

    async def _publish(self, content: PostContent) -> PublishResult:
        page_id, page_token = await self._resolve_page()

        if content.content_type == ContentType.VIDEO:
            video_id = await self._upload_video(page_id, page_token, content)
            return PublishResult.published(
                post_id=video_id,
                url=f"https://www.facebook.com/{page_id}/videos/{video_id}",
                metadata={"page_id": page_id},
            )

        fields: Dict[str, Any] = {"message": self._message(content)}
        if content.content_type == ContentType.IMAGE:
            photo_id = await self._upload_photo(page_id, page_token, content)
            fields["attached_media"] = json.dumps([{"media_fbid": photo_id}])
        elif content.content_type == ContentType.LINK:
            fields["link"] = self._media_url(content)

        body = await self._request_json(
            "POST",
            f"{GRAPH_URL}/{page_id}/feed",
            data={**fields, "access_token": page_token},
        )
        post_id = self._require(body, "id")
        return PublishResult.published(
            post_id=post_id,
            url=post_url(page_id, post_id),
            metadata={"page_id": page_id},
        )

    def _message(self, content: PostContent) -> str:
        if content.tags:
            return f"{content.text}\n\n{content.hashtags()}".strip()
        return content.text

    # ------------------------------------------------------------------
    # Destination
    # ------------------------------------------------------------------

    async def _resolve_page(self) -> Tuple[str, str]:
        """Return ``(page_id, page_access_token)``."""
        page_id: Optional[str] = self.credential.metadata.get("page_id")
        page_token: Optional[str] = self.credential.metadata.get("page_access_token")
        if page_id and page_token:
            return page_id, page_token

        body = await self._request_json(
            "GET",
            f"{GRAPH_URL}/me/accounts",
            params={
                "access_token": self.credential.access_token,
                "fields": "id,name,access_token",
            },
        )
        pages = body.get("data") or []
        if page_id:
            pages = [p for p in pages if str(p.get("id")) == str(page_id)]
        if not pages:
            raise PublishingError(
                "No manageable Facebook page found for this account",
                kind=ErrorKind.NO_ACCOUNT_CONNECTED,
            )
        page = pages[0]
        logger.debug("%s Resolved page %s (%s)", self.log_prefix, page.get("id"), page.get("name"))
        return str(self._require(page, "id")), self._require(page, "access_token")

    # ------------------------------------------------------------------
    # Media
    # ------------------------------------------------------------------

    async def _upload_photo(self, page_id: str, page_token: str, content: PostContent) -> str:
        image, mime = await self._fetch_media(self._media_url(content))
        body = await self._request_json(
            "POST",
            f"{GRAPH_URL}/{page_id}/photos",
            data={"published": "false", "access_token": page_token},
            files={"source": ("image", image, mime)},
        )
        return self._require(body, "id")

    async def _upload_video(self, page_id: str, page_token: str, content: PostContent) -> str:
        video, mime = await self._fetch_media(self._media_url(content))
        body = await self._request_json(
            "POST",
            f"{GRAPH_URL}/{page_id}/videos",
            data={
                "title": content.title,
                "description": self._message(content),
                "access_token": page_token,
            },
            files={"source": ("video", video, mime)},
        )
        return self._require(body, "id")


def post_url(page_id: str, post_id: str) -> str:
    """Feed post ids look like ``{page_id}_{post_id}``."""
    return f"https://www.facebook.com/{page_id}/posts/{post_id.split('_')[-1]}"


__all__ = ["FacebookAdapter", "post_url"]
