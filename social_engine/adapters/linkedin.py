"""
LinkedIn adapter: versioned REST Posts API.

The author is the member (or organization) URN of the credential.  Images
are registered with ``images?action=initializeUpload`` and PUT to the
returned upload URL before the post references the image URN.  The new
post URN comes back in the ``x-restli-id`` response header.
"""

import logging
import re
from typing import Any, Dict

from social_engine.adapters.base import PlatformAdapter
from social_engine.exceptions import PlatformAPIError
from social_engine.models import ContentType, Platform, PostContent, PublishResult

logger = logging.getLogger(__name__)

REST_URL = "https://api.linkedin.com/rest"
POSTS_URL = f"{REST_URL}/posts"
IMAGES_URL = f"{REST_URL}/images"

API_VERSION = "202405"
MAX_COMMENTARY_LENGTH = 3000

# Reserved characters of LinkedIn's "little text" commentary format
_LITTLE_TEXT_RESERVED = re.compile(r"([\\|{}@\[\]()<>#*_~])")


def escape_commentary(text: str) -> str:
    """Escape characters LinkedIn would otherwise parse as markup."""
    return _LITTLE_TEXT_RESERVED.sub(r"\\\1", text)


def feed_url(post_urn: str) -> str:
    return f"https://www.linkedin.com/feed/update/{post_urn}"


class LinkedInAdapter(PlatformAdapter):
    """Publishes text, link and image posts as the credential's member."""

    platform = Platform.LINKEDIN
    supported_content = frozenset({ContentType.TEXT, ContentType.LINK, ContentType.IMAGE})

    @property
    def author_urn(self) -> str:
        urn = self.credential.metadata.get("author_urn") or self.credential.account_id
        if urn.startswith("urn:li:"):
            return urn
        return f"urn:li:person:{urn}"

    def _rest_headers(self) -> Dict[str, str]:
        return self._bearer_headers(**{
            "LinkedIn-Version": API_VERSION,
            "X-Restli-Protocol-Version": "2.0.0",
            "Content-Type": "application/json",
        })

    async def _publish(self, content: PostContent) -> PublishResult:
        commentary = content.description or content.title
        if content.tags:
            # Hashtags are written unescaped so LinkedIn links them
            commentary = f"{escape_commentary(commentary)}\n\n{content.hashtags()}"
        else:
            commentary = escape_commentary(commentary)

        post: Dict[str, Any] = {
            "author": self.author_urn,
            "commentary": commentary[:MAX_COMMENTARY_LENGTH],
            "visibility": "PUBLIC",
            "distribution": {
                "feedDistribution": "MAIN_FEED",
                "targetEntities": [],
                "thirdPartyDistributionChannels": [],
            },
            "lifecycleState": "PUBLISHED",
            "isReshareDisabledByAuthor": False,
        }

        if content.content_type == ContentType.IMAGE:
            image_urn = await self._upload_image(content)
            post["content"] = {"media": {"id": image_urn, "title": content.title}}
        elif content.content_type == ContentType.LINK:
            post["content"] = {
                "article": {
                    "source": self._media_url(content),
                    "title": content.title,
                    "description": content.description[:200],
                }
            }

        response = await self._request("POST", POSTS_URL, headers=self._rest_headers(), json=post)
        post_urn = response.headers.get("x-restli-id")
        if not post_urn:
            raise PlatformAPIError(
                self.platform.value,
                "post created without an x-restli-id header",
                status_code=response.status_code,
            )
        return PublishResult.published(
            post_id=post_urn,
            url=feed_url(post_urn),
            metadata={"author": self.author_urn},
        )

    async def _upload_image(self, content: PostContent) -> str:
        image, mime = await self._fetch_media(self._media_url(content))
        body = await self._request_json(
            "POST",
            IMAGES_URL,
            params={"action": "initializeUpload"},
            headers=self._rest_headers(),
            json={"initializeUploadRequest": {"owner": self.author_urn}},
        )
        upload_url = self._require(body, "value", "uploadUrl")
        image_urn = self._require(body, "value", "image")

        await self._request(
            "PUT",
            upload_url,
            headers=self._bearer_headers(**{"Content-Type": mime}),
            content=image,
        )
        logger.debug("%s Uploaded image %s", self.log_prefix, image_urn)
        return image_urn


__all__ = ["LinkedInAdapter", "escape_commentary", "feed_url"]
