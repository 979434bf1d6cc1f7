"""
Base class for platform adapters.

Every adapter turns a platform-neutral :class:`~social_engine.models.PostContent`
into the platform's own HTTP sequence and returns a
:class:`~social_engine.models.PublishResult`.  ``publish()`` is the adapter
boundary: nothing raised inside ``_publish()`` escapes it, every failure is
turned into ``PublishResult.failed`` with an ``ErrorKind``.

Adapters never refresh tokens.  They receive a credential that the
credential manager has already validated.
"""

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Iterable, Optional, Tuple

import httpx

from social_engine.exceptions import (
    ErrorKind,
    MediaFetchError,
    PlatformAPIError,
    PublishingError,
    UnsupportedContentError,
)
from social_engine.models import ContentType, Platform, PlatformCredential, PostContent, PublishResult

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

# Longest provider error body kept in a failure message
_ERROR_BODY_LIMIT = 500


class PlatformAdapter(ABC):
    """Uniform ``publish`` contract over one platform's native API.

    Args:
        credential: A credential already validated by the credential manager.
        http: Shared ``httpx.AsyncClient``.
        sleep: Awaitable sleep used between status polls.
    """

    platform: Platform
    supported_content: FrozenSet[ContentType] = frozenset()

    # Status polling (upload processing on the platform side)
    POLL_INTERVAL_SECONDS: float = 3.0
    MAX_POLLS: int = 20

    def __init__(
        self,
        credential: PlatformCredential,
        http: httpx.AsyncClient,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if credential.platform != self.platform:
            raise ValueError(
                f"{type(self).__name__} cannot use a {credential.platform.value} credential"
            )
        self.credential = credential
        self.http = http
        self.sleep = sleep
        self.log_prefix = f"[ADAPTER:{self.platform.value}]"

    # ================================================================
    # BOUNDARY
    # ================================================================

    async def publish(self, content: PostContent) -> PublishResult:
        """Publish *content*; never raises.

        Returns:
            ``PUBLISHED`` / ``PROCESSING`` on success, otherwise a failed
            result whose ``error_kind`` tells the caller whether a retry
            makes sense.
        """
        if content.content_type not in self.supported_content:
            return PublishResult.failed(
                ErrorKind.UNSUPPORTED_CONTENT,
                f"{self.platform.value} does not support {content.content_type.value} posts",
            )

        try:
            result = await self._publish(content)
        except PublishingError as exc:
            logger.warning("%s Publish failed (%s): %s", self.log_prefix, exc.kind.value, exc)
            return PublishResult.failed(exc.kind, str(exc))
        except httpx.HTTPError as exc:
            logger.warning("%s HTTP failure: %s", self.log_prefix, exc)
            return PublishResult.failed(
                ErrorKind.PLATFORM_API_ERROR,
                f"{self.platform.value} request failed: {exc!r}",
            )
        except (KeyError, IndexError, TypeError, ValueError) as exc:
            logger.warning("%s Malformed response: %s", self.log_prefix, exc)
            return PublishResult.failed(
                ErrorKind.PLATFORM_API_ERROR,
                f"{self.platform.value} returned a malformed response: {exc!r}",
            )
        except Exception as exc:
            logger.exception("%s Unexpected adapter failure", self.log_prefix)
            return PublishResult.failed(
                ErrorKind.PLATFORM_API_ERROR,
                f"Unexpected {self.platform.value} adapter failure: {exc!r}",
            )

        logger.info(
            "%s Published post_id=%s status=%s",
            self.log_prefix,
            result.post_id,
            result.status.value,
        )
        return result

    @abstractmethod
    async def _publish(self, content: PostContent) -> PublishResult:
        """Platform-specific publishing sequence (may raise)."""

    # ================================================================
    # HTTP HELPERS
    # ================================================================

    def _bearer_headers(self, **extra: str) -> Dict[str, str]:
        headers = {"Authorization": f"Bearer {self.credential.access_token}"}
        headers.update(extra)
        return headers

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        """Send one request; non-2xx responses raise ``PlatformAPIError``."""
        response = await self.http.request(method, url, **kwargs)
        if not response.is_success:
            raise PlatformAPIError(
                self.platform.value,
                _error_text(response),
                status_code=response.status_code,
            )
        return response

    async def _request_json(self, method: str, url: str, **kwargs: Any) -> Dict[str, Any]:
        """Send one request and return its JSON object body."""
        response = await self._request(method, url, **kwargs)
        try:
            body = response.json()
        except ValueError as exc:
            raise PlatformAPIError(
                self.platform.value,
                f"response from {url} is not JSON",
                status_code=response.status_code,
            ) from exc
        if not isinstance(body, dict):
            raise PlatformAPIError(
                self.platform.value,
                f"expected a JSON object from {url}, got {type(body).__name__}",
                status_code=response.status_code,
            )
        return body

    def _require(self, payload: Dict[str, Any], *path: str) -> Any:
        """Walk *path* through nested dicts; a missing or empty value is malformed."""
        value: Any = payload
        for key in path:
            if not isinstance(value, dict) or not value.get(key):
                raise PlatformAPIError(
                    self.platform.value,
                    f"malformed response: missing {'.'.join(path)}",
                )
            value = value[key]
        return value

    # ================================================================
    # MEDIA
    # ================================================================

    def _media_url(self, content: PostContent) -> str:
        if not content.media_url:
            raise UnsupportedContentError(
                f"{content.content_type.value} post has no media URL"
            )
        return content.media_url

    async def _fetch_media(self, url: str) -> Tuple[bytes, str]:
        """Download media to publish.

        Returns:
            ``(bytes, mime_type)``.

        Raises:
            MediaFetchError: On transport failures, non-2xx or empty bodies.
        """
        try:
            response = await self.http.get(url, follow_redirects=True)
        except httpx.HTTPError as exc:
            raise MediaFetchError(url, repr(exc)) from exc
        if not response.is_success:
            raise MediaFetchError(url, f"HTTP {response.status_code}")
        if not response.content:
            raise MediaFetchError(url, "empty body")

        mime = response.headers.get("content-type", "application/octet-stream")
        mime = mime.split(";")[0].strip() or "application/octet-stream"
        logger.debug("%s Fetched %d bytes of %s from %s", self.log_prefix, len(response.content), mime, url)
        return response.content, mime

    async def _poll(
        self,
        check: Callable[[], Awaitable[Optional[bool]]],
        what: str,
    ) -> bool:
        """Poll *check* until it returns ``True`` or ``MAX_POLLS`` is reached.

        *check* returns ``True`` when done, ``None`` while still pending and
        raises on a definitive failure.

        Returns:
            ``True`` if finished, ``False`` if still pending after the
            last poll.
        """
        for attempt in range(self.MAX_POLLS):
            if await check():
                return True
            logger.debug("%s %s pending (poll %d/%d)", self.log_prefix, what, attempt + 1, self.MAX_POLLS)
            await self.sleep(self.POLL_INTERVAL_SECONDS)
        return False


def _error_text(response: httpx.Response) -> str:
    """Extract a readable error from a provider response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:_ERROR_BODY_LIMIT] or response.reason_phrase
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            return str(error.get("message") or error.get("code") or error)[:_ERROR_BODY_LIMIT]
        if error:
            return str(error)[:_ERROR_BODY_LIMIT]
        for key in ("message", "detail", "title", "error_description"):
            if body.get(key):
                return str(body[key])[:_ERROR_BODY_LIMIT]
    return str(body)[:_ERROR_BODY_LIMIT]


def chunk_ranges(total: int, chunk_size: int) -> Iterable[Tuple[int, int]]:
    """Yield ``(start, end)`` byte ranges (end exclusive) covering *total*."""
    for start in range(0, total, chunk_size):
        yield start, min(start + chunk_size, total)


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "PlatformAdapter",
    "Sleep",
    "chunk_ranges",
]
