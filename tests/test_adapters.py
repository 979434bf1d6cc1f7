"""Tests for the platform adapters.

Every adapter is driven through ``httpx.MockTransport``; polling uses the
``no_sleep`` fixture so no test waits on a real timer.
"""

import json
from typing import Any, Callable, List, Tuple, Union
from urllib.parse import parse_qs

import httpx
import pytest

from social_engine.adapters import ADAPTERS, get_adapter_class
from social_engine.adapters.base import chunk_ranges
from social_engine.adapters.facebook import FacebookAdapter, post_url
from social_engine.adapters.instagram import InstagramAdapter
from social_engine.adapters.linkedin import LinkedInAdapter, escape_commentary
from social_engine.adapters.tiktok import MIN_CHUNK_SIZE, TikTokAdapter, chunk_bounds, plan_chunks
from social_engine.adapters.twitter import (
    MAX_TWEET_LENGTH,
    MEDIA_UPLOAD_URL,
    TWEETS_URL,
    TwitterAdapter,
    fit_tweet,
)
from social_engine.adapters.youtube import UPLOAD_URL, YouTubeAdapter
from social_engine.exceptions import ErrorKind
from social_engine.models import ContentType, Platform, PostContent, PublishStatus

MEDIA_URL = "https://cdn.example.com/media/file"
MEDIA_BYTES = b"0123456789"

Reply = Union[httpx.Response, Callable[[httpx.Request], httpx.Response]]


class Router:
    """Routes requests by method and URL prefix.

    A route with several replies hands them out in order and keeps
    repeating the last one.
    """

    def __init__(self) -> None:
        self.routes: List[Tuple[str, str, List[Reply]]] = []

    def add(self, method: str, prefix: str, *replies: Reply) -> "Router":
        self.routes.append((method, prefix, list(replies)))
        return self

    def media(self, content: bytes = MEDIA_BYTES, mime: str = "video/mp4") -> "Router":
        return self.add("GET", MEDIA_URL, httpx.Response(200, content=content, headers={"content-type": mime}))

    def __call__(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        for method, prefix, replies in self.routes:
            if request.method == method and url.startswith(prefix):
                reply = replies.pop(0) if len(replies) > 1 else replies[0]
                return reply(request) if callable(reply) else reply
        return httpx.Response(404, json={"error": f"no route for {request.method} {url}"})


def _content(content_type: ContentType, **overrides: Any) -> PostContent:
    values = {
        "title": "Launch day",
        "description": "Our new product is live.",
        "content_type": content_type,
        "media_url": MEDIA_URL if content_type != ContentType.TEXT else None,
    }
    values.update(overrides)
    return PostContent(**values)


def _adapter(cls, make_credential, mock_http, router, no_sleep, **credential_overrides):
    credential = make_credential(cls.platform, **credential_overrides)
    http = mock_http(router)
    return cls(credential, http, sleep=no_sleep), http


def _form(request: httpx.Request) -> dict:
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


# =============================================================================
# Registry and shared behaviour
# =============================================================================


class TestRegistry:
    def test_every_platform_has_an_adapter(self):
        assert set(ADAPTERS) == set(Platform)
        for platform, cls in ADAPTERS.items():
            assert cls.platform == platform

    def test_get_adapter_class(self):
        assert get_adapter_class(Platform.TIKTOK) is TikTokAdapter

    def test_unknown_platform_raises(self):
        with pytest.raises(ValueError):
            get_adapter_class("myspace")

    def test_get_adapter_class_from_custom_registry(self):
        registry = {Platform.TIKTOK: TwitterAdapter}
        assert get_adapter_class(Platform.TIKTOK, registry) is TwitterAdapter
        with pytest.raises(ValueError, match="youtube"):
            get_adapter_class(Platform.YOUTUBE, registry)


class TestAdapterBoundary:
    """``publish`` converts every failure into a failed result."""

    def test_credential_platform_must_match(self, make_credential, mock_http):
        with pytest.raises(ValueError):
            TwitterAdapter(make_credential(Platform.LINKEDIN), mock_http(Router()))

    @pytest.mark.asyncio
    async def test_unsupported_content(self, make_credential, mock_http, no_sleep):
        adapter, http = _adapter(YouTubeAdapter, make_credential, mock_http, Router(), no_sleep)
        result = await adapter.publish(_content(ContentType.TEXT))
        assert result.success is False
        assert result.error_kind == ErrorKind.UNSUPPORTED_CONTENT
        assert http.requests == []

    @pytest.mark.asyncio
    async def test_missing_media_url(self, make_credential, mock_http, no_sleep):
        adapter, _ = _adapter(YouTubeAdapter, make_credential, mock_http, Router(), no_sleep)
        result = await adapter.publish(_content(ContentType.VIDEO, media_url=None))
        assert result.error_kind == ErrorKind.UNSUPPORTED_CONTENT

    @pytest.mark.asyncio
    async def test_transport_error_is_transient(self, make_credential, mock_http, no_sleep):
        def boom(request):
            raise httpx.ConnectError("connection refused", request=request)

        router = Router().add("POST", TWEETS_URL, boom)
        adapter, _ = _adapter(TwitterAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.TEXT))
        assert result.success is False
        assert result.error_kind == ErrorKind.PLATFORM_API_ERROR
        assert result.error_kind.is_terminal is False

    @pytest.mark.asyncio
    async def test_non_2xx_carries_status(self, make_credential, mock_http, no_sleep):
        router = Router().add("POST", TWEETS_URL, httpx.Response(429, json={"title": "Too Many Requests"}))
        adapter, _ = _adapter(TwitterAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.TEXT))
        assert result.error_kind == ErrorKind.PLATFORM_API_ERROR
        assert "HTTP 429" in result.error
        assert "Too Many Requests" in result.error

    @pytest.mark.asyncio
    async def test_malformed_success_body(self, make_credential, mock_http, no_sleep):
        router = Router().add("POST", TWEETS_URL, httpx.Response(201, json={"data": {}}))
        adapter, _ = _adapter(TwitterAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.TEXT))
        assert result.success is False
        assert "malformed" in result.error

    @pytest.mark.asyncio
    async def test_media_fetch_failure(self, make_credential, mock_http, no_sleep):
        router = Router().add("GET", MEDIA_URL, httpx.Response(404))
        adapter, _ = _adapter(YouTubeAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.VIDEO))
        assert result.error_kind == ErrorKind.MEDIA_FETCH_ERROR
        assert MEDIA_URL in result.error

    def test_chunk_ranges(self):
        assert list(chunk_ranges(10, 4)) == [(0, 4), (4, 8), (8, 10)]


# =============================================================================
# Twitter
# =============================================================================


class TestTwitterAdapter:
    @pytest.mark.asyncio
    async def test_text_tweet(self, make_credential, mock_http, no_sleep):
        router = Router().add("POST", TWEETS_URL, httpx.Response(201, json={"data": {"id": "1789"}}))
        adapter, http = _adapter(TwitterAdapter, make_credential, mock_http, router, no_sleep)

        result = await adapter.publish(_content(ContentType.TEXT, tags=["ai", "#ml"]))

        assert result.status == PublishStatus.PUBLISHED
        assert result.post_id == "1789"
        assert result.url == "https://twitter.com/i/web/status/1789"
        request = http.requests[0]
        assert request.headers["authorization"] == "Bearer access-old"
        assert json.loads(request.content)["text"] == (
            "Launch day\n\nOur new product is live. #ai #ml"
        )

    @pytest.mark.asyncio
    async def test_link_tweet_keeps_url(self, make_credential, mock_http, no_sleep):
        router = Router().add("POST", TWEETS_URL, httpx.Response(201, json={"data": {"id": "1"}}))
        adapter, http = _adapter(TwitterAdapter, make_credential, mock_http, router, no_sleep)

        await adapter.publish(_content(ContentType.LINK, description="x" * 400))

        text = json.loads(http.requests[0].content)["text"]
        assert text.endswith(MEDIA_URL)
        assert len(text) - len(MEDIA_URL) + 23 <= MAX_TWEET_LENGTH

    @pytest.mark.asyncio
    async def test_video_upload_polls_processing(self, make_credential, mock_http, no_sleep):
        def media_command(request):
            form = _form(request) if b"command=" in request.content else {}
            if form.get("command") == "INIT":
                return httpx.Response(200, json={"data": {"id": "m-1"}})
            if form.get("command") == "FINALIZE":
                return httpx.Response(
                    200, json={"data": {"id": "m-1", "processing_info": {"state": "pending"}}}
                )
            return httpx.Response(204)

        router = (
            Router()
            .media()
            .add("POST", MEDIA_UPLOAD_URL, media_command)
            .add(
                "GET",
                MEDIA_UPLOAD_URL,
                httpx.Response(200, json={"data": {"processing_info": {"state": "in_progress"}}}),
                httpx.Response(200, json={"data": {"processing_info": {"state": "succeeded"}}}),
            )
            .add("POST", TWEETS_URL, httpx.Response(201, json={"data": {"id": "42"}}))
        )
        adapter, http = _adapter(TwitterAdapter, make_credential, mock_http, router, no_sleep)

        result = await adapter.publish(_content(ContentType.VIDEO))

        assert result.success is True
        assert result.metadata["media_ids"] == ["m-1"]
        tweet = json.loads(http.requests[-1].content)
        assert tweet["media"] == {"media_ids": ["m-1"]}
        assert no_sleep.calls == [TwitterAdapter.POLL_INTERVAL_SECONDS]

    @pytest.mark.asyncio
    async def test_media_processing_failure(self, make_credential, mock_http, no_sleep):
        def media_command(request):
            form = _form(request) if b"command=" in request.content else {}
            if form.get("command") == "FINALIZE":
                return httpx.Response(200, json={
                    "data": {"id": "m-1", "processing_info": {"state": "failed", "error": {"message": "bad codec"}}}
                })
            return httpx.Response(200, json={"data": {"id": "m-1"}})

        router = Router().media().add("POST", MEDIA_UPLOAD_URL, media_command)
        adapter, _ = _adapter(TwitterAdapter, make_credential, mock_http, router, no_sleep)

        result = await adapter.publish(_content(ContentType.VIDEO))

        assert result.error_kind == ErrorKind.PLATFORM_API_ERROR
        assert "bad codec" in result.error

    def test_fit_tweet(self):
        assert fit_tweet("short") == "short"
        fitted = fit_tweet("word " * 100)
        assert len(fitted) <= MAX_TWEET_LENGTH
        assert fitted.endswith("...")


# =============================================================================
# LinkedIn
# =============================================================================


class TestLinkedInAdapter:
    @pytest.mark.asyncio
    async def test_text_post(self, make_credential, mock_http, no_sleep):
        router = Router().add(
            "POST",
            "https://api.linkedin.com/rest/posts",
            httpx.Response(201, headers={"x-restli-id": "urn:li:share:99"}),
        )
        adapter, http = _adapter(
            LinkedInAdapter, make_credential, mock_http, router, no_sleep, account_id="abc"
        )

        result = await adapter.publish(_content(ContentType.TEXT, tags=["launch"]))

        assert result.post_id == "urn:li:share:99"
        assert result.url == "https://www.linkedin.com/feed/update/urn:li:share:99"
        body = json.loads(http.requests[0].content)
        assert body["author"] == "urn:li:person:abc"
        assert body["commentary"].endswith("#launch")
        assert http.requests[0].headers["linkedin-version"]

    @pytest.mark.asyncio
    async def test_missing_restli_header_fails(self, make_credential, mock_http, no_sleep):
        router = Router().add("POST", "https://api.linkedin.com/rest/posts", httpx.Response(201))
        adapter, _ = _adapter(LinkedInAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.TEXT))
        assert result.error_kind == ErrorKind.PLATFORM_API_ERROR

    @pytest.mark.asyncio
    async def test_image_post_uploads_first(self, make_credential, mock_http, no_sleep):
        router = (
            Router()
            .media(mime="image/png")
            .add(
                "POST",
                "https://api.linkedin.com/rest/images",
                httpx.Response(200, json={"value": {
                    "uploadUrl": "https://upload.linkedin.example/img",
                    "image": "urn:li:image:7",
                }}),
            )
            .add("PUT", "https://upload.linkedin.example/img", httpx.Response(201))
            .add(
                "POST",
                "https://api.linkedin.com/rest/posts",
                httpx.Response(201, headers={"x-restli-id": "urn:li:share:1"}),
            )
        )
        adapter, http = _adapter(LinkedInAdapter, make_credential, mock_http, router, no_sleep)

        result = await adapter.publish(_content(ContentType.IMAGE))

        assert result.success is True
        post = json.loads(http.requests[-1].content)
        assert post["content"]["media"]["id"] == "urn:li:image:7"

    def test_escape_commentary(self):
        assert escape_commentary("Hello (world) #1") == r"Hello \(world\) \#1"


# =============================================================================
# YouTube
# =============================================================================


class TestYouTubeAdapter:
    def _router(self, thumbnail_status=200):
        return (
            Router()
            .media()
            .add("GET", "https://cdn.example.com/thumb", httpx.Response(200, content=b"img", headers={"content-type": "image/jpeg"}))
            .add("POST", UPLOAD_URL, httpx.Response(200, headers={"location": "https://upload.example.com/session/1"}))
            .add("PUT", "https://upload.example.com/session/1", httpx.Response(200, json={
                "id": "vid-1",
                "status": {"uploadStatus": "uploaded", "privacyStatus": "public"},
            }))
            .add("POST", "https://www.googleapis.com/upload/youtube/v3/thumbnails/set", httpx.Response(thumbnail_status, json={}))
        )

    @pytest.mark.asyncio
    async def test_resumable_upload(self, make_credential, mock_http, no_sleep):
        adapter, http = _adapter(YouTubeAdapter, make_credential, mock_http, self._router(), no_sleep)

        result = await adapter.publish(_content(ContentType.VIDEO, thumbnail_url="https://cdn.example.com/thumb"))

        assert result.post_id == "vid-1"
        assert result.url == "https://www.youtube.com/watch?v=vid-1"
        assert result.metadata["thumbnail_set"] is True
        init = next(r for r in http.requests if str(r.url).startswith(UPLOAD_URL))
        assert init.headers["x-upload-content-length"] == str(len(MEDIA_BYTES))
        assert json.loads(init.content)["snippet"]["title"] == "Launch day"

    @pytest.mark.asyncio
    async def test_thumbnail_failure_still_publishes(self, make_credential, mock_http, no_sleep):
        adapter, _ = _adapter(YouTubeAdapter, make_credential, mock_http, self._router(403), no_sleep)
        result = await adapter.publish(_content(ContentType.VIDEO, thumbnail_url="https://cdn.example.com/thumb"))
        assert result.success is True
        assert result.metadata["thumbnail_set"] is False

    @pytest.mark.asyncio
    async def test_missing_session_url(self, make_credential, mock_http, no_sleep):
        router = Router().media().add("POST", UPLOAD_URL, httpx.Response(200))
        adapter, _ = _adapter(YouTubeAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.VIDEO))
        assert result.error_kind == ErrorKind.PLATFORM_API_ERROR

    @pytest.mark.asyncio
    async def test_channel_stats(self, make_credential, mock_http, no_sleep):
        router = Router().add("GET", "https://www.googleapis.com/youtube/v3/channels", httpx.Response(200, json={
            "items": [{
                "id": "UC1",
                "snippet": {"title": "Brand"},
                "statistics": {"subscriberCount": "120", "viewCount": "5000", "videoCount": "7"},
            }]
        }))
        adapter, _ = _adapter(YouTubeAdapter, make_credential, mock_http, router, no_sleep)
        stats = await adapter.get_channel_stats()
        assert stats == {
            "channel_id": "UC1",
            "title": "Brand",
            "subscriber_count": 120,
            "view_count": 5000,
            "video_count": 7,
        }


# =============================================================================
# TikTok
# =============================================================================


class TestTikTokAdapter:
    def _router(self, status_body):
        return (
            Router()
            .media()
            .add("POST", "https://open.tiktokapis.com/v2/post/publish/video/init/", httpx.Response(200, json={
                "data": {"publish_id": "pub-1", "upload_url": "https://upload.tiktok.example/1"},
                "error": {"code": "ok"},
            }))
            .add("PUT", "https://upload.tiktok.example/1", httpx.Response(201))
            .add("POST", "https://open.tiktokapis.com/v2/post/publish/status/fetch/", httpx.Response(200, json=status_body))
        )

    @pytest.mark.asyncio
    async def test_processing_is_success(self, make_credential, mock_http, no_sleep):
        router = self._router({"data": {"status": "PROCESSING_UPLOAD"}, "error": {"code": "ok"}})
        adapter, http = _adapter(
            TikTokAdapter, make_credential, mock_http, router, no_sleep, account_name="@brand"
        )

        result = await adapter.publish(_content(ContentType.VIDEO))

        assert result.success is True
        assert result.status == PublishStatus.PROCESSING
        assert result.post_id == "pub-1"
        assert result.url == "https://www.tiktok.com/@brand"
        upload = next(r for r in http.requests if r.method == "PUT")
        assert upload.headers["content-range"] == f"bytes 0-{len(MEDIA_BYTES) - 1}/{len(MEDIA_BYTES)}"

    @pytest.mark.asyncio
    async def test_publish_complete(self, make_credential, mock_http, no_sleep):
        router = self._router({
            "data": {"status": "PUBLISH_COMPLETE", "publicaly_available_post_id": [731]},
            "error": {"code": "ok"},
        })
        adapter, _ = _adapter(TikTokAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.VIDEO))
        assert result.status == PublishStatus.PUBLISHED
        assert result.post_id == "731"

    @pytest.mark.asyncio
    async def test_error_envelope_on_http_200(self, make_credential, mock_http, no_sleep):
        router = Router().media().add(
            "POST",
            "https://open.tiktokapis.com/v2/post/publish/video/init/",
            httpx.Response(200, json={"error": {"code": "spam_risk_too_many_posts", "message": "slow down"}}),
        )
        adapter, _ = _adapter(TikTokAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.VIDEO))
        assert result.error_kind == ErrorKind.PLATFORM_API_ERROR
        assert "spam_risk_too_many_posts" in result.error

    def test_plan_chunks(self):
        assert plan_chunks(MIN_CHUNK_SIZE) == (MIN_CHUNK_SIZE, 1)
        size = 25 * 1024 * 1024
        chunk_size, count = plan_chunks(size)
        assert count == 2
        bounds = chunk_bounds(size, chunk_size, count)
        assert bounds[-1][1] == size
        assert bounds[0] == (0, chunk_size)


# =============================================================================
# Facebook
# =============================================================================


class TestFacebookAdapter:
    @pytest.mark.asyncio
    async def test_feed_post_with_pinned_page(self, make_credential, mock_http, no_sleep):
        router = Router().add(
            "POST",
            "https://graph.facebook.com/v18.0/555/feed",
            httpx.Response(200, json={"id": "555_777"}),
        )
        adapter, http = _adapter(
            FacebookAdapter, make_credential, mock_http, router, no_sleep,
            metadata={"page_id": "555", "page_access_token": "page-token"},
        )

        result = await adapter.publish(_content(ContentType.LINK))

        assert result.post_id == "555_777"
        assert result.url == "https://www.facebook.com/555/posts/777"
        form = _form(http.requests[0])
        assert form["access_token"] == "page-token"
        assert form["link"] == MEDIA_URL

    @pytest.mark.asyncio
    async def test_page_resolved_from_accounts(self, make_credential, mock_http, no_sleep):
        router = (
            Router()
            .add("GET", "https://graph.facebook.com/v18.0/me/accounts", httpx.Response(200, json={
                "data": [{"id": "321", "name": "Brand", "access_token": "tok-321"}]
            }))
            .add("POST", "https://graph.facebook.com/v18.0/321/feed", httpx.Response(200, json={"id": "321_1"}))
        )
        adapter, _ = _adapter(FacebookAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.TEXT))
        assert result.metadata == {"page_id": "321"}

    @pytest.mark.asyncio
    async def test_no_page_is_terminal(self, make_credential, mock_http, no_sleep):
        router = Router().add("GET", "https://graph.facebook.com/v18.0/me/accounts", httpx.Response(200, json={"data": []}))
        adapter, _ = _adapter(FacebookAdapter, make_credential, mock_http, router, no_sleep)
        result = await adapter.publish(_content(ContentType.TEXT))
        assert result.error_kind == ErrorKind.NO_ACCOUNT_CONNECTED
        assert result.is_terminal_failure is True

    def test_post_url(self):
        assert post_url("1", "1_2") == "https://www.facebook.com/1/posts/2"


# =============================================================================
# Instagram
# =============================================================================


class TestInstagramAdapter:
    GRAPH = "https://graph.instagram.com/v21.0"

    @pytest.mark.asyncio
    async def test_image_never_downloads_media(self, make_credential, mock_http, no_sleep):
        router = (
            Router()
            .add("POST", f"{self.GRAPH}/ig-1/media_publish", httpx.Response(200, json={"id": "media-9"}))
            .add("POST", f"{self.GRAPH}/ig-1/media", httpx.Response(200, json={"id": "container-1"}))
            .add("GET", f"{self.GRAPH}/media-9", httpx.Response(200, json={"permalink": "https://instagram.com/p/abc"}))
        )
        adapter, http = _adapter(
            InstagramAdapter, make_credential, mock_http, router, no_sleep, account_id="ig-1"
        )

        result = await adapter.publish(_content(ContentType.IMAGE))

        assert result.post_id == "media-9"
        assert result.url == "https://instagram.com/p/abc"
        assert not any(str(r.url).startswith(MEDIA_URL) for r in http.requests)
        assert _form(http.requests[0])["image_url"] == MEDIA_URL

    @pytest.mark.asyncio
    async def test_reel_waits_for_container(self, make_credential, mock_http, no_sleep):
        router = (
            Router()
            .add("POST", f"{self.GRAPH}/ig-1/media_publish", httpx.Response(200, json={"id": "media-9"}))
            .add("POST", f"{self.GRAPH}/ig-1/media", httpx.Response(200, json={"id": "container-1"}))
            .add(
                "GET",
                f"{self.GRAPH}/container-1",
                httpx.Response(200, json={"status_code": "IN_PROGRESS"}),
                httpx.Response(200, json={"status_code": "FINISHED"}),
            )
            .add("GET", f"{self.GRAPH}/media-9", httpx.Response(500))
        )
        adapter, _ = _adapter(
            InstagramAdapter, make_credential, mock_http, router, no_sleep, account_id="ig-1", account_name="brand"
        )

        result = await adapter.publish(_content(ContentType.VIDEO))

        assert result.success is True
        assert result.url == "https://www.instagram.com/brand/"
        assert len(no_sleep.calls) == 1

    @pytest.mark.asyncio
    async def test_container_error(self, make_credential, mock_http, no_sleep):
        router = (
            Router()
            .add("POST", f"{self.GRAPH}/ig-1/media", httpx.Response(200, json={"id": "container-1"}))
            .add("GET", f"{self.GRAPH}/container-1", httpx.Response(200, json={"status_code": "ERROR", "status": "bad format"}))
        )
        adapter, _ = _adapter(
            InstagramAdapter, make_credential, mock_http, router, no_sleep, account_id="ig-1"
        )
        result = await adapter.publish(_content(ContentType.VIDEO))
        assert result.error_kind == ErrorKind.PLATFORM_API_ERROR
        assert "bad format" in result.error
