"""Service layer tests for the description sub-fetch.

Tests cover payload normalization and the retry loop of MetadataFetcher.
All outbound requests are answered by the fake web.
"""

import json

import httpx
import pytest

from vidmeta.config import Settings, ThumbnailSize
from vidmeta.errors import NoServerAvailable, PayloadError
from vidmeta.http import HttpClient
from vidmeta.records import DescriptionData
from vidmeta.servers import ServerDirectory
from vidmeta.service import (
    MetadataFetcher,
    VideoThumbnail,
    clean_description,
    parse_video_payload,
    select_thumbnail,
    video_endpoint,
)

from tests.conftest import INSTANCES_URL, MIRROR, VIDEO_PAYLOAD, FakeWeb

VIDEO_URL = f"{MIRROR}/api/v1/videos/abc123"


def make_fetcher(web: FakeWeb, **overrides) -> MetadataFetcher:
    options = {"invidious_url": MIRROR, "instances_url": INSTANCES_URL}
    options.update(overrides)
    config = Settings(**options)
    http = HttpClient(config, transport=web.transport)
    return MetadataFetcher(http, ServerDirectory(http, config), config)


class TestNormalization:
    """Tests for payload parsing and normalization helpers."""

    def test_video_endpoint_requests_only_needed_fields(self):
        url = video_endpoint("https://inv.example/", "abc123")
        assert url == (
            "https://inv.example/api/v1/videos/abc123"
            "?fields=videoThumbnails,descriptionHtml,lengthSeconds"
        )

    def test_parse_video_payload(self):
        video = parse_video_payload(json.dumps(VIDEO_PAYLOAD))
        assert video.length_seconds == 125
        assert video.description_html == "line1\nline2"
        assert len(video.video_thumbnails) == 5

    def test_parse_invalid_json_raises(self):
        with pytest.raises(PayloadError):
            parse_video_payload("<html>")

    def test_parse_wrong_shape_raises(self):
        with pytest.raises(PayloadError):
            parse_video_payload(json.dumps({"lengthSeconds": "not a number"}))

    def test_select_thumbnail_by_tier(self):
        thumbs = [VideoThumbnail(url=f"t{i}") for i in range(5)]
        assert select_thumbnail(thumbs, ThumbnailSize.large) == "t2"
        assert select_thumbnail(thumbs, ThumbnailSize.medium) == "t3"
        assert select_thumbnail(thumbs, ThumbnailSize.small) == "t4"

    def test_select_thumbnail_disabled(self):
        thumbs = [VideoThumbnail(url=f"t{i}") for i in range(5)]
        assert select_thumbnail(thumbs, None) is None

    def test_select_thumbnail_list_too_short(self):
        thumbs = [VideoThumbnail(url=f"t{i}") for i in range(3)]
        assert select_thumbnail(thumbs, ThumbnailSize.small) is None

    def test_select_thumbnail_absolutizes_relative_url(self):
        thumbs = [VideoThumbnail(url=f"/vi/abc123/{i}.jpg") for i in range(5)]
        assert select_thumbnail(thumbs, ThumbnailSize.small, "https://inv.example/") == (
            "https://inv.example/vi/abc123/4.jpg"
        )

    def test_clean_description_converts_newlines(self):
        assert clean_description("line1\nline2") == "line1<br>line2"

    def test_clean_description_strips_scripts(self):
        cleaned = clean_description('<a href="https://x.example">x</a><script>alert(1)</script>')
        assert "<script" not in cleaned
        assert "alert(1)" not in cleaned
        assert "https://x.example" in cleaned

    def test_clean_description_none(self):
        assert clean_description(None) is None


class TestFetchDescription:
    """Tests for MetadataFetcher.fetch_description."""

    @pytest.mark.asyncio
    async def test_fetch_success(self):
        """Test a successful fetch against the configured mirror."""
        web = FakeWeb()
        web.json(VIDEO_URL, VIDEO_PAYLOAD)
        fetcher = make_fetcher(web, thumbnail_size=ThumbnailSize.small)

        data = await fetcher.fetch_description("abc123", max_attempts=3)

        assert data == DescriptionData(length=125, thumb="T", desc="line1<br>line2")
        assert web.count(VIDEO_URL) == 1

    @pytest.mark.asyncio
    async def test_server_errors_exhaust_attempts(self):
        """Test that persistent 500s use exactly max_attempts requests."""
        web = FakeWeb()
        web.add(VIDEO_URL, httpx.Response(500))
        fetcher = make_fetcher(web)

        data = await fetcher.fetch_description("abc123", max_attempts=3)

        assert data is None
        assert web.count(VIDEO_URL) == 3

    @pytest.mark.asyncio
    async def test_retry_then_success(self):
        web = FakeWeb()
        web.add(VIDEO_URL, httpx.Response(502), httpx.Response(200, json=VIDEO_PAYLOAD))
        fetcher = make_fetcher(web)

        data = await fetcher.fetch_description("abc123", max_attempts=3)

        assert data is not None
        assert data.length == 125
        assert web.count(VIDEO_URL) == 2

    @pytest.mark.asyncio
    async def test_malformed_payload_consumes_attempt(self):
        """Test that a bad body is retried like a failed request."""
        web = FakeWeb()
        web.add(
            VIDEO_URL,
            httpx.Response(200, text="{not json"),
            httpx.Response(200, json=VIDEO_PAYLOAD),
        )
        fetcher = make_fetcher(web)

        data = await fetcher.fetch_description("abc123", max_attempts=2)

        assert data is not None
        assert web.count(VIDEO_URL) == 2

    @pytest.mark.asyncio
    async def test_transport_errors_consume_attempts(self):
        web = FakeWeb()
        web.add(VIDEO_URL, httpx.ConnectError("connection refused"))
        fetcher = make_fetcher(web)

        assert await fetcher.fetch_description("abc123", max_attempts=2) is None
        assert web.count(VIDEO_URL) == 2

    @pytest.mark.asyncio
    async def test_default_attempts_from_settings(self):
        web = FakeWeb()
        web.add(VIDEO_URL, httpx.Response(500))
        fetcher = make_fetcher(web, fetch_attempts=4)

        assert await fetcher.fetch_description("abc123") is None
        assert web.count(VIDEO_URL) == 4

    @pytest.mark.asyncio
    async def test_no_server_available_raises(self):
        """Test that an empty pool is terminal instead of retried."""
        web = FakeWeb()
        web.add(INSTANCES_URL, httpx.Response(500))
        fetcher = make_fetcher(web, invidious_url=None)

        with pytest.raises(NoServerAvailable):
            await fetcher.fetch_description("abc123", max_attempts=3)

        assert web.count(INSTANCES_URL) == 1

    @pytest.mark.asyncio
    async def test_discovered_mirror_is_used(self):
        web = FakeWeb()
        web.json(INSTANCES_URL, [["inv.example", {"api": True, "uri": MIRROR}]])
        web.json(VIDEO_URL, VIDEO_PAYLOAD)
        fetcher = make_fetcher(web, invidious_url=None)

        data = await fetcher.fetch_description("abc123")

        assert data is not None
        assert data.length == 125

    @pytest.mark.asyncio
    async def test_thumbnail_disabled(self):
        web = FakeWeb()
        web.json(VIDEO_URL, VIDEO_PAYLOAD)
        fetcher = make_fetcher(web, thumbnail_size=None)

        data = await fetcher.fetch_description("abc123")

        assert data.thumb is None
        assert data.length == 125
