"""Shared pytest fixtures: a fake web for outbound HTTP and an API client."""

import json
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

from vidmeta.config import Settings
from vidmeta.http import HttpClient

MIRROR = "https://inv.example"
INSTANCES_URL = "https://instances.example/instances.json"
CAPTION_URL = "https://youtube.com/api/timedtext?v=abc123&lang=en"

VIDEO_PAYLOAD = {
    "lengthSeconds": 125,
    "descriptionHtml": "line1\nline2",
    "videoThumbnails": [
        {"url": "https://img.example/maxres.jpg", "quality": "maxres"},
        {"url": "https://img.example/maxresdefault.jpg", "quality": "maxresdefault"},
        {"url": "https://img.example/sddefault.jpg", "quality": "sddefault"},
        {"url": "https://img.example/high.jpg", "quality": "high"},
        {"url": "T", "quality": "medium"},
    ],
}

TIMED_TEXT = (
    "<transcript>"
    '<text start="0" dur="4.5">Hello and welcome</text>'
    '<text start="10" dur="3">it&amp;#39;s a &amp;quot;test&amp;quot;</text>'
    '<text start="29" dur="2">still the\nfirst paragraph</text>'
    '<text start="31" dur="5">second paragraph</text>'
    "</transcript>"
)


def caption_track(name: str, code: str, base_url: str = CAPTION_URL, kind: str | None = None) -> dict:
    """A captionTracks entry as embedded in the watch page."""
    track = {"baseUrl": base_url, "name": {"simpleText": name}, "languageCode": code}
    if kind:
        track["kind"] = kind
    return track


def watch_page(tracks: list[dict] | None) -> str:
    """Build a watch page embedding the given caption tracks."""
    if tracks is None:
        return "<html><body>no player response here</body></html>"
    captions = {"playerCaptionsTracklistRenderer": {"captionTracks": tracks}}
    return (
        "<html><script>var ytInitialPlayerResponse = "
        f'{{"responseContext":{{}},"captions":{json.dumps(captions)},'
        '"videoDetails":{"videoId":"abc123"}};</script></html>'
    )


class FakeWeb:
    """
    Routes requests to canned responses by URL prefix.

    Each route holds a list of responses served in order; the last one is
    repeated once the list runs out. Unrouted URLs get a 404.
    """

    def __init__(self):
        self.routes: dict[str, list] = {}
        self.calls: list[str] = []

    def add(self, prefix: str, *responses) -> None:
        self.routes[prefix] = list(responses)

    def json(self, prefix: str, payload, status_code: int = 200) -> None:
        self.add(prefix, httpx.Response(status_code, json=payload))

    def count(self, prefix: str) -> int:
        return sum(1 for url in self.calls if url.startswith(prefix))

    def handler(self, request: httpx.Request) -> httpx.Response:
        url = str(request.url)
        self.calls.append(url)
        for prefix in sorted(self.routes, key=len, reverse=True):
            if url.startswith(prefix):
                responses = self.routes[prefix]
                response = responses.pop(0) if len(responses) > 1 else responses[0]
                if isinstance(response, Exception):
                    raise response
                return response
        return httpx.Response(404, text="not found")

    @property
    def transport(self) -> httpx.MockTransport:
        return httpx.MockTransport(self.handler)


@pytest.fixture
def fake_web():
    """A fake web serving one video (abc123) from one mirror and YouTube."""
    web = FakeWeb()
    web.json(f"{MIRROR}/api/v1/videos/abc123", VIDEO_PAYLOAD)
    web.add(
        "https://youtube.com/watch?v=abc123",
        httpx.Response(200, text=watch_page([caption_track("English", "en")])),
    )
    web.add(CAPTION_URL, httpx.Response(200, text=TIMED_TEXT))
    return web


@pytest.fixture
def test_settings(tmp_path):
    """Settings pinned to the fake mirror and a temporary database."""
    return Settings(
        invidious_url=MIRROR,
        instances_url=INSTANCES_URL,
        database_path=str(tmp_path / "test.db"),
        auto_save=False,
    )


@pytest.fixture
def http_client(fake_web, test_settings):
    """HttpClient whose requests are answered by the fake web."""
    return HttpClient(test_settings, transport=fake_web.transport)


@pytest.fixture
def client(fake_web, test_settings):
    """FastAPI TestClient backed by the fake web and a temporary database."""
    from vidmeta.main import app, build_services

    test_services = build_services(test_settings, transport=fake_web.transport)
    with patch("vidmeta.main.services", test_services):
        with TestClient(app) as test_client:
            yield test_client
