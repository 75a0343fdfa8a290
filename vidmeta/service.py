"""
Video metadata retrieval from Invidious mirrors.

This module implements the description sub-fetch: duration, thumbnail and
description for a video, read from a mirror's ``/api/v1/videos`` endpoint.

Retry Strategy:
    1. Every attempt picks a mirror at random from the pool (or the
       configured override); a failing mirror may be picked again.
    2. Non-200 responses, transport errors and malformed payloads all
       consume one attempt from the same budget.
    3. Attempts follow each other immediately, without backoff.
    4. A missing mirror (no override, empty pool) is terminal and raised
       as NoServerAvailable instead of being retried.
"""

import json
import logging
from urllib.parse import quote

import nh3
from pydantic import BaseModel, Field, ValidationError

from vidmeta.config import Settings, ThumbnailSize
from vidmeta.errors import NoServerAvailable, PayloadError
from vidmeta.http import HttpClient
from vidmeta.records import DescriptionData
from vidmeta.servers import ServerDirectory

logger = logging.getLogger(__name__)


# Fields requested from the mirror; everything else is left out of the payload
VIDEO_FIELDS = ("videoThumbnails", "descriptionHtml", "lengthSeconds")

# Position of each size tier in the mirror's thumbnail list
THUMBNAIL_INDEX: dict[ThumbnailSize, int] = {
    ThumbnailSize.large: 2,
    ThumbnailSize.medium: 3,
    ThumbnailSize.small: 4,
}

LINE_BREAK = "<br>"


class VideoThumbnail(BaseModel):
    """One thumbnail variant."""

    url: str
    quality: str | None = None
    width: int | None = None
    height: int | None = None


class InvidiousVideo(BaseModel):
    """The subset of the ``/api/v1/videos/<id>`` payload we request."""

    length_seconds: int | None = Field(default=None, alias="lengthSeconds")
    description_html: str | None = Field(default=None, alias="descriptionHtml")
    video_thumbnails: list[VideoThumbnail] = Field(default_factory=list, alias="videoThumbnails")


def video_endpoint(server: str, video_id: str) -> str:
    """Build the metadata endpoint URL for ``video_id`` on ``server``."""
    return f"{server.rstrip('/')}/api/v1/videos/{quote(video_id)}?fields={','.join(VIDEO_FIELDS)}"


def parse_video_payload(body: str) -> InvidiousVideo:
    """
    Parse and validate a metadata response body.

    Raises:
        PayloadError: If the body is not JSON or has the wrong shape
    """
    try:
        return InvidiousVideo.model_validate(json.loads(body))
    except (json.JSONDecodeError, ValidationError) as e:
        raise PayloadError(f"Malformed video metadata payload: {e}") from e


def select_thumbnail(
    thumbnails: list[VideoThumbnail], size: ThumbnailSize | None, server: str | None = None
) -> str | None:
    """
    Pick the thumbnail URL for a size tier.

    Args:
        thumbnails: Variants as returned by the mirror
        size: Configured tier; None disables thumbnails
        server: Mirror base URL used to absolutize relative URLs

    Returns:
        Thumbnail URL, or None when disabled or the list is too short
    """
    if size is None:
        return None
    index = THUMBNAIL_INDEX.get(size)
    if index is None or index >= len(thumbnails):
        return None
    url = thumbnails[index].url
    if server and url.startswith("/"):
        url = server.rstrip("/") + url
    return url


def clean_description(description_html: str | None) -> str | None:
    """Turn newlines into line breaks and sanitize the markup."""
    if description_html is None:
        return None
    return nh3.clean(description_html.replace("\n", LINE_BREAK))


def normalize_video(
    video: InvidiousVideo, size: ThumbnailSize | None, server: str | None = None
) -> DescriptionData:
    """Convert a validated payload into a DescriptionData."""
    return DescriptionData(
        length=video.length_seconds,
        thumb=select_thumbnail(video.video_thumbnails, size, server),
        desc=clean_description(video.description_html),
    )


class MetadataFetcher:
    """
    Fetches description data for a video from the mirror pool.

    This class owns the bounded retry loop; server selection is delegated
    to a ServerDirectory.
    """

    def __init__(
        self,
        http: HttpClient,
        directory: ServerDirectory,
        config: Settings | None = None,
    ):
        """
        Initialize the fetcher.

        Args:
            http: Shared HTTP client
            directory: Mirror pool to pick servers from
            config: Settings instance. Uses global defaults if None.
        """
        self.http = http
        self.directory = directory
        self.config = config or Settings()

    async def fetch_description(
        self, video_id: str, max_attempts: int | None = None
    ) -> DescriptionData | None:
        """
        Fetch duration, thumbnail and description for a video.

        Args:
            video_id: YouTube video ID
            max_attempts: Total attempts (default: settings.fetch_attempts)

        Returns:
            DescriptionData, or None once the attempt budget is spent

        Raises:
            NoServerAvailable: If there is no mirror to ask
        """
        attempts = max_attempts if max_attempts is not None else self.config.fetch_attempts
        total = attempts

        while attempts > 0:
            server = await self.directory.pick_server()
            if server is None:
                logger.error(f"Cannot fetch metadata for {video_id}: no Invidious server available")
                raise NoServerAvailable()

            attempt = total - attempts + 1
            url = video_endpoint(server, video_id)
            logger.debug(f"Fetching metadata for {video_id} from {server} (attempt {attempt}/{total})")
            response = await self.http.request(url)
            attempts -= 1

            if response.status_code == 200:
                try:
                    video = parse_video_payload(response.body)
                except PayloadError as e:
                    logger.warning(f"Malformed metadata for {video_id} from {server}: {e}")
                    continue
                return normalize_video(video, self.config.thumbnail_size, server)

            logger.warning(
                f"Metadata request for {video_id} to {server} failed: "
                f"{response.status_code} {response.error_message or ''}".rstrip()
                + (f". Retrying ({attempts} left)" if attempts > 0 else "")
            )

        logger.error(f"Failed to fetch metadata for {video_id} after {total} attempts")
        return None
