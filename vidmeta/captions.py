"""
Caption discovery, language selection and transcript segmentation.

Caption tracks are not served by the mirrors. They are scraped from the
YouTube watch page, which embeds the player response as inline JSON:

    ..."captions":{"playerCaptionsTracklistRenderer":{"captionTracks":[...]}},"videoDetails":...

``extract_caption_tracks`` locates that blob by its two markers. This is an
unversioned scraping contract: when the page layout changes the markers stop
matching and CaptionMarkupError is raised, keeping the breakage contained
here.

The selected track's timed-text XML is sanitized, parsed into
``<text start dur>`` entries and grouped into paragraphs of roughly
``PARAGRAPH_SECONDS`` seconds.
"""

import json
import logging
import math
import xml.etree.ElementTree as ET
from typing import Any

from vidmeta.config import Settings
from vidmeta.errors import CaptionMarkupError, NoCaptionTracks, NoMatchingLanguage
from vidmeta.http import HttpClient
from vidmeta.records import CaptionLine, CaptionParagraph, CaptionTrack, TimedText, Transcript
from vidmeta.utils import watch_url

logger = logging.getLogger(__name__)


CAPTIONS_MARKER = '"captions":'
VIDEO_DETAILS_MARKER = ',"videoDetails'

PARAGRAPH_SECONDS = 30

# Entity pairs left double-encoded by the timed-text endpoint
CAPTION_REPLACEMENTS = (
    ("&amp;#39;", "'"),
    ("&amp;quot;", '"'),
    ("\n", " "),
)

# Zero-width characters scattered through auto-generated captions
STRIP_CHARACTERS = ("\u200b", "\ufeff")


# ============================================================================
# Caption Locator
# ============================================================================


def _track_name(name: Any) -> str:
    """Read a track label in either ``simpleText`` or ``runs`` form."""
    if not isinstance(name, dict):
        return ""
    if "simpleText" in name:
        return str(name["simpleText"])
    runs = name.get("runs") or []
    return "".join(str(run.get("text", "")) for run in runs if isinstance(run, dict))


def extract_caption_tracks(page: str) -> list[CaptionTrack]:
    """
    Pull the caption track list out of a watch page.

    Args:
        page: Raw watch page HTML

    Returns:
        Caption tracks in page order (possibly empty)

    Raises:
        CaptionMarkupError: If either marker is missing or the bounded
            slice is not valid JSON
    """
    start = page.find(CAPTIONS_MARKER)
    if start == -1:
        raise CaptionMarkupError("Watch page has no captions marker")
    start += len(CAPTIONS_MARKER)

    end = page.find(VIDEO_DETAILS_MARKER, start)
    if end == -1:
        raise CaptionMarkupError("Watch page has no videoDetails marker after captions")

    blob = page[start:end].replace("\n", "")
    try:
        captions = json.loads(blob)
    except json.JSONDecodeError as e:
        raise CaptionMarkupError(f"Captions blob is not valid JSON: {e}") from e

    if not isinstance(captions, dict):
        raise CaptionMarkupError("Captions blob has unexpected shape")

    renderer = captions.get("playerCaptionsTracklistRenderer") or {}
    tracks = []
    for raw in renderer.get("captionTracks") or []:
        if not isinstance(raw, dict) or not raw.get("baseUrl"):
            continue
        tracks.append(
            CaptionTrack(
                language_name=_track_name(raw.get("name")),
                language_code=str(raw.get("languageCode", "")),
                base_url=raw["baseUrl"],
                kind=raw.get("kind"),
            )
        )
    return tracks


class CaptionLocator:
    """Scrapes the list of caption tracks for a video."""

    def __init__(self, http: HttpClient, config: Settings | None = None):
        self.http = http
        self.config = config or Settings()

    async def locate_caption_tracks(self, video_id: str) -> list[CaptionTrack] | None:
        """
        Fetch the watch page and extract its caption tracks.

        Returns:
            Caption tracks, or None on a download or parse failure
        """
        response = await self.http.request(watch_url(video_id))
        if response.status_code != 200:
            logger.warning(
                f"Could not fetch watch page for {video_id}: "
                f"{response.status_code} {response.error_message or ''}".rstrip()
            )
            return None

        try:
            return extract_caption_tracks(response.body)
        except CaptionMarkupError as e:
            logger.warning(f"Could not parse caption tracks for {video_id}: {e}")
            return None


# ============================================================================
# Caption Selector
# ============================================================================


def select_track(
    tracks: list[CaptionTrack], language_preferences: list[str]
) -> CaptionTrack | None:
    """
    Pick the caption track best matching the language preferences.

    Preferences are tried in order. For each one, tracks are scanned in list
    order for a case-insensitive substring match against the language name
    or code; the first hit wins.

    Examples:
        Tracks ``[es, en]`` with preferences ``["english", "spanish"]``
        select the ``en`` track.
    """
    if not tracks:
        logger.info("No caption tracks to select from")
        return None

    for preference in language_preferences:
        needle = preference.lower()
        for track in tracks:
            if needle in track.language_name.lower() or needle in track.language_code.lower():
                return track

    logger.info(
        f"No caption track matches languages {language_preferences}; "
        f"available: {[t.language_name or t.language_code for t in tracks]}"
    )
    return None


# ============================================================================
# Caption Fetcher & Segmenter
# ============================================================================


def sanitize_caption_markup(body: str) -> str:
    """Decode the double-encoded entities and drop newlines and zero-width spaces."""
    for old, new in CAPTION_REPLACEMENTS:
        body = body.replace(old, new)
    for char in STRIP_CHARACTERS:
        body = body.replace(char, "")
    return body


def parse_timed_text(markup: str) -> list[TimedText]:
    """
    Parse timed-text XML into entries.

    Raises:
        CaptionMarkupError: If the markup is not well-formed XML
    """
    try:
        root = ET.fromstring(markup)
    except ET.ParseError as e:
        raise CaptionMarkupError(f"Malformed timed-text markup: {e}") from e

    entries = []
    for element in root.iter("text"):
        try:
            start = float(element.get("start", "0"))
            duration = float(element.get("dur", "0"))
        except ValueError as e:
            raise CaptionMarkupError(f"Bad timing on caption entry: {e}") from e
        text = "".join(element.itertext())
        entries.append(TimedText(start=start, duration=duration, text=text))
    return entries


def segment_transcript(entries: list[TimedText], bucket: int = PARAGRAPH_SECONDS) -> Transcript:
    """
    Group timed entries into paragraphs.

    A paragraph closes when the whole-second position wraps around the
    bucket (``floor(t) % bucket`` drops below the previous entry's). This
    only approximates fixed bucket boundaries and is kept as is: changing it
    would change the produced paragraphs.

    The last paragraph is always emitted, even when empty.
    """
    paragraphs: list[CaptionParagraph] = []
    previous_time = 0.0
    paragraph_start = 0.0
    lines: list[CaptionLine] = []

    for entry in entries:
        time = entry.start
        if math.floor(time) % bucket < math.floor(previous_time) % bucket:
            paragraphs.append(CaptionParagraph(paragraph_start, time, tuple(lines)))
            paragraph_start = time
            lines = []
        lines.append(CaptionLine(timestamp=time, text=entry.text.replace("\n", " ")))
        previous_time = time

    end_time = entries[-1].start + entries[-1].duration if entries else paragraph_start
    paragraphs.append(CaptionParagraph(paragraph_start, max(end_time, paragraph_start), tuple(lines)))
    return tuple(paragraphs)


class CaptionFetcher:
    """Downloads a caption track and turns it into a transcript."""

    def __init__(self, http: HttpClient):
        self.http = http

    async def fetch_transcript(self, track: CaptionTrack) -> Transcript | None:
        """
        Download and segment a caption track.

        Returns:
            Transcript, or None on a download or parse failure
        """
        response = await self.http.request(track.base_url)
        if response.status_code != 200:
            logger.warning(
                f"Caption download failed ({track.language_code}): "
                f"{response.error_message or 'no error message'} (status {response.status_code})"
            )
            return None

        try:
            entries = parse_timed_text(sanitize_caption_markup(response.body))
        except CaptionMarkupError as e:
            logger.warning(f"Could not parse captions ({track.language_code}): {e}")
            return None

        logger.debug(f"Parsed {len(entries)} caption entries ({track.language_code})")
        return segment_transcript(entries)


# ============================================================================
# Caption sub-fetch
# ============================================================================


class CaptionService:
    """
    Runs locate, select and fetch for one video under an attempt budget.

    Download and parse failures consume attempts; a video without tracks or
    without a matching language fails immediately.
    """

    def __init__(
        self,
        locator: CaptionLocator,
        fetcher: CaptionFetcher,
        config: Settings | None = None,
    ):
        self.locator = locator
        self.fetcher = fetcher
        self.config = config or Settings()

    async def fetch_captions(
        self,
        video_id: str,
        languages: list[str] | None = None,
        max_attempts: int | None = None,
    ) -> Transcript | None:
        """
        Fetch the preferred-language transcript for a video.

        Returns:
            Transcript, or None once the attempt budget is spent

        Raises:
            NoCaptionTracks: If the video lists no caption tracks
            NoMatchingLanguage: If no track matches the preferences
        """
        languages = languages if languages is not None else self.config.caption_languages
        attempts = max_attempts if max_attempts is not None else self.config.fetch_attempts

        track: CaptionTrack | None = None
        while attempts > 0:
            attempts -= 1
            if track is None:
                tracks = await self.locator.locate_caption_tracks(video_id)
                if tracks is None:
                    continue
                if not tracks:
                    raise NoCaptionTracks(video_id)
                track = select_track(tracks, languages)
                if track is None:
                    raise NoMatchingLanguage(video_id, languages)

            transcript = await self.fetcher.fetch_transcript(track)
            if transcript is not None:
                return transcript

        logger.error(f"Failed to fetch captions for {video_id}")
        return None
