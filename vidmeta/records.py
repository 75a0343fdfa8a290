"""
Domain records shared by the fetchers, the cache and the durable store.

A ``MetadataRecord`` is the unit of caching: one per video ID, filled in
field by field as the description and caption sub-fetches complete.
Transcripts are immutable once built.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from vidmeta.config import MetadataField


class FetchErrorTag(str, Enum):
    """Sub-fetches whose failure is recorded on a record."""

    description = "description"
    caption = "caption"


@dataclass(frozen=True)
class CaptionTrack:
    """
    One caption stream listed on a watch page.

    Attributes:
        language_name: Human-readable name (e.g. "English (auto-generated)")
        language_code: Language code (e.g. "en")
        base_url: Timed-text download URL
        kind: "asr" for auto-generated tracks, None for uploaded ones
    """

    language_name: str
    language_code: str
    base_url: str
    kind: str | None = None


@dataclass(frozen=True)
class TimedText:
    """A single ``<text start dur>`` entry from timed-text markup."""

    start: float
    duration: float
    text: str


@dataclass(frozen=True)
class CaptionLine:
    """A transcript line. ``timestamp`` is kept numeric for deep links."""

    timestamp: float
    text: str


@dataclass(frozen=True)
class CaptionParagraph:
    """Lines grouped into one (roughly 30 second) paragraph."""

    start_time: float
    end_time: float
    lines: tuple[CaptionLine, ...] = ()

    def to_dict(self) -> dict[str, Any]:
        return {
            "start_time": self.start_time,
            "end_time": self.end_time,
            "lines": [{"timestamp": line.timestamp, "text": line.text} for line in self.lines],
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CaptionParagraph":
        return cls(
            start_time=float(data["start_time"]),
            end_time=float(data["end_time"]),
            lines=tuple(
                CaptionLine(timestamp=float(line["timestamp"]), text=line["text"])
                for line in data.get("lines", [])
            ),
        )


Transcript = tuple[CaptionParagraph, ...]


def transcript_to_list(transcript: Transcript) -> list[dict[str, Any]]:
    """Serialize a transcript to JSON-safe data."""
    return [paragraph.to_dict() for paragraph in transcript]


def transcript_from_list(data: list[dict[str, Any]]) -> Transcript:
    """Rebuild a transcript from ``transcript_to_list`` output."""
    return tuple(CaptionParagraph.from_dict(item) for item in data)


@dataclass(frozen=True)
class DescriptionData:
    """
    Normalized result of a mirror metadata request.

    Attributes:
        length: Duration in seconds, verbatim from the mirror
        thumb: Thumbnail URL for the configured size tier, if any
        desc: Sanitized description markup with newlines as <br>
    """

    length: int | None = None
    thumb: str | None = None
    desc: str | None = None


@dataclass
class MetadataRecord:
    """
    Aggregate metadata for one video.

    Fields are filled independently. A present field is never cleared, only
    replaced by a newer non-empty value (see ``merge_description`` and
    ``set_caption``). ``errors`` lists the sub-fetches that failed during the
    most recent fetch and is empty when everything succeeded.
    """

    length: int | None = None
    thumbnail: str | None = None
    description: str | None = None
    caption: Transcript | None = None
    errors: set[FetchErrorTag] = field(default_factory=set)

    def merge_description(self, data: DescriptionData) -> None:
        """Copy present values from a description fetch onto this record."""
        if data.length is not None:
            self.length = data.length
        if data.thumb is not None:
            self.thumbnail = data.thumb
        if data.desc is not None:
            self.description = data.desc

    def set_caption(self, transcript: Transcript | None) -> None:
        if transcript is not None:
            self.caption = transcript

    def has_any(self, fields: set[MetadataField]) -> bool:
        """Return True if any of ``fields`` already holds a value."""
        return any(self.get(f) is not None for f in fields)

    def get(self, metadata_field: MetadataField) -> Any:
        return getattr(self, metadata_field.value)
