"""
SQLModel database models for the durable record store.

A saved record keeps its scalar fields inline. Its description and its
serialized transcript are stored as content-addressed blobs and referenced
by hash, so identical content is stored once.
"""

import hashlib
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel

# Content type recorded when a description (HTML markup) is written
CONTENT_TYPE_HTML = "html"


def utcnow() -> datetime:
    """Return current UTC time as naive datetime for SQLite compatibility.

    SQLite stores datetimes as strings without timezone info. When retrieved,
    they become timezone-naive datetimes. Using naive datetimes consistently
    prevents comparison errors between aware and naive datetimes.
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


def content_ref(content: str) -> str:
    """Return the blob reference (SHA-256 hex digest) for ``content``."""
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


class ContentBlob(SQLModel, table=True):
    """Blob store entry, keyed by the hash of its content."""

    ref: str = Field(primary_key=True, max_length=64, description="SHA-256 of the content")
    content: str = Field(description="Blob content")
    created_at: datetime = Field(default_factory=utcnow, description="When the blob was written")


class VideoRecordBase(SQLModel):
    """Base model for saved metadata records."""

    video_id: str = Field(index=True, unique=True, max_length=50, description="YouTube video ID")
    length: int | None = Field(default=None, description="Duration in seconds")
    thumbnail: str | None = Field(default=None, max_length=2000, description="Thumbnail URL")
    description_ref: str | None = Field(default=None, max_length=64, description="Description blob")
    caption_ref: str | None = Field(default=None, max_length=64, description="Transcript blob (JSON)")
    content_type: str | None = Field(default=None, max_length=20, description="Markup type of the description")
    errors: str = Field(default="", description="Comma-separated failed sub-fetches")


class VideoRecord(VideoRecordBase, table=True):
    """Persistent metadata record for one video."""

    id: int | None = Field(default=None, primary_key=True, description="Row ID")
    created_at: datetime = Field(default_factory=utcnow, description="When the record was first saved")
    updated_at: datetime = Field(default_factory=utcnow, description="When the record was last saved")
