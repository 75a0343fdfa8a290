"""
In-memory record cache keyed by video ID.

This module provides the cache that decides whether a video was already
fetched. It sits in front of an optional durable store: a memory miss falls
back to the store, and a record found there is kept in memory afterwards.

The cache is constructed explicitly and passed to its consumers; there is no
module-level instance. It assumes a single event loop and makes no attempt to
serialize concurrent writers of the same key.
"""

import logging
from typing import Any, Protocol

from cachetools import LRUCache

from vidmeta.records import MetadataRecord

logger = logging.getLogger(__name__)


class RecordStore(Protocol):
    """Durable storage for records (implemented by DatabaseEngine)."""

    async def load_record(self, video_id: str) -> MetadataRecord | None: ...
    async def save_record(self, video_id: str, record: MetadataRecord) -> Any: ...


class RecordCache:
    """
    Mapping from video ID to MetadataRecord.

    Records are stored by reference: the pipeline updates a cached record in
    place, so a ``get`` after ``put`` returns the very same object. Memory is
    bounded by an LRU policy; a record dropped from memory is still
    available from the durable store if it was saved there.
    """

    def __init__(self, maxsize: int | None = None, store: RecordStore | None = None):
        """
        Initialize the cache.

        Args:
            maxsize: Maximum records held in memory (default: settings.cache_maxsize)
            store: Optional durable store consulted on memory misses
        """
        if maxsize is None:
            from vidmeta.config import settings

            maxsize = settings.cache_maxsize
        self._maxsize = maxsize
        self._records: LRUCache = LRUCache(maxsize=maxsize)
        self.store = store
        self._hits = 0
        self._misses = 0

    @property
    def maxsize(self) -> int:
        return self._maxsize

    def __contains__(self, video_id: str) -> bool:
        return video_id in self._records

    def __len__(self) -> int:
        return len(self._records)

    async def get(self, video_id: str) -> MetadataRecord | None:
        """
        Look up the record for a video.

        Args:
            video_id: YouTube video ID

        Returns:
            The cached record, or None if neither memory nor the store has it
        """
        record = self._records.get(video_id)
        if record is not None:
            self._hits += 1
            return record

        if self.store is not None:
            record = await self.store.load_record(video_id)
            if record is not None:
                logger.debug(f"Loaded record for {video_id} from durable store")
                self._records[video_id] = record
                self._hits += 1
                return record

        self._misses += 1
        return None

    async def put(self, video_id: str, record: MetadataRecord, force: bool = False) -> bool:
        """
        Insert a record unless one is already cached.

        Args:
            video_id: YouTube video ID
            record: Record to store
            force: Replace an existing record

        Returns:
            True if the record was inserted
        """
        if not force and video_id in self._records:
            return False
        self._records[video_id] = record
        logger.debug(f"Cached record for {video_id}")
        return True

    async def clear(self) -> None:
        """Drop every record held in memory."""
        size = len(self._records)
        self._records.clear()
        logger.info(f"Record cache cleared: {size} entries removed")

    async def get_stats(self) -> dict[str, Any]:
        """
        Get cache statistics.

        Returns:
            Dictionary with cache size, hits, misses, and hit rate
        """
        total = self._hits + self._misses
        hit_rate = self._hits / total if total > 0 else 0
        return {
            "size": len(self._records),
            "maxsize": self._maxsize,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": hit_rate,
        }
