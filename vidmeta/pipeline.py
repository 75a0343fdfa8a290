"""
Per-entry and batch orchestration of the metadata fetch.

For each feed entry the pipeline reuses or creates the cached record, runs
the description and caption sub-fetches independently, records which of
them failed, and hands the record to the cache, the optional durable store
and the display notifier.

Fetches of one video ID are serialized by a per-video lock, including a
forced re-fetch racing an ordinary fetch.
"""

import asyncio
import logging
from collections.abc import Iterable
from typing import Any, Protocol

from vidmeta.cache import RecordCache, RecordStore
from vidmeta.captions import CaptionService
from vidmeta.config import DESCRIPTION_FIELDS, MetadataField, Settings
from vidmeta.errors import NotFoundError
from vidmeta.records import FetchErrorTag, MetadataRecord
from vidmeta.service import MetadataFetcher
from vidmeta.utils import FeedEntry, video_id_from_entry

logger = logging.getLogger(__name__)


class RecordNotifier(Protocol):
    """Display collaborator told about every updated record."""

    async def record_updated(self, video_id: str, record: MetadataRecord) -> Any: ...


class LoggingNotifier:
    """Default notifier: reports the outcome of each fetch in the log."""

    async def record_updated(self, video_id: str, record: MetadataRecord) -> None:
        if record.errors:
            failed = ", ".join(sorted(tag.value for tag in record.errors))
            logger.warning(f"Fetched metadata for {video_id} with errors: {failed}")
        else:
            logger.info(f"Fetched metadata for {video_id}")


class Pipeline:
    """
    Coordinates the sub-fetches for feed entries.

    Sub-fetch failures never propagate: they are logged and recorded in the
    record's ``errors``, and the other sub-fetch still runs.
    """

    def __init__(
        self,
        cache: RecordCache,
        fetcher: MetadataFetcher,
        captions: CaptionService,
        config: Settings | None = None,
        store: RecordStore | None = None,
        notifier: RecordNotifier | None = None,
    ):
        """
        Initialize the pipeline.

        Args:
            cache: Record cache shared by all fetches
            fetcher: Description sub-fetch
            captions: Caption sub-fetch
            config: Settings instance. Uses global defaults if None.
            store: Durable store for auto-save and explicit commits
            notifier: Display collaborator (default: LoggingNotifier)
        """
        self.cache = cache
        self.fetcher = fetcher
        self.captions = captions
        self.config = config or Settings()
        self.store = store
        self.notifier = notifier or LoggingNotifier()
        self._video_locks: dict[str, asyncio.Lock] = {}
        self._video_waiters: dict[str, int] = {}

    async def _fetch_description(self, video_id: str, record: MetadataRecord) -> None:
        try:
            data = await self.fetcher.fetch_description(video_id, self.config.fetch_attempts)
        except NotFoundError as e:
            logger.warning(f"Description unavailable for {video_id}: {e}")
            data = None
        except Exception as e:
            logger.error(f"Unexpected error fetching description for {video_id}: {e}")
            data = None

        if data is None:
            record.errors.add(FetchErrorTag.description)
            return
        record.merge_description(data)

    async def _fetch_caption(self, video_id: str, record: MetadataRecord) -> None:
        try:
            transcript = await self.captions.fetch_captions(
                video_id, self.config.caption_languages, self.config.fetch_attempts
            )
        except NotFoundError as e:
            logger.warning(f"Captions unavailable for {video_id}: {e}")
            transcript = None
        except Exception as e:
            logger.error(f"Unexpected error fetching captions for {video_id}: {e}")
            transcript = None

        if transcript is None:
            record.errors.add(FetchErrorTag.caption)
            return
        record.set_caption(transcript)

    async def fetch_video(self, video_id: str, force: bool = False) -> MetadataRecord:
        """
        Fetch (or complete) the record for a video ID.

        Fetches of the same video ID run one at a time, so overlapping
        callers share a single cached record and a later caller only
        fetches what the earlier one left missing.

        Args:
            video_id: YouTube video ID
            force: Re-fetch fields that are already present

        Returns:
            The cached record, updated in place
        """
        lock = self._video_locks.setdefault(video_id, asyncio.Lock())
        self._video_waiters[video_id] = self._video_waiters.get(video_id, 0) + 1
        try:
            async with lock:
                return await self._fetch_video(video_id, force)
        finally:
            self._video_waiters[video_id] -= 1
            if not self._video_waiters[video_id]:
                del self._video_waiters[video_id]
                del self._video_locks[video_id]

    async def _fetch_video(self, video_id: str, force: bool) -> MetadataRecord:
        record = await self.cache.get(video_id)
        created = record is None
        if record is None:
            # Cached before fetching so readers see the record being filled in
            record = MetadataRecord()
            await self.cache.put(video_id, record)
        if force:
            record.errors.clear()

        requested = self.config.metadata_fields
        description_fields = set(requested & DESCRIPTION_FIELDS)
        jobs = []

        if description_fields and (force or not record.has_any(description_fields)):
            record.errors.discard(FetchErrorTag.description)
            jobs.append(self._fetch_description(video_id, record))

        if self.config.wants(MetadataField.caption) and (force or record.caption is None):
            record.errors.discard(FetchErrorTag.caption)
            jobs.append(self._fetch_caption(video_id, record))

        if not jobs and not created:
            logger.debug(f"Record for {video_id} already complete, nothing to fetch")
            return record

        await asyncio.gather(*jobs)

        await self.cache.put(video_id, record, force=force)
        if self.config.auto_save and self.store is not None:
            try:
                await self.store.save_record(video_id, record)
            except Exception as e:
                logger.error(f"Failed to save record for {video_id}: {e}")

        await self.notifier.record_updated(video_id, record)
        return record

    async def fetch_one(self, entry: FeedEntry, force: bool = False) -> MetadataRecord | None:
        """
        Fetch metadata for one feed entry.

        Args:
            entry: Feed entry to enrich
            force: Re-fetch fields that are already present

        Returns:
            The entry's record, or None if the entry is not a video
        """
        video_id = video_id_from_entry(entry)
        if video_id is None:
            logger.debug(f"Skipping entry {entry.entry_id!r}: not a YouTube video")
            return None
        return await self.fetch_video(video_id, force=force)

    async def fetch_batch(
        self, entries: Iterable[FeedEntry], force: bool = False
    ) -> dict[str, MetadataRecord]:
        """
        Fetch metadata for many entries concurrently.

        Waits for every entry. A failure in one entry is logged and does not
        affect the others.

        Returns:
            Records keyed by video ID (entries that are not videos are omitted)
        """
        entries = list(entries)
        results = await asyncio.gather(
            *(self.fetch_one(entry, force=force) for entry in entries),
            return_exceptions=True,
        )

        records: dict[str, MetadataRecord] = {}
        for entry, result in zip(entries, results):
            if isinstance(result, BaseException):
                logger.error(f"Fetch failed for entry {entry.entry_id!r}: {result}")
                continue
            if result is not None:
                records[video_id_from_entry(entry)] = result
        logger.info(f"Batch fetch finished: {len(records)} of {len(entries)} entries are videos")
        return records

    async def commit(self, video_id: str) -> bool:
        """
        Write the cached record for a video to the durable store.

        Returns:
            True if a record was written
        """
        if self.store is None:
            logger.warning(f"Cannot commit {video_id}: no durable store configured")
            return False
        record = await self.cache.get(video_id)
        if record is None:
            return False
        await self.store.save_record(video_id, record)
        return True
