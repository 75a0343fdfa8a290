"""
Async database module for SQLite using SQLModel.

This module provides the durable record store: async database connectivity,
record save/load through the blob store, and lifecycle management for the
FastAPI application.
"""

import asyncio
import json
import logging
import threading
from pathlib import Path

from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.pool import NullPool

from sqlmodel import SQLModel, select, delete, text

from vidmeta.models import CONTENT_TYPE_HTML, ContentBlob, VideoRecord, content_ref, utcnow
from vidmeta.records import FetchErrorTag, MetadataRecord, transcript_from_list, transcript_to_list

logger = logging.getLogger(__name__)


def get_database_url(database_path: str | None = None) -> str:
    """
    Get the database URL, converting relative paths to absolute.

    Args:
        database_path: Path to database file (relative or absolute). If None, uses settings.

    Returns:
        SQLite database URL with absolute path
    """
    if database_path is None:
        from vidmeta.config import settings
        database_path = settings.database_path

    if not Path(database_path).is_absolute():
        # Make path relative to the project directory
        project_dir = Path(__file__).parent.parent
        database_path = str(project_dir / database_path)
    return f"sqlite+aiosqlite:///{database_path}"


def _encode_errors(errors: set[FetchErrorTag]) -> str:
    return ",".join(sorted(tag.value for tag in errors))


def _decode_errors(value: str) -> set[FetchErrorTag]:
    return {FetchErrorTag(tag) for tag in value.split(",") if tag}


class DatabaseEngine:
    """
    Async database engine manager and durable record store.

    Provides async database connectivity for SQLite with proper
    lifecycle management for FastAPI applications.
    """

    def __init__(self, database_url: str | None = None, echo: bool = False):
        """
        Initialize the database engine.

        Args:
            database_url: SQLAlchemy database URL for async SQLite. If None, uses settings.
            echo: Whether to echo SQL statements (for debugging)
        """
        self._engine = None
        self._session_factory = None
        self._database_url = database_url
        self._echo = echo
        self._lock = threading.Lock()
        # Serializes record writes with blob collection
        self._write_lock = asyncio.Lock()

    @property
    def database_url(self) -> str:
        """Get the database URL, resolving from settings if not set."""
        if self._database_url is None:
            self._database_url = get_database_url()
        return self._database_url

    @property
    def engine(self):
        """Get or create the async engine."""
        if self._engine is None:
            with self._lock:
                # Double-check after acquiring lock
                if self._engine is None:
                    self._engine = create_async_engine(
                        self.database_url,
                        echo=self._echo,
                        connect_args={"check_same_thread": False},
                        poolclass=NullPool,  # Better for SQLite
                    )
                    logger.info(f"Created async database engine: {self.database_url}")
        return self._engine

    @property
    def session_factory(self) -> async_sessionmaker[AsyncSession]:
        """Get or create the async session factory."""
        if self._session_factory is None:
            self._session_factory = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    async def init_db(self) -> None:
        """
        Initialize database tables.

        Creates all tables defined in SQLModel metadata.
        This should be called on application startup.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database tables initialized")

    async def close(self) -> None:
        """Close the database engine and cleanup resources."""
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine closed")

    # ------------------------------------------------------------------
    # Blob store
    # ------------------------------------------------------------------

    async def _put_blob(self, session: AsyncSession, content: str) -> str:
        ref = content_ref(content)
        if await session.get(ContentBlob, ref) is None:
            session.add(ContentBlob(ref=ref, content=content))
        return ref

    async def get_blob(self, ref: str) -> str | None:
        """Return blob content for ``ref``, or None if it does not exist."""
        async with self.session_factory() as session:
            blob = await session.get(ContentBlob, ref)
            return blob.content if blob is not None else None

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    async def load_record(self, video_id: str) -> MetadataRecord | None:
        """
        Load a saved record and resolve its blobs.

        Args:
            video_id: YouTube video ID

        Returns:
            MetadataRecord if saved, None otherwise
        """
        async with self.session_factory() as session:
            result = await session.execute(
                select(VideoRecord).where(VideoRecord.video_id == video_id)
            )
            row = result.scalars().first()
            if row is None:
                return None

            description = None
            if row.description_ref:
                blob = await session.get(ContentBlob, row.description_ref)
                description = blob.content if blob is not None else None

            caption = None
            if row.caption_ref:
                blob = await session.get(ContentBlob, row.caption_ref)
                if blob is not None:
                    caption = transcript_from_list(json.loads(blob.content))

            return MetadataRecord(
                length=row.length,
                thumbnail=row.thumbnail,
                description=description,
                caption=caption,
                errors=_decode_errors(row.errors),
            )

    async def save_record(self, video_id: str, record: MetadataRecord) -> VideoRecord:
        """
        Write a record, its description and its transcript.

        Missing fields on ``record`` leave previously saved values in place.

        Args:
            video_id: YouTube video ID
            record: Record to persist

        Returns:
            The saved VideoRecord row
        """
        async with self._write_lock, self.session_factory() as session:
            result = await session.execute(
                select(VideoRecord).where(VideoRecord.video_id == video_id)
            )
            row = result.scalars().first()
            if row is None:
                row = VideoRecord(video_id=video_id)
                session.add(row)

            if record.length is not None:
                row.length = record.length
            if record.thumbnail is not None:
                row.thumbnail = record.thumbnail
            if record.description is not None:
                row.description_ref = await self._put_blob(session, record.description)
                row.content_type = CONTENT_TYPE_HTML
            if record.caption is not None:
                row.caption_ref = await self._put_blob(
                    session, json.dumps(transcript_to_list(record.caption))
                )
            row.errors = _encode_errors(record.errors)
            row.updated_at = utcnow()

            await session.commit()
            await session.refresh(row)
            logger.info(f"Saved record for {video_id}")
            return row

    async def delete_record(self, video_id: str) -> bool:
        """
        Delete a saved record. Its blobs are left for garbage collection.

        Returns:
            True if a record was deleted
        """
        async with self.session_factory() as session:
            result = await session.execute(
                delete(VideoRecord).where(VideoRecord.video_id == video_id)
            )
            await session.commit()
            return (result.rowcount or 0) > 0

    async def collect_garbage(self) -> int:
        """
        Delete blobs no record refers to.

        Holds the write lock, so a blob reused by a save in progress is never
        collected before that save commits.

        Returns:
            Number of blobs deleted
        """
        async with self._write_lock, self.session_factory() as session:
            description_refs = select(VideoRecord.description_ref).where(
                VideoRecord.description_ref.isnot(None)
            )
            caption_refs = select(VideoRecord.caption_ref).where(
                VideoRecord.caption_ref.isnot(None)
            )
            result = await session.execute(
                delete(ContentBlob).where(
                    ContentBlob.ref.notin_(description_refs),
                    ContentBlob.ref.notin_(caption_refs),
                )
            )
            await session.commit()
            deleted_count = result.rowcount or 0
            if deleted_count > 0:
                logger.info(f"Collected {deleted_count} unreferenced blobs")
            return deleted_count

    async def health_check(self) -> dict[str, str]:
        """
        Check database health.

        Returns:
            Dictionary with status and message
        """
        try:
            async with self.session_factory() as session:
                await session.execute(text("SELECT 1"))
            return {"status": "healthy", "database": "connected"}
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "database": str(e)}


class DatabaseLifecycle:
    """
    Database lifecycle manager for FastAPI applications.

    Handles startup and shutdown events for database initialization
    and cleanup, and runs blob garbage collection in the background.
    """

    def __init__(self, engine: DatabaseEngine, gc_interval: float | None = None):
        """
        Initialize the lifecycle manager.

        Args:
            engine: Database engine to manage
            gc_interval: Seconds between garbage collection runs (default: settings.blob_gc_interval)
        """
        if gc_interval is None:
            from vidmeta.config import settings
            gc_interval = settings.blob_gc_interval
        self._engine = engine
        self._gc_interval = gc_interval
        self._gc_task: asyncio.Task | None = None
        self._shutdown_event: asyncio.Event | None = None

    async def startup(self) -> None:
        """Initialize database on application startup."""
        logger.info("Initializing database...")
        await self._engine.init_db()
        logger.info("Database initialized successfully")
        await self.start_background_gc()

    async def shutdown(self) -> None:
        """Cleanup database on application shutdown."""
        logger.info("Shutting down database...")
        await self.stop_background_gc()
        await self._engine.close()
        logger.info("Database shutdown complete")

    async def start_background_gc(self) -> None:
        """Start the background task collecting unreferenced blobs."""
        self._shutdown_event = asyncio.Event()

        async def gc_loop():
            """Background task that periodically collects garbage."""
            logger.info("Started background blob collection task")
            try:
                while not self._shutdown_event.is_set():
                    try:
                        await self._engine.collect_garbage()
                    except Exception as e:
                        logger.error(f"Error during blob collection: {e}")

                    # Wait for next interval or until shutdown
                    try:
                        await asyncio.wait_for(
                            self._shutdown_event.wait(),
                            timeout=self._gc_interval,
                        )
                        break  # Shutdown was signaled
                    except asyncio.TimeoutError:
                        continue
            except asyncio.CancelledError:
                logger.debug("Background blob collection task cancelled")
                raise
            finally:
                logger.info("Background blob collection task stopped")

        self._gc_task = asyncio.create_task(gc_loop())
        logger.info(f"Background blob collection started (every {self._gc_interval}s)")

    async def stop_background_gc(self) -> None:
        """Stop the background collection task."""
        if self._gc_task is not None:
            if self._shutdown_event is not None:
                self._shutdown_event.set()
            try:
                await asyncio.wait_for(self._gc_task, timeout=5.0)
            except asyncio.TimeoutError:
                self._gc_task.cancel()
                logger.warning("Background blob collection did not stop in time, cancelled")
            self._gc_task = None
            self._shutdown_event = None
