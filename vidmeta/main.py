"""
FastAPI application for video metadata enrichment.

This module exposes the fetch pipeline over HTTP: feed entries go in,
cached metadata records (duration, thumbnail, description, transcript)
come out, and an explicit commit writes a record to the database.
"""

import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass

import httpx
import structlog
from fastapi import Depends, FastAPI, HTTPException, Path, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, Field

from vidmeta import __version__
from vidmeta.cache import RecordCache
from vidmeta.captions import CaptionFetcher, CaptionLocator, CaptionService
from vidmeta.config import Settings, settings
from vidmeta.database import DatabaseEngine, DatabaseLifecycle, get_database_url
from vidmeta.errors import NotFoundError, RecordNotFound
from vidmeta.http import HttpClient
from vidmeta.pipeline import Pipeline
from vidmeta.records import MetadataRecord, Transcript
from vidmeta.servers import ServerDirectory
from vidmeta.service import MetadataFetcher
from vidmeta.utils import format_timestamp, sanitize_for_log, video_id_from_entry, watch_url

# Configure logging with request ID context
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.dev.ConsoleRenderer(),
    ],
    wrapper_class=structlog.make_filtering_bound_logger(logging.INFO),
    context_class=dict,
    logger_factory=structlog.PrintLoggerFactory(),
    cache_logger_on_first_use=True,
)
logger = structlog.get_logger()


# Track app startup time for uptime calculation
_app_start_time = time.time()

VIDEO_ID_PATTERN = r"^[A-Za-z0-9_-]{1,64}$"


# ============================================================================
# Service wiring
# ============================================================================


@dataclass
class Services:
    """Everything the endpoints need, built once per process."""

    config: Settings
    http: HttpClient
    directory: ServerDirectory
    cache: RecordCache
    db_engine: DatabaseEngine
    db_lifecycle: DatabaseLifecycle
    pipeline: Pipeline


def build_services(config: Settings, transport: httpx.AsyncBaseTransport | None = None) -> Services:
    """
    Construct the pipeline and its collaborators from settings.

    Args:
        config: Settings to build from
        transport: Optional httpx transport for all outbound requests
    """
    http = HttpClient(config, transport=transport)
    directory = ServerDirectory(http, config)
    db_engine = DatabaseEngine(get_database_url(config.database_path))
    cache = RecordCache(maxsize=config.cache_maxsize, store=db_engine)
    pipeline = Pipeline(
        cache=cache,
        fetcher=MetadataFetcher(http, directory, config),
        captions=CaptionService(CaptionLocator(http, config), CaptionFetcher(http), config),
        config=config,
        store=db_engine,
    )
    return Services(
        config=config,
        http=http,
        directory=directory,
        cache=cache,
        db_engine=db_engine,
        db_lifecycle=DatabaseLifecycle(db_engine, config.blob_gc_interval),
        pipeline=pipeline,
    )


services = build_services(settings)


def get_services() -> Services:
    """FastAPI dependency returning the process-wide services."""
    return services


# ============================================================================
# Lifespan Context Manager
# ============================================================================


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Manage application lifespan events."""
    config = services.config

    logger.info("=" * 60)
    logger.info("Video Metadata Service Starting")
    logger.info("=" * 60)
    logger.info("Fetch pipeline:")
    logger.info(f"  - Fields: {', '.join(sorted(f.value for f in config.metadata_fields))}")
    logger.info(f"  - Thumbnail size: {config.thumbnail_size.value if config.thumbnail_size else 'disabled'}")
    logger.info(f"  - Caption languages: {', '.join(config.caption_languages)}")
    logger.info(f"  - Invidious server: {config.invidious_url or 'discovered'}")
    logger.info(f"  - Attempts per fetch: {config.fetch_attempts}")
    logger.info(f"  - Auto-save: {'enabled' if config.auto_save else 'disabled'}")
    logger.info("Database:")
    logger.info("  - Type: SQLite (async with sqlmodel)")
    logger.info(f"  - File: {config.database_path}")
    logger.info("=" * 60)

    try:
        await services.db_lifecycle.startup()
    except Exception as e:
        logger.error(f"Failed to initialize database: {e}")
        raise

    yield

    await services.http.aclose()
    try:
        await services.db_lifecycle.shutdown()
    except Exception as e:
        logger.error(f"Error during database shutdown: {e}")
        raise


app = FastAPI(
    title="Video Metadata Service",
    description="Enrich feed entries with video duration, thumbnail, description and captions",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan,
)


# ============================================================================
# Middleware Configuration
# ============================================================================


def configure_middleware():
    """Configure middleware based on settings."""
    from fastapi.middleware.cors import CORSMiddleware

    from vidmeta.middleware import RequestIdMiddleware, SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(RequestIdMiddleware)

    if settings.enable_security_headers:
        app.add_middleware(SecurityHeadersMiddleware)
        logger.info("Security headers middleware enabled")


# Configure middleware on import
configure_middleware()


# ============================================================================
# Pydantic Models
# ============================================================================


class CaptionLineModel(BaseModel):
    """A transcript line with its display timestamp and deep link."""

    timestamp: float = Field(..., description="Position in seconds")
    time: str = Field(..., description="Display timestamp (M:SS or H:MM:SS)")
    text: str = Field(..., description="Caption text")
    url: str = Field(..., description="Watch page link at this position")


class CaptionParagraphModel(BaseModel):
    """A group of transcript lines."""

    start_time: float = Field(..., description="Paragraph start in seconds")
    end_time: float = Field(..., description="Paragraph end in seconds")
    lines: list[CaptionLineModel] = Field(default_factory=list)


class RecordResponse(BaseModel):
    """Metadata record for one video."""

    video_id: str = Field(..., description="YouTube video ID")
    url: str = Field(..., description="Watch page link")
    length: int | None = Field(None, description="Duration in seconds")
    duration_formatted: str | None = Field(None, description="Human-readable duration")
    thumbnail: str | None = Field(None, description="Thumbnail URL")
    description: str | None = Field(None, description="Sanitized description HTML")
    caption: list[CaptionParagraphModel] | None = Field(None, description="Transcript paragraphs")
    errors: list[str] = Field(default_factory=list, description="Sub-fetches that failed")

    model_config = {
        "json_schema_extra": {
            "example": {
                "video_id": "dQw4w9WgXcQ",
                "url": "https://youtube.com/watch?v=dQw4w9WgXcQ",
                "length": 212,
                "duration_formatted": "3:32",
                "thumbnail": "https://i.ytimg.com/vi/dQw4w9WgXcQ/mqdefault.jpg",
                "description": "line one<br>line two",
                "caption": None,
                "errors": ["caption"],
            }
        }
    }


class EntryModel(BaseModel):
    """A feed entry to enrich."""

    id: str = Field(..., max_length=500, description="Entry identifier, e.g. yt:video:<ID>")
    link: str | None = Field(None, max_length=2000, description="Entry link")

    @property
    def entry_id(self) -> str:
        return self.id


class FetchRequest(BaseModel):
    """Request model for batch fetching."""

    entries: list[EntryModel] = Field(..., min_length=1, description="Feed entries")
    force: bool = Field(False, description="Re-fetch fields that are already cached")


class FetchResponseItem(BaseModel):
    """Result for one entry of a batch fetch."""

    entry_id: str = Field(..., description="The requested entry identifier")
    video_id: str | None = Field(None, description="Video ID, or null if the entry is not a video")
    record: RecordResponse | None = Field(None, description="Fetched record")


class TranscriptResponse(BaseModel):
    """Transcript of a video."""

    video_id: str = Field(..., description="YouTube video ID")
    paragraphs: list[CaptionParagraphModel] = Field(..., description="Transcript paragraphs")


class CommitResponse(BaseModel):
    """Result of an explicit commit."""

    video_id: str
    saved: bool


class ErrorResponse(BaseModel):
    """Error response model."""

    error: str = Field(..., description="Error type")
    message: str = Field(..., description="Human-readable error message")
    detail: str | None = Field(None, description="Additional error details")


class HealthResponse(BaseModel):
    """Response model for enhanced health check."""

    status: str = Field(..., description="Service status")
    service: str = Field(..., description="Service name")
    version: str = Field(..., description="Service version")
    timestamp: float = Field(..., description="Current Unix timestamp")
    uptime_seconds: float = Field(..., description="Service uptime in seconds")
    cache: dict = Field(default_factory=dict, description="Record cache statistics")
    servers: dict = Field(default_factory=dict, description="Invidious server pool")
    database: dict = Field(default_factory=dict, description="Database status")


# ============================================================================
# Conversions
# ============================================================================


def transcript_to_models(video_id: str, transcript: Transcript) -> list[CaptionParagraphModel]:
    """Render transcript paragraphs with display timestamps and deep links."""
    return [
        CaptionParagraphModel(
            start_time=paragraph.start_time,
            end_time=paragraph.end_time,
            lines=[
                CaptionLineModel(
                    timestamp=line.timestamp,
                    time=format_timestamp(line.timestamp),
                    text=line.text,
                    url=watch_url(video_id, line.timestamp),
                )
                for line in paragraph.lines
            ],
        )
        for paragraph in transcript
    ]


def record_to_response(video_id: str, record: MetadataRecord) -> RecordResponse:
    """Convert a MetadataRecord to its API representation."""
    return RecordResponse(
        video_id=video_id,
        url=watch_url(video_id),
        length=record.length,
        duration_formatted=format_timestamp(record.length) if record.length is not None else None,
        thumbnail=record.thumbnail,
        description=record.description,
        caption=transcript_to_models(video_id, record.caption) if record.caption is not None else None,
        errors=sorted(tag.value for tag in record.errors),
    )


# ============================================================================
# Exception Handlers
# ============================================================================


def _error(status_code: int, error: str, message: str, detail: str | None = None) -> Response:
    error_response = ErrorResponse(error=error, message=message, detail=detail)
    return Response(
        content=error_response.model_dump_json(),
        status_code=status_code,
        media_type="application/json",
    )


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    """Map terminal not-found conditions to 404."""
    logger.warning(f"Not found: {exc}")
    return _error(404, "not_found", str(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """
    Handle Pydantic validation errors with detailed feedback.

    Includes specific field and error information to help developers
    understand what went wrong with their request.
    """
    errors = exc.errors()
    logger.warning(f"Validation error: {errors}")

    error_details = []
    for error in errors:
        loc = " -> ".join(str(x) for x in error["loc"])
        error_details.append(f"{loc}: {error['msg']}")

    return _error(400, "validation_error", "Invalid request parameters", "; ".join(error_details))


# ============================================================================
# API Endpoints
# ============================================================================


@app.post(
    "/api/v1/entries/fetch",
    response_model=list[FetchResponseItem],
    responses={
        200: {"description": "Batch fetch completed"},
        400: {"model": ErrorResponse, "description": "Invalid request"},
    },
    summary="Fetch metadata for a batch of feed entries",
)
async def fetch_entries(
    batch: FetchRequest,
    svc: Services = Depends(get_services),
) -> list[FetchResponseItem]:
    """
    Fetch metadata for feed entries concurrently.

    Entries that are not YouTube videos are returned with a null video_id.
    Partial failures are reported per record in ``errors``.

    **Example:**
    ```bash
    curl -X POST "http://localhost:8000/api/v1/entries/fetch" \\
      -H "Content-Type: application/json" \\
      -d '{"entries": [{"id": "yt:video:dQw4w9WgXcQ"}], "force": false}'
    ```
    """
    if len(batch.entries) > svc.config.max_batch_size:
        raise HTTPException(
            status_code=400,
            detail=f"Too many entries. Maximum {svc.config.max_batch_size} per request.",
        )

    records = await svc.pipeline.fetch_batch(batch.entries, force=batch.force)

    results = []
    for entry in batch.entries:
        video_id = video_id_from_entry(entry)
        record = records.get(video_id) if video_id else None
        results.append(
            FetchResponseItem(
                entry_id=entry.id,
                video_id=video_id,
                record=record_to_response(video_id, record) if record is not None else None,
            )
        )
    return results


@app.post(
    "/api/v1/videos/{video_id}/fetch",
    response_model=RecordResponse,
    responses={400: {"model": ErrorResponse, "description": "Invalid video ID"}},
    summary="Fetch metadata for one video",
)
async def fetch_video(
    video_id: str = Path(..., pattern=VIDEO_ID_PATTERN, description="YouTube video ID"),
    force: bool = Query(False, description="Re-fetch fields that are already cached"),
    svc: Services = Depends(get_services),
) -> RecordResponse:
    """Fetch (or complete) the record for a single video ID."""
    record = await svc.pipeline.fetch_video(video_id, force=force)
    return record_to_response(video_id, record)


@app.get(
    "/api/v1/videos/{video_id}",
    response_model=RecordResponse,
    responses={404: {"model": ErrorResponse, "description": "Video not fetched yet"}},
    summary="Get the cached record for a video",
)
async def get_video(
    video_id: str = Path(..., pattern=VIDEO_ID_PATTERN, description="YouTube video ID"),
    svc: Services = Depends(get_services),
) -> RecordResponse:
    """Return the cached record without fetching anything."""
    record = await svc.cache.get(video_id)
    if record is None:
        logger.info(f"No record cached for {sanitize_for_log(video_id)}")
        raise RecordNotFound(video_id)
    return record_to_response(video_id, record)


@app.get(
    "/api/v1/videos/{video_id}/transcript",
    response_model=TranscriptResponse,
    responses={404: {"model": ErrorResponse, "description": "No transcript cached"}},
    summary="Get the cached transcript for a video",
)
async def get_transcript(
    video_id: str = Path(..., pattern=VIDEO_ID_PATTERN, description="YouTube video ID"),
    svc: Services = Depends(get_services),
) -> TranscriptResponse:
    """Return transcript paragraphs with display timestamps and deep links."""
    record = await svc.cache.get(video_id)
    if record is None or record.caption is None:
        raise RecordNotFound(video_id, "transcript")
    return TranscriptResponse(
        video_id=video_id,
        paragraphs=transcript_to_models(video_id, record.caption),
    )


@app.post(
    "/api/v1/videos/{video_id}/commit",
    response_model=CommitResponse,
    responses={404: {"model": ErrorResponse, "description": "Video not fetched yet"}},
    summary="Save the cached record to the database",
)
async def commit_video(
    video_id: str = Path(..., pattern=VIDEO_ID_PATTERN, description="YouTube video ID"),
    svc: Services = Depends(get_services),
) -> CommitResponse:
    """Persist the cached record for a video."""
    saved = await svc.pipeline.commit(video_id)
    if not saved:
        raise RecordNotFound(video_id)
    return CommitResponse(video_id=video_id, saved=True)


@app.get("/", summary="Simple health check")
async def root() -> dict[str, str]:
    """Simple health check endpoint."""
    return {"status": "healthy", "service": "vidmeta", "version": __version__}


@app.get("/health", response_model=HealthResponse, summary="Enhanced health check")
async def health(svc: Services = Depends(get_services)) -> HealthResponse:
    """
    Enhanced health check with service metrics.

    Returns service status, uptime, cache statistics, the mirror pool and
    database status.
    """
    cache_stats = await svc.cache.get_stats()
    db_status = await svc.db_engine.health_check()

    overall_status = "healthy" if db_status.get("status") == "healthy" else "degraded"

    return HealthResponse(
        status=overall_status,
        service="vidmeta",
        version=__version__,
        timestamp=time.time(),
        uptime_seconds=time.time() - _app_start_time,
        cache=cache_stats,
        servers={
            "override": svc.config.invidious_url,
            "discovered": len(svc.directory.servers),
        },
        database=db_status,
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
