"""
Entry point for the video metadata service.

Run this file directly to start the FastAPI server:
    python main.py

Or use uvicorn directly:
    uvicorn vidmeta.main:app --reload --host 0.0.0.0 --port 8000
"""

import uvicorn

from vidmeta.config import settings


def main() -> None:
    """
    Start the uvicorn server.

    Server configuration can be overridden via environment variables:
    - HOST: Server host (default: 0.0.0.0)
    - PORT: Server port (default: 8000)
    - VIDMETA_INVIDIOUS_URL: Use one Invidious server instead of discovery
    - VIDMETA_AUTO_SAVE: Save every fetched record to the database
    """
    print("=" * 60)
    print("Video Metadata Service")
    print("=" * 60)
    print(f"Starting server on http://{settings.host}:{settings.port}")
    print("Fetch config:")
    print(f"  - Invidious: {settings.invidious_url or 'discovered from ' + settings.instances_url}")
    print(f"  - Attempts: {settings.fetch_attempts}")
    print("=" * 60)

    uvicorn.run(
        "vidmeta.main:app",
        host=settings.host,
        port=settings.port,
        reload=True,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
