"""
Asynchronous HTTP request primitive.

Every outbound call made by the pipeline goes through ``HttpClient.request``,
which always resolves to an ``HttpResponse`` instead of raising. Callers
decide what a failed or non-200 response means for them.
"""

import logging
from dataclasses import dataclass, field

import httpx

from vidmeta.config import Settings

logger = logging.getLogger(__name__)


@dataclass
class HttpResponse:
    """
    Outcome of a single request.

    Attributes:
        success: True when a response with a 2xx status arrived
        status_code: HTTP status, or 0 when no response arrived
        headers: Response headers
        body: Decoded response body
        error_message: Reason phrase or transport error text on failure
    """

    success: bool
    status_code: int
    headers: dict[str, str] = field(default_factory=dict)
    body: str = ""
    error_message: str | None = None


class HttpClient:
    """
    Thin wrapper around a shared ``httpx.AsyncClient``.

    The underlying client is created lazily so the wrapper can be built at
    import time, outside a running event loop.
    """

    def __init__(
        self,
        config: Settings | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """
        Initialize the client.

        Args:
            config: Settings instance. Uses global defaults if None.
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.config = config or Settings()
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(self.config.http_timeout),
                headers={"User-Agent": self.config.user_agent},
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def request(
        self, url: str, method: str = "GET", headers: dict[str, str] | None = None
    ) -> HttpResponse:
        """
        Issue a request and resolve with its outcome.

        Args:
            url: Absolute URL
            method: HTTP method
            headers: Extra request headers

        Returns:
            HttpResponse; transport errors yield success=False, status_code=0
        """
        try:
            response = await self.client.request(method, url, headers=headers)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.debug(f"{method} {url} failed: {e}")
            return HttpResponse(
                success=False,
                status_code=0,
                error_message=str(e) or type(e).__name__,
            )

        return HttpResponse(
            success=response.is_success,
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.text,
            error_message=None if response.is_success else response.reason_phrase,
        )

    async def aclose(self) -> None:
        """Close the underlying connection pool."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
