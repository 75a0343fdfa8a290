"""
Invidious mirror discovery and selection.

The pool of mirrors is discovered once per process from the public instance
directory and reused until restart. A dead mirror is never removed: callers
tolerate it by retrying against another random pick.
"""

import asyncio
import json
import logging
import random
from typing import Any

from pydantic import BaseModel, ValidationError

from vidmeta.config import Settings
from vidmeta.http import HttpClient

logger = logging.getLogger(__name__)


class InstanceInfo(BaseModel):
    """Capabilities of one instance, as listed by the directory."""

    api: bool | None = None
    uri: str | None = None
    type: str | None = None


class InstanceEntry(BaseModel):
    """A ``[hostname, info]`` pair from ``instances.json``."""

    hostname: str
    info: InstanceInfo

    @classmethod
    def from_pair(cls, pair: Any) -> "InstanceEntry":
        if not isinstance(pair, (list, tuple)) or len(pair) != 2:
            raise ValueError(f"Expected [hostname, info] pair, got {pair!r}")
        return cls(hostname=pair[0], info=pair[1])

    @property
    def base_url(self) -> str:
        return (self.info.uri or f"https://{self.hostname}").rstrip("/")


class ServerDirectory:
    """
    Discovers and caches the pool of usable mirror servers.

    Discovery runs lazily when a pick finds the pool empty and is guarded
    by a lock, so concurrent picks share a single directory request. A
    failed discovery leaves the pool empty and the next pick tries again.
    """

    def __init__(self, http: HttpClient, config: Settings | None = None):
        self.http = http
        self.config = config or Settings()
        self._servers: set[str] = set()
        self._generation = 0
        self._lock = asyncio.Lock()

    @property
    def servers(self) -> set[str]:
        """Copy of the current pool."""
        return set(self._servers)

    def reset(self) -> None:
        """Forget the discovered pool."""
        self._servers = set()

    async def discover_servers(self) -> set[str]:
        """
        Fetch the instance directory and keep API-capable instances.

        Returns:
            Set of mirror base URLs; empty on any failure
        """
        response = await self.http.request(self.config.instances_url)
        if response.status_code != 200:
            logger.warning(
                f"Invidious instance discovery failed: {response.status_code} {response.error_message or ''}".rstrip()
            )
            return set()

        try:
            payload = json.loads(response.body)
        except json.JSONDecodeError as e:
            logger.warning(f"Invidious instance list is not valid JSON: {e}")
            return set()

        if not isinstance(payload, list):
            logger.warning("Invidious instance list has unexpected shape")
            return set()

        servers: set[str] = set()
        for pair in payload:
            try:
                entry = InstanceEntry.from_pair(pair)
            except (ValueError, ValidationError) as e:
                logger.debug(f"Skipping malformed instance entry: {e}")
                continue
            if entry.info.api is True:
                servers.add(entry.base_url)

        logger.info(f"Discovered {len(servers)} Invidious servers with API access")
        return servers

    async def _ensure_discovered(self) -> None:
        if self._servers:
            return
        generation = self._generation
        async with self._lock:
            # Callers that queued behind a discovery reuse its result
            if self._servers or self._generation != generation:
                return
            self._servers = await self.discover_servers()
            self._generation += 1

    async def pick_server(self) -> str | None:
        """
        Pick the mirror to use for one request.

        Returns:
            The configured override if set, else a random pool member, or
            None when no server is available
        """
        if self.config.invidious_url:
            return self.config.invidious_url.rstrip("/")

        await self._ensure_discovered()
        if not self._servers:
            return None
        return random.choice(sorted(self._servers))
