"""Standard interface for catalog sources used by the orchestrator.

Every source implements SearchSource.search and is called through
SearchSource.fetch, which never raises for network-class failures: it returns
a failed SourceBatch instead.
"""

import logging
import time
from abc import ABC, abstractmethod

import httpx

from printscout.contracts.catalog_v1 import CanonicalItem, ItemSource, QueryRequest, SourceBatch
from printscout.core.config import config
from printscout.core.errors import SourceUnavailableError

logger = logging.getLogger(__name__)


def redact(text: str, *secrets: str) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


class SearchSource(ABC):
    """Base class for all catalog sources."""

    def __init__(
        self,
        base_url: str,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout if timeout is not None else config.source_timeout_seconds
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
            headers={"User-Agent": config.user_agent, "Accept": "application/json"},
            follow_redirects=True,
        )

    def _secrets(self) -> tuple[str, ...]:
        """Values that must never appear in logs or error strings."""
        return ()

    @abstractmethod
    async def search(self, request: QueryRequest) -> tuple[list[CanonicalItem], int]:
        """Return (items, approximate total). May raise httpx.HTTPError or SourceUnavailableError."""

    @abstractmethod
    def get_source(self) -> ItemSource:
        """Which side of the merge this source feeds."""

    def should_query(self, request: QueryRequest) -> bool:
        return True

    async def fetch(self, request: QueryRequest) -> SourceBatch:
        """Run search and convert network-class failures into a failed batch."""
        source = self.get_source()
        t0 = time.monotonic()
        try:
            items, total = await self.search(request)
        except SourceUnavailableError as e:
            reason = e.reason
        except httpx.HTTPStatusError as e:
            reason = f"HTTP {e.response.status_code} from {e.request.url.path}"
        except httpx.HTTPError as e:
            reason = f"{type(e).__name__}: {e}"
        except ValueError as e:
            # Body was not valid JSON
            reason = f"invalid response: {e}"
        else:
            latency_ms = round((time.monotonic() - t0) * 1000, 1)
            return SourceBatch(
                source=source,
                items=items,
                total=max(total, len(items), 0),
                latency_ms=latency_ms,
            )

        latency_ms = round((time.monotonic() - t0) * 1000, 1)
        reason = redact(reason, *self._secrets())
        logger.warning("Source %s unavailable after %.1fms: %s", source, latency_ms, reason)
        return SourceBatch.failed(source, reason, latency_ms=latency_ms)
