"""External provider source (Thingiverse-style API). Returns CanonicalItem.

One query fans out to 1-3 page requests in parallel. Hits that arrive
without a download count get a bounded, staggered detail fetch; anything
not back in time counts as 0.
"""

import asyncio
import logging
import math
from typing import TYPE_CHECKING, Any
from urllib.parse import quote

import httpx

from printscout.contracts.catalog_v1 import CanonicalItem, ItemSource, QueryRequest, SortBy
from printscout.core.config import config
from printscout.core.errors import SourceUnavailableError
from printscout.orchestrators.search.interface import SearchSource
from printscout.orchestrators.search.normalizer import (
    external_download_count,
    normalize_batch,
    normalize_external,
)

if TYPE_CHECKING:
    from printscout.orchestrators.search.reference import ReferenceDataCache

logger = logging.getLogger(__name__)

PROVIDER_SORT: dict[SortBy, str] = {
    SortBy.RELEVANCE: "relevant",
    SortBy.POPULARITY: "popular",
    SortBy.NEWEST: "newest",
}
HIT_LIST_KEYS = ("hits", "results", "things")
MAX_PAGES = 3

_PAGE_ERRORS = (httpx.HTTPError, SourceUnavailableError, ValueError)


def parse_hits(data: Any) -> tuple[list[Any], int]:
    """Accepts a bare list or an object carrying hits, results or things plus total."""
    if isinstance(data, list):
        return data, len(data)
    if isinstance(data, dict):
        for key in HIT_LIST_KEYS:
            hits = data.get(key)
            if isinstance(hits, list):
                total = data.get("total")
                if isinstance(total, (int, float)) and not isinstance(total, bool) and total > 0:
                    return hits, int(total)
                return hits, len(hits)
    raise SourceUnavailableError("external", "unexpected search response shape")


def pages_needed(candidate_limit: int, page_size: int, max_pages: int) -> int:
    max_pages = min(max(max_pages, 1), MAX_PAGES)
    return min(max(math.ceil(candidate_limit / page_size), 1), max_pages)


class ExternalProviderBackend(SearchSource):
    def __init__(
        self,
        base_url: str | None = None,
        api_token: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        backfill_limit: int | None = None,
        backfill_interval_seconds: float | None = None,
        backfill_timeout_seconds: float | None = None,
        reference: "ReferenceDataCache | None" = None,
    ):
        super().__init__(
            base_url or config.external_base_url, timeout=timeout, transport=transport
        )
        self._api_token = config.external_api_token if api_token is None else api_token
        self._page_size = page_size or config.external_page_size
        self._max_pages = max_pages or config.external_max_pages
        self._backfill_limit = (
            config.detail_backfill_limit if backfill_limit is None else backfill_limit
        )
        self._backfill_interval = (
            config.detail_backfill_interval_ms / 1000
            if backfill_interval_seconds is None
            else backfill_interval_seconds
        )
        self._backfill_timeout = (
            config.detail_backfill_timeout_seconds
            if backfill_timeout_seconds is None
            else backfill_timeout_seconds
        )
        self._reference = reference

    def get_source(self) -> ItemSource:
        return ItemSource.EXTERNAL

    def _secrets(self) -> tuple[str, ...]:
        return (self._api_token,)

    def should_query(self, request: QueryRequest) -> bool:
        # The provider has no browse endpoint; an empty query is local-only
        return request.include_external and bool(request.query)

    def _auth_params(self) -> dict[str, str]:
        return {"access_token": self._api_token} if self._api_token else {}

    async def _facet_params(self, request: QueryRequest) -> dict[str, str]:
        """Provider filters for the active tag and category facets.

        Raises SourceUnavailableError when an active facet cannot be resolved
        to a provider slug.
        """
        if not (request.tag_ids or request.category_id):
            return {}
        if self._reference is None:
            raise SourceUnavailableError("external", "tag/category filters need reference data")
        params: dict[str, str] = {}
        try:
            if request.tag_ids:
                slugs = await self._reference.tag_slugs(request.tag_ids)
                if len(slugs) < len(request.tag_ids):
                    raise SourceUnavailableError("external", "unknown tag filter")
                # Provider takes a single tag; the merge checks the rest
                params["tag"] = slugs[0]
            if request.category_id:
                category = await self._reference.category_slug(request.category_id)
                if not category:
                    raise SourceUnavailableError("external", "unknown category filter")
                params["category"] = category
        except (httpx.HTTPError, ValueError) as e:
            raise SourceUnavailableError(
                "external", f"could not resolve tag/category filters: {type(e).__name__}"
            ) from e
        return params

    async def _fetch_page(
        self,
        client: httpx.AsyncClient,
        path: str,
        params: dict[str, str],
        page: int,
    ) -> tuple[list[Any], int]:
        response = await client.get(
            path, params={**params, "page": str(page), "per_page": str(self._page_size)}
        )
        response.raise_for_status()
        return parse_hits(response.json())

    async def _fetch_detail(
        self, client: httpx.AsyncClient, thing_id: str, delay: float
    ) -> int:
        if delay > 0:
            await asyncio.sleep(delay)
        response = await client.get(
            f"/things/{quote(thing_id, safe='')}", params=self._auth_params()
        )
        response.raise_for_status()
        data = response.json()
        if not isinstance(data, dict):
            return 0
        return external_download_count(data) or 0

    async def backfill_download_counts(
        self, client: httpx.AsyncClient, hits: list[dict[str, Any]]
    ) -> list[dict[str, Any]]:
        """Fill missing download counts from the detail endpoint.

        At most backfill_limit hits are looked up, the i-th starting
        i * interval after the first, all bounded by one overall timeout.
        """
        missing = [
            idx
            for idx, hit in enumerate(hits)
            if external_download_count(hit) is None and hit.get("id") is not None
        ]
        targets = missing[: self._backfill_limit]
        if not targets:
            return hits

        tasks: dict[asyncio.Task[int], int] = {}
        for order, idx in enumerate(targets):
            task = asyncio.create_task(
                self._fetch_detail(client, str(hits[idx]["id"]), order * self._backfill_interval)
            )
            tasks[task] = idx

        try:
            done, pending = await asyncio.wait(tasks, timeout=self._backfill_timeout)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        filled = list(hits)
        resolved = 0
        for task in done:
            if task.cancelled():
                continue
            idx = tasks[task]
            exc = task.exception()
            if exc is not None:
                logger.debug("External: detail fetch failed for %s: %s", hits[idx].get("id"), exc)
                continue
            filled[idx] = {**hits[idx], "download_count": task.result()}
            resolved += 1

        logger.debug(
            "External: backfilled %s/%s download counts (%s still pending at timeout)",
            resolved,
            len(targets),
            len(pending),
        )
        return filled

    async def search(self, request: QueryRequest) -> tuple[list[CanonicalItem], int]:
        path = f"/search/{quote(request.query, safe='')}"
        params = {**self._auth_params(), **(await self._facet_params(request))}
        sort = PROVIDER_SORT.get(request.sort_by or SortBy.RELEVANCE)
        if sort:
            params["sort"] = sort
        page_count = pages_needed(request.candidate_limit, self._page_size, self._max_pages)

        async with self._client() as client:
            pages = await asyncio.gather(
                *(self._fetch_page(client, path, params, p) for p in range(1, page_count + 1)),
                return_exceptions=True,
            )

            hits: list[dict[str, Any]] = []
            seen: set[str] = set()
            total = 0
            failures: list[BaseException] = []
            for page_no, page in enumerate(pages, start=1):
                if isinstance(page, BaseException):
                    if not isinstance(page, _PAGE_ERRORS):
                        raise page
                    logger.debug("External: page %s failed: %s", page_no, page)
                    failures.append(page)
                    continue
                page_hits, page_total = page
                total = max(total, page_total)
                for hit in page_hits:
                    if not isinstance(hit, dict):
                        logger.debug("External: skipped non-object hit on page %s", page_no)
                        continue
                    key = str(hit.get("id"))
                    # Overlapping pages repeat hits
                    if key in seen:
                        continue
                    seen.add(key)
                    hits.append(hit)

            if failures and len(failures) == len(pages):
                raise failures[0]

            hits = await self.backfill_download_counts(client, hits)

        items = normalize_batch(hits, normalize_external)
        return items, total
