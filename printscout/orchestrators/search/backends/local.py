"""Local catalog source: the storefront's own search endpoint. Returns CanonicalItem."""

from typing import Any

import httpx

from printscout.contracts.catalog_v1 import CanonicalItem, ItemSource, QueryRequest
from printscout.core.config import config
from printscout.core.errors import SourceUnavailableError
from printscout.orchestrators.search.fusion import effective_sort
from printscout.orchestrators.search.interface import SearchSource
from printscout.orchestrators.search.normalizer import normalize_batch, normalize_local


def _number(value: float) -> str:
    return f"{value:g}"


def build_search_params(request: QueryRequest) -> dict[str, str]:
    """Query parameters for GET /api/search.

    Always asks for page 1 with room for the requested page plus lookahead;
    paging happens after the merge.
    """
    params: dict[str, str] = {
        "page": "1",
        "limit": str(request.candidate_limit),
        "sort_by": effective_sort(request).value,
    }
    if request.query:
        params["q"] = request.query
    if request.category_id:
        params["category_id"] = request.category_id
    if request.tag_ids:
        params["tag_ids"] = ",".join(sorted(request.tag_ids))
    if request.is_free is not None:
        params["is_free"] = "true" if request.is_free else "false"
    if request.min_quality is not None:
        params["min_quality"] = _number(request.min_quality)
    if request.min_printability is not None:
        params["min_printability"] = _number(request.min_printability)
    if request.min_design is not None:
        params["min_design"] = _number(request.min_design)
    if request.license_type:
        params["license_type"] = request.license_type
    return params


def _rows_from(data: Any) -> tuple[list[Any], int | None]:
    if isinstance(data, list):
        return data, len(data)
    if isinstance(data, dict):
        for key in ("models", "items"):
            rows = data.get(key)
            if isinstance(rows, list):
                total = data.get("total")
                if isinstance(total, (int, float)) and not isinstance(total, bool):
                    return rows, int(total)
                return rows, len(rows)
    return [], None


class LocalCatalogBackend(SearchSource):
    def __init__(
        self,
        base_url: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        super().__init__(base_url or config.local_base_url, timeout=timeout, transport=transport)

    def get_source(self) -> ItemSource:
        return ItemSource.LOCAL

    async def search(self, request: QueryRequest) -> tuple[list[CanonicalItem], int]:
        async with self._client() as client:
            response = await client.get("/api/search", params=build_search_params(request))
            response.raise_for_status()
            data = response.json()

        rows, total = _rows_from(data)
        if total is None:
            raise SourceUnavailableError("local", "unexpected search response shape")
        items = normalize_batch(rows, normalize_local)
        return items, total

    async def _get_list(self, path: str, key: str) -> list[dict[str, Any]]:
        async with self._client() as client:
            response = await client.get(path)
            response.raise_for_status()
            data = response.json()
        rows = data.get(key) if isinstance(data, dict) else data
        if not isinstance(rows, list):
            raise SourceUnavailableError("local", f"unexpected {key} response shape")
        return [row for row in rows if isinstance(row, dict)]

    async def fetch_categories(self) -> list[dict[str, Any]]:
        return await self._get_list("/api/categories", "categories")

    async def fetch_tags(self) -> list[dict[str, Any]]:
        return await self._get_list("/api/tags", "tags")
