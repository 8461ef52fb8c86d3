"""Session-scoped read-through cache for category and tag reference data."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Any, Protocol

from printscout.core.config import config

logger = logging.getLogger(__name__)


class ReferenceLoader(Protocol):
    async def fetch_categories(self) -> list[dict[str, Any]]: ...

    async def fetch_tags(self) -> list[dict[str, Any]]: ...


def _key(value: Any) -> str:
    return str(value or "").strip().lower()


class ReferenceDataCache:
    """Fetches categories and tags once and serves them read-only afterwards.

    ttl_seconds <= 0 keeps the data for the lifetime of the cache object.
    invalidate() forces the next read to refetch.
    """

    def __init__(
        self,
        loader: ReferenceLoader,
        ttl_seconds: float | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._loader = loader
        self._ttl = config.reference_cache_ttl_seconds if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._entries: dict[str, tuple[float, list[dict[str, Any]]]] = {}
        self._lock = asyncio.Lock()

    def invalidate(self) -> None:
        self._entries.clear()

    def _fresh(self, name: str) -> list[dict[str, Any]] | None:
        entry = self._entries.get(name)
        if entry is None:
            return None
        loaded_at, rows = entry
        if self._ttl > 0 and self._clock() - loaded_at >= self._ttl:
            return None
        return rows

    async def _get(self, name: str, load: Callable[[], Awaitable[list[dict[str, Any]]]]):
        rows = self._fresh(name)
        if rows is not None:
            return rows
        async with self._lock:
            # Another caller may have loaded it while we waited
            rows = self._fresh(name)
            if rows is not None:
                return rows
            rows = await load()
            self._entries[name] = (self._clock(), rows)
            logger.debug("Reference cache: loaded %s %s", len(rows), name)
            return rows

    async def categories(self) -> list[dict[str, Any]]:
        return await self._get("categories", self._loader.fetch_categories)

    async def tags(self) -> list[dict[str, Any]]:
        return await self._get("tags", self._loader.fetch_tags)

    async def resolve_tag_ids(self, names: Iterable[str]) -> frozenset[str]:
        """Tag ids for names or slugs, case-insensitive. Unknown names are skipped."""
        wanted = {_key(n) for n in names if _key(n)}
        if not wanted:
            return frozenset()
        ids = set()
        for tag in await self.tags():
            if tag.get("id") is None:
                continue
            if _key(tag.get("name")) in wanted or _key(tag.get("slug")) in wanted:
                ids.add(str(tag["id"]))
        return frozenset(ids)

    async def resolve_category_id(self, name: str) -> str | None:
        wanted = _key(name)
        if not wanted:
            return None
        for category in await self.categories():
            if category.get("id") is None:
                continue
            if wanted in (_key(category.get("name")), _key(category.get("slug"))):
                return str(category["id"])
        return None

    async def tag_slugs(self, tag_ids: Iterable[str]) -> list[str]:
        """Slugs (or names) for tag ids, in tag list order."""
        wanted = {str(t) for t in tag_ids}
        slugs = []
        for tag in await self.tags():
            if str(tag.get("id")) in wanted:
                slug = tag.get("slug") or tag.get("name")
                if slug:
                    slugs.append(str(slug))
        return slugs

    async def category_slug(self, category_id: str) -> str | None:
        for category in await self.categories():
            if str(category.get("id")) == str(category_id):
                slug = category.get("slug") or category.get("name")
                return str(slug) if slug else None
        return None
