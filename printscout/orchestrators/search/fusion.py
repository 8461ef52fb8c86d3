"""Merge-sort-paginate engine: merges local and external candidates into one result page.

Pure and synchronous. The orchestrator calls build_page once with local data
only (partial) and once with everything (final).
"""

import logging
from collections.abc import Collection, Iterable
from datetime import datetime, timedelta, timezone

from printscout.contracts.catalog_v1 import (
    CanonicalItem,
    ItemSource,
    QueryRequest,
    ResultPage,
    SortBy,
)
from printscout.core.config import config
from printscout.orchestrators.search import relevance
from printscout.orchestrators.search.compatibility import is_compatible

logger = logging.getLogger(__name__)

# Weight of the quality average in the empty-query relevance fallback
FALLBACK_QUALITY_WEIGHT = 100


def deduplicate_items(items: Iterable[CanonicalItem]) -> list[CanonicalItem]:
    """Drop repeated ids, keeping the first occurrence. Local items come first, so local wins."""
    seen: set[str] = set()
    unique: list[CanonicalItem] = []
    for item in items:
        if item.id in seen:
            continue
        seen.add(item.id)
        unique.append(item)
    return unique


def _below(value: float | None, minimum: float | None) -> bool:
    # Items without reviews are never excluded by a minimum score
    return minimum is not None and value is not None and value < minimum


def _tag_keys(item: CanonicalItem) -> set[str]:
    keys = set()
    for tag in item.tags:
        keys.add(tag.name.strip().lower())
        if tag.slug:
            keys.add(tag.slug.strip().lower())
    return keys


def has_tags(
    item: CanonicalItem,
    tag_ids: Collection[str],
    tag_slugs: Collection[str] | None = None,
) -> bool:
    """Whether an item carries every requested tag.

    Local items match on tag id, or on slug/name when slugs are known.
    External items carry provider tags only, so they need the resolved slugs;
    without them they never match.
    """
    if not tag_ids:
        return True
    if item.source == ItemSource.LOCAL:
        ids = {tag.id for tag in item.tags if tag.id}
        if set(tag_ids) <= ids:
            return True
    if not tag_slugs:
        return False
    keys = _tag_keys(item)
    return all(slug.strip().lower() in keys for slug in tag_slugs)


def _passes_facets(
    item: CanonicalItem,
    request: QueryRequest,
    tag_slugs: Collection[str] | None = None,
) -> bool:
    if request.is_free is not None and item.is_free != request.is_free:
        return False
    if _below(item.average_quality, request.min_quality):
        return False
    if _below(item.average_printability, request.min_printability):
        return False
    if _below(item.average_design, request.min_design):
        return False
    if not has_tags(item, request.tag_ids, tag_slugs):
        return False
    if item.source == ItemSource.LOCAL:
        # External hits carry no category; the provider filters on it
        if request.category_id and item.category_id and item.category_id != request.category_id:
            return False
        if (
            request.license_type
            and item.license_type
            and item.license_type != request.license_type
        ):
            return False
    return True


def apply_filters(
    items: list[CanonicalItem],
    request: QueryRequest,
    tag_slugs: Collection[str] | None = None,
) -> list[CanonicalItem]:
    """Facet filters, then the material compatibility heuristic."""
    kept = [item for item in items if _passes_facets(item, request, tag_slugs)]
    if request.material_compatible:
        kept = [item for item in kept if is_compatible(item, True, request.query)]
    return kept


def effective_sort(request: QueryRequest) -> SortBy:
    """Popularity for the default view, otherwise the requested sort or relevance."""
    if request.sort_by is not None:
        return request.sort_by
    if not request.query and not request.has_active_filters:
        return SortBy.POPULARITY
    return SortBy.RELEVANCE


def _relevance_fallback_key(item: CanonicalItem) -> float:
    return item.download_count + (item.average_quality or 0) * FALLBACK_QUALITY_WEIGHT


def sort_items(items: list[CanonicalItem], sort_by: SortBy, query: str = "") -> list[CanonicalItem]:
    """Stable sort; for relevance with a query, zero-score items are dropped."""
    if sort_by == SortBy.POPULARITY:
        return sorted(items, key=lambda i: i.download_count, reverse=True)
    if sort_by == SortBy.NEWEST:
        return sorted(items, key=lambda i: i.created_at, reverse=True)
    if sort_by == SortBy.OLDEST:
        return sorted(items, key=lambda i: i.created_at)
    if not query.strip():
        return sorted(items, key=_relevance_fallback_key, reverse=True)

    scored = [(relevance.score(item, query), item) for item in items]
    scored = [(s, item) for s, item in scored if s > 0]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [item for _, item in scored]


def restrict_to_trending(
    items: list[CanonicalItem],
    page_size: int,
    now: datetime,
    window_days: int,
) -> list[CanonicalItem]:
    """Keep items from the trending window unless that leaves less than one page."""
    cutoff = now - timedelta(days=window_days)
    recent = [item for item in items if item.created_at >= cutoff]
    if len(recent) < page_size:
        return items
    return recent


def paginate(items: list[CanonicalItem], page: int, page_size: int) -> list[CanonicalItem]:
    start = (page - 1) * page_size
    return items[start : start + page_size]


def estimate_total(
    local_total: int,
    external_total: int,
    filtered_count: int,
    request: QueryRequest,
) -> int:
    """Approximate total. Inflated by one page when the candidate pool was exhausted."""
    estimate = max(local_total, external_total, filtered_count)
    if filtered_count >= request.candidate_limit:
        estimate = max(estimate, filtered_count + request.page_size)
    return estimate


def build_page(
    local_items: list[CanonicalItem],
    local_total: int,
    external_items: list[CanonicalItem],
    external_total: int,
    request: QueryRequest,
    *,
    now: datetime | None = None,
    trending_window_days: int | None = None,
    tag_slugs: Collection[str] | None = None,
) -> ResultPage:
    merged = deduplicate_items([*local_items, *external_items])
    filtered = apply_filters(merged, request, tag_slugs)
    sort_by = effective_sort(request)
    ordered = sort_items(filtered, sort_by, request.query)

    if request.is_default_view:
        ordered = restrict_to_trending(
            ordered,
            request.page_size,
            now or datetime.now(timezone.utc),
            trending_window_days or config.trending_window_days,
        )

    items = paginate(ordered, request.page, request.page_size)
    estimated = estimate_total(local_total, external_total, len(ordered), request)

    logger.debug(
        "Fusion: %s local + %s external -> %s merged -> %s kept | sort=%s page=%s",
        len(local_items),
        len(external_items),
        len(merged),
        len(ordered),
        sort_by,
        request.page,
    )

    return ResultPage(
        items=items,
        estimated_total=estimated,
        page=request.page,
        page_size=request.page_size,
    )
