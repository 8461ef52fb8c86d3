"""Result normalizer: local catalog rows and external provider hits -> CanonicalItem.

Both sources describe the same kind of object with different field names and
nesting. Everything downstream of this module only sees CanonicalItem.
"""

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

import httpx
from pydantic import ValidationError

from printscout.contracts.catalog_v1 import (
    EXTERNAL_ID_PREFIX,
    CanonicalItem,
    ItemSource,
    TagRef,
)
from printscout.core.errors import MalformedRecordError

logger = logging.getLogger(__name__)

# Preferred rendition labels, best first
THUMBNAIL_SIZE_PRIORITY: tuple[str, ...] = (
    "large",
    "feature",
    "medium",
    "display",
    "small",
    "preview",
)
# Path segments that name a smaller rendition of the same image
_SMALL_RENDITION_SEGMENTS = ("small", "medium", "thumb", "thumbnail", "display")
_RENDITION_QUERY_PARAMS = ("size", "width", "height")
_RELATIVE_URL_BASE = "https://www.thingiverse.com"

DOWNLOAD_COUNT_KEYS: tuple[str, ...] = (
    "download_count",
    "downloads",
    "download_count_total",
    "downloads_count",
)
DEFAULT_EXTERNAL_LICENSE = "Creative Commons"


def _require_mapping(record: Any, kind: str) -> dict[str, Any]:
    if not isinstance(record, dict):
        raise MalformedRecordError(f"{kind} record is {type(record).__name__}, expected object")
    return record


def _str_or_none(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _parse_int(value: Any) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(float(value))
    except (TypeError, ValueError):
        return None


def _parse_score(value: Any) -> float | None:
    """Review averages: absent, zero or unparseable all mean "no reviews yet"."""
    if value is None or isinstance(value, bool):
        return None
    try:
        score = float(value)
    except (TypeError, ValueError):
        return None
    return score if score > 0 else None


def _parse_timestamp(value: Any) -> datetime | None:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Tags
# ---------------------------------------------------------------------------


def _local_tag(raw: Any) -> TagRef | None:
    if not isinstance(raw, dict):
        return None
    # Join-table shape: {"tag": {"id", "name", "slug"}}
    if isinstance(raw.get("tag"), dict):
        raw = raw["tag"]
    name = _str_or_none(raw.get("name"))
    if not name:
        return None
    return TagRef(name=name, id=_str_or_none(raw.get("id")), slug=_str_or_none(raw.get("slug")))


def _external_tag(raw: Any) -> TagRef | None:
    if isinstance(raw, str):
        name = raw.strip()
        return TagRef(name=name, slug=name) if name else None
    if not isinstance(raw, dict):
        return None
    name = _str_or_none(raw.get("name"))
    if not name:
        return None
    slug = _str_or_none(raw.get("tag")) or name
    return TagRef(name=name, id=f"{EXTERNAL_ID_PREFIX}tag_{slug}", slug=slug)


def _collect_tags(raw_tags: Any, parse: Callable[[Any], TagRef | None]) -> tuple[TagRef, ...]:
    if not isinstance(raw_tags, list):
        return ()
    tags = []
    for raw in raw_tags:
        tag = parse(raw)
        if tag is not None:
            tags.append(tag)
    return tuple(tags)


# ---------------------------------------------------------------------------
# Thumbnails
# ---------------------------------------------------------------------------


def _numeric_size(variant: dict[str, Any]) -> int:
    size = variant.get("size")
    if isinstance(size, (int, float)) and not isinstance(size, bool):
        return int(size)
    if isinstance(size, str):
        digits = ""
        for ch in size.strip():
            if not ch.isdigit():
                break
            digits += ch
        if digits:
            return int(digits)
    return 0


def pick_thumbnail(hit: dict[str, Any]) -> str | None:
    """Best available image URL for an external hit, before upgrading."""
    default_image = hit.get("default_image")
    if isinstance(default_image, dict):
        sizes = default_image.get("sizes")
        if isinstance(sizes, list):
            variants = [v for v in sizes if isinstance(v, dict) and v.get("url")]
            for label in THUMBNAIL_SIZE_PRIORITY:
                for variant in variants:
                    if variant.get("type") == label or variant.get("size") == label:
                        return str(variant["url"])
            if variants:
                # max() keeps the first of equal sizes
                return str(max(variants, key=_numeric_size)["url"])
        if default_image.get("url"):
            return str(default_image["url"])
    for key in ("preview_image", "thumbnail"):
        if hit.get(key):
            return str(hit[key])
    return None


def upgrade_thumbnail_url(url: str) -> str:
    """Rewrite a rendition URL to point at the large rendition."""
    try:
        parsed = httpx.URL(url)
        if not parsed.is_absolute_url:
            parsed = httpx.URL(_RELATIVE_URL_BASE).join(url)
    except (httpx.InvalidURL, TypeError):
        logger.debug("Unparseable thumbnail URL kept as is: %s", url)
        return url

    segments = parsed.path.split("/")
    upgraded = [
        "large" if segment in _SMALL_RENDITION_SEGMENTS else segment for segment in segments
    ]
    parsed = parsed.copy_with(path="/".join(upgraded))
    for param in _RENDITION_QUERY_PARAMS:
        parsed = parsed.copy_remove_param(param)
    return str(parsed)


# ---------------------------------------------------------------------------
# Download counts
# ---------------------------------------------------------------------------


def external_download_count(hit: dict[str, Any]) -> int | None:
    """Download count from the first populated known key, or None when the hit has none.

    None marks the hit as a detail-backfill candidate.
    """
    for key in DOWNLOAD_COUNT_KEYS:
        count = _parse_int(hit.get(key))
        if count is not None:
            return max(count, 0)
    return None


# ---------------------------------------------------------------------------
# Normalizers
# ---------------------------------------------------------------------------


def normalize_local(row: Any) -> CanonicalItem:
    """Map a local catalog row onto the canonical item. Field names match nearly 1:1."""
    row = _require_mapping(row, "local")
    item_id = _str_or_none(row.get("id"))
    if not item_id:
        raise MalformedRecordError("local record has no id")
    created_at = _parse_timestamp(row.get("created_at"))
    if created_at is None:
        raise MalformedRecordError(f"local record {item_id} has no usable created_at")

    is_free = row.get("is_free")
    category = row.get("category")
    category_id = row.get("category_id")
    if category_id is None and isinstance(category, dict):
        category_id = category.get("id")

    return CanonicalItem(
        id=item_id,
        source=ItemSource.LOCAL,
        name=row.get("name") or "",
        description=row.get("description") or "",
        tags=_collect_tags(row.get("tags"), _local_tag),
        download_count=max(_parse_int(row.get("download_count")) or 0, 0),
        average_quality=_parse_score(row.get("average_quality")),
        average_printability=_parse_score(row.get("average_printability")),
        average_design=_parse_score(row.get("average_design")),
        is_free=True if is_free is None else bool(is_free),
        created_at=created_at,
        thumbnail_url=_str_or_none(row.get("thumbnail_url")),
        category_id=_str_or_none(category_id),
        license_type=_str_or_none(row.get("license_type")),
    )


def normalize_external(hit: Any, *, now: datetime | None = None) -> CanonicalItem:
    """Map an external provider hit onto the canonical item.

    Missing download counts become 0 here; backfill happens in the adapter
    before normalization.
    """
    hit = _require_mapping(hit, "external")
    native_id = _str_or_none(hit.get("id"))
    if not native_id:
        raise MalformedRecordError("external record has no id")

    created_at = _parse_timestamp(hit.get("added"))
    if created_at is None:
        created_at = now or datetime.now(timezone.utc)

    thumbnail = pick_thumbnail(hit)
    if thumbnail:
        thumbnail = upgrade_thumbnail_url(thumbnail)

    return CanonicalItem(
        id=f"{EXTERNAL_ID_PREFIX}{native_id}",
        source=ItemSource.EXTERNAL,
        name=hit.get("name") or "",
        description=hit.get("description") or "",
        tags=_collect_tags(hit.get("tags"), _external_tag),
        download_count=external_download_count(hit) or 0,
        is_free=True,
        created_at=created_at,
        source_external_url=_str_or_none(hit.get("public_url")),
        thumbnail_url=thumbnail,
        license_type=_str_or_none(hit.get("license")) or DEFAULT_EXTERNAL_LICENSE,
    )


def normalize_batch(
    records: Iterable[Any],
    normalizer: Callable[[Any], CanonicalItem],
) -> list[CanonicalItem]:
    """Normalize a batch, dropping records that cannot be normalized."""
    items: list[CanonicalItem] = []
    dropped = 0
    for record in records:
        try:
            items.append(normalizer(record))
        except (MalformedRecordError, ValidationError, TypeError, ValueError) as e:
            dropped += 1
            logger.debug("Dropped malformed record: %s", e)
    if dropped:
        logger.debug("Normalizer: kept %s, dropped %s", len(items), dropped)
    return items
