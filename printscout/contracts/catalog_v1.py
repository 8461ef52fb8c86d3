"""Catalog Search Contract v1.

Defines the canonical types shared by every stage of the federated search:
  - Canonical item shape (CanonicalItem, TagRef, ItemSource)
  - Query parameters (QueryRequest, SortBy)
  - Adapter output (SourceBatch)
  - Published output (ResultPage, SearchSnapshot)

Adapters translate provider payloads into these types; the merge engine and
the orchestrator only ever see the canonical shapes.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ItemSource(StrEnum):
    LOCAL = "local"
    EXTERNAL = "external"


class SortBy(StrEnum):
    RELEVANCE = "relevance"
    POPULARITY = "popularity"
    NEWEST = "newest"
    OLDEST = "oldest"


class PublishPhase(StrEnum):
    """Which of the (at most two) emissions of a generation a snapshot is."""

    PARTIAL = "partial"  # Local results only; external still in flight
    FINAL = "final"  # Every source resolved


class SearchOutcome(StrEnum):
    PENDING = "pending"  # Partial snapshot, more data on the way
    OK = "ok"
    EMPTY = "empty"  # Sources answered, nothing matched
    FAILED = "failed"  # Every queried source failed


EXTERNAL_ID_PREFIX = "ext_"

# ---------------------------------------------------------------------------
# Canonical item
# ---------------------------------------------------------------------------


class TagRef(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str
    id: str | None = None
    slug: str | None = None


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class CanonicalItem(BaseModel):
    """Unified, source-agnostic search result."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(min_length=1)
    source: ItemSource
    name: str = ""
    description: str = ""
    tags: tuple[TagRef, ...] = ()
    download_count: int = Field(default=0, ge=0)
    average_quality: float | None = Field(default=None, ge=1, le=5)
    average_printability: float | None = Field(default=None, ge=1, le=5)
    average_design: float | None = Field(default=None, ge=1, le=5)
    is_free: bool = True
    created_at: datetime
    source_external_url: str | None = None
    thumbnail_url: str | None = None
    category_id: str | None = None
    license_type: str | None = None

    @field_validator("name", "description", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("download_count", mode="before")
    @classmethod
    def _default_download_count(cls, value: Any) -> Any:
        return 0 if value is None else value

    @field_validator("created_at")
    @classmethod
    def _ensure_utc(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @model_validator(mode="after")
    def _check_source_invariants(self) -> CanonicalItem:
        if self.source == ItemSource.EXTERNAL:
            if not self.id.startswith(EXTERNAL_ID_PREFIX):
                raise ValueError(f"external item id must start with {EXTERNAL_ID_PREFIX!r}")
            if not self.is_free:
                raise ValueError("external items are always free")
        elif self.source_external_url is not None:
            raise ValueError("source_external_url is only valid on external items")
        return self

    @property
    def is_external(self) -> bool:
        return self.source == ItemSource.EXTERNAL

    @property
    def tag_text(self) -> str:
        """Lower-cased, space-joined tag names used for matching."""
        return " ".join(t.name.lower() for t in self.tags)


# ---------------------------------------------------------------------------
# Query request
# ---------------------------------------------------------------------------


class QueryRequest(BaseModel):
    """Parameters of one federated query. Immutable once issued."""

    model_config = ConfigDict(frozen=True)

    query: str = ""
    category_id: str | None = None
    tag_ids: frozenset[str] = frozenset()
    is_free: bool | None = None
    sort_by: SortBy | None = Field(
        default=None,
        description="Unset means popularity in the default view, relevance otherwise",
    )
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1, le=100)
    material_compatible: bool = True
    min_quality: float | None = Field(default=None, ge=1, le=5)
    min_printability: float | None = Field(default=None, ge=1, le=5)
    min_design: float | None = Field(default=None, ge=1, le=5)
    license_type: str | None = None
    include_external: bool = True

    @field_validator("query", mode="before")
    @classmethod
    def _strip_query(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value

    @field_validator("tag_ids", mode="before")
    @classmethod
    def _clean_tag_ids(cls, value: Any) -> Any:
        if value is None:
            return frozenset()
        if isinstance(value, str):
            value = value.split(",")
        return frozenset(str(v).strip() for v in value if str(v).strip())

    @field_validator("category_id", "license_type", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Any:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def has_active_filters(self) -> bool:
        """Facet filters only; material compatibility is on by default and not counted."""
        return bool(
            self.category_id
            or self.tag_ids
            or self.is_free is not None
            or self.min_quality is not None
            or self.min_printability is not None
            or self.min_design is not None
            or self.license_type
        )

    @property
    def is_default_view(self) -> bool:
        """Empty query, no facet filters and no explicit sort: the trending view."""
        return not self.query and not self.has_active_filters and self.sort_by is None

    @property
    def candidate_limit(self) -> int:
        """Candidates requested per source: the requested page plus two pages of lookahead."""
        return (self.page + 2) * self.page_size

    def log_dict(self) -> dict[str, Any]:
        data = self.model_dump(mode="json", exclude_defaults=True)
        data["page"] = self.page
        return data


# ---------------------------------------------------------------------------
# Adapter output and published pages
# ---------------------------------------------------------------------------


class SourceBatch(BaseModel):
    """What one source adapter returns for one request."""

    source: ItemSource
    items: list[CanonicalItem] = Field(default_factory=list)
    total: int = Field(default=0, ge=0, description="Source's own estimate, not authoritative")
    ok: bool = True
    error: str | None = None
    latency_ms: float | None = None

    @classmethod
    def failed(cls, source: ItemSource, error: str, latency_ms: float | None = None) -> SourceBatch:
        return cls(source=source, ok=False, error=error, latency_ms=latency_ms)


class ResultPage(BaseModel):
    items: list[CanonicalItem] = Field(default_factory=list)
    estimated_total: int = Field(default=0, ge=0)
    page: int = Field(default=1, ge=1)
    page_size: int = Field(default=20, ge=1)


class SearchSnapshot(BaseModel):
    """One publication of a generation's current page."""

    generation: int
    phase: PublishPhase
    outcome: SearchOutcome
    page: ResultPage
    errors: list[str] = Field(default_factory=list, description="Per-source failures")
    notes: list[str] = Field(default_factory=list)
    meta: dict[str, Any] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# AI query enhancement
# ---------------------------------------------------------------------------

MAX_ENHANCED_KEYWORDS = 5


class SuggestedFilters(BaseModel):
    categories: list[str] = Field(default_factory=list)
    tags: list[str] = Field(default_factory=list)

    @field_validator("categories", "tags", mode="before")
    @classmethod
    def _clean_names(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = [v]
        if not isinstance(v, (list, tuple)):
            raise ValueError("expected a list of names")
        return [str(name).strip() for name in v if str(name).strip()]


class QueryEnhancement(BaseModel):
    """Search terms and facet suggestions derived from a free-text request."""

    model_config = ConfigDict(populate_by_name=True)

    keywords: list[str] = Field(default_factory=list)
    suggested_filters: SuggestedFilters = Field(
        default_factory=SuggestedFilters, alias="suggestedFilters"
    )
    used_llm: bool = False

    @field_validator("keywords", mode="before")
    @classmethod
    def _clean_keywords(cls, v: Any) -> list[str]:
        if v is None:
            return []
        if isinstance(v, str):
            v = v.split()
        if not isinstance(v, (list, tuple)):
            raise ValueError("keywords must be a list")
        return [str(k).strip() for k in v if str(k).strip()]

    @classmethod
    def from_words(cls, query: str) -> QueryEnhancement:
        """Fallback: the request's own words, no suggested filters."""
        return cls(keywords=query.split())

    @property
    def query(self) -> str:
        return " ".join(self.keywords)
