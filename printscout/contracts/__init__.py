"""Catalog search contract v1: canonical items, query requests and published pages."""

from printscout.contracts.catalog_v1 import (
    CanonicalItem,
    ItemSource,
    PublishPhase,
    QueryEnhancement,
    QueryRequest,
    ResultPage,
    SearchOutcome,
    SearchSnapshot,
    SortBy,
    SourceBatch,
    SuggestedFilters,
    TagRef,
)
