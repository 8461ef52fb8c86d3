"""Federated search: concurrent sources, client-side merge, incremental publication."""

from printscout.contracts.catalog_v1 import CanonicalItem
from printscout.orchestrators.search.interface import SearchSource
from printscout.orchestrators.search.orchestrator import (
    FederatedSearchOrchestrator,
    SearchGeneration,
)
from printscout.orchestrators.search.reference import ReferenceDataCache

__all__ = [
    "CanonicalItem",
    "FederatedSearchOrchestrator",
    "ReferenceDataCache",
    "SearchGeneration",
    "SearchSource",
]
