"""Orchestrators: multi-source pipelines (e.g. federated search)."""

from printscout.orchestrators.search import (
    FederatedSearchOrchestrator,
    SearchGeneration,
    SearchSource,
)

__all__ = [
    "FederatedSearchOrchestrator",
    "SearchGeneration",
    "SearchSource",
]
