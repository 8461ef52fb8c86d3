"""Source wiring at startup: backends, reference cache, orchestrator and query enhancer."""

from printscout.core.config import config
from printscout.core.logger import logger
from printscout.llm.openrouter_client import OpenRouterClient
from printscout.orchestrators.search.backends import (
    ExternalProviderBackend,
    LocalCatalogBackend,
)
from printscout.orchestrators.search.orchestrator import (
    FederatedSearchOrchestrator,
    SnapshotListener,
)
from printscout.orchestrators.search.query_enhancer import QueryEnhancer
from printscout.orchestrators.search.reference import ReferenceDataCache


def build_orchestrator(
    on_snapshot: SnapshotListener | None = None,
    use_external: bool = True,
) -> FederatedSearchOrchestrator:
    for problem in config.validate():
        logger.warning(f"Config: {problem}")

    local = LocalCatalogBackend()
    reference = ReferenceDataCache(local)
    external = ExternalProviderBackend(reference=reference) if use_external else None
    logger.info(
        f"Sources: local={config.local_base_url} "
        f"external={config.external_base_url if external else 'off'}"
    )
    return FederatedSearchOrchestrator(
        local=local,
        external=external,
        reference=reference,
        on_snapshot=on_snapshot,
    )


def build_query_enhancer(reference: ReferenceDataCache | None = None) -> QueryEnhancer:
    client = OpenRouterClient()
    if not client.enabled:
        logger.warning("OPENROUTER_API_KEY is not set; AI search falls back to the query words")
    return QueryEnhancer(client=client, reference=reference)
