from printscout.orchestrators.search.backends.external import ExternalProviderBackend
from printscout.orchestrators.search.backends.local import LocalCatalogBackend

__all__ = [
    "ExternalProviderBackend",
    "LocalCatalogBackend",
]
