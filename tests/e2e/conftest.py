from collections.abc import AsyncIterator

import pytest_asyncio

from printscout.core.bootstrap import build_orchestrator
from printscout.orchestrators.search.orchestrator import FederatedSearchOrchestrator


@pytest_asyncio.fixture
async def orchestrator() -> AsyncIterator[FederatedSearchOrchestrator]:
    """Orchestrator wired to the configured live sources, for e2e suites only."""
    instance = build_orchestrator()
    try:
        yield instance
    finally:
        await instance.aclose()
