from __future__ import annotations

from types import SimpleNamespace
from unittest.mock import AsyncMock

import httpx
import pytest

from printscout.contracts.catalog_v1 import QueryEnhancement
from printscout.interfaces.oneshot import run_oneshot
from printscout.orchestrators.search.backends import LocalCatalogBackend
from printscout.orchestrators.search.orchestrator import FederatedSearchOrchestrator


def _orchestrator_factory(handler):
    built: list[FederatedSearchOrchestrator] = []

    def build(on_snapshot=None, use_external=True):
        local = LocalCatalogBackend(
            base_url="http://catalog.test", transport=httpx.MockTransport(handler)
        )
        orchestrator = FederatedSearchOrchestrator(local, on_snapshot=on_snapshot)
        built.append(orchestrator)
        return orchestrator

    return build, built


@pytest.mark.asyncio
async def test_run_oneshot_prints_final_page(monkeypatch, capsys):
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "models": [
                    {
                        "id": "l1",
                        "name": "Dragon Statue",
                        "download_count": 500,
                        "created_at": "2024-05-01T00:00:00Z",
                    }
                ],
                "total": 1,
            },
        )

    build, built = _orchestrator_factory(handler)
    monkeypatch.setattr("printscout.interfaces.oneshot.build_orchestrator", build)

    code = await run_oneshot("dragon", use_external=False)

    out = capsys.readouterr().out
    assert code == 0
    assert "Dragon Statue" in out
    assert "500 downloads" in out
    assert built[0].current_generation == 1


@pytest.mark.asyncio
async def test_run_oneshot_reports_empty_results(monkeypatch, capsys):
    build, _ = _orchestrator_factory(lambda request: httpx.Response(200, json={"models": []}))
    monkeypatch.setattr("printscout.interfaces.oneshot.build_orchestrator", build)

    code = await run_oneshot("zebra", use_external=False)

    assert code == 0
    assert "No models found" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_oneshot_fails_when_no_source_answers(monkeypatch, capsys):
    build, _ = _orchestrator_factory(lambda request: httpx.Response(503))
    monkeypatch.setattr("printscout.interfaces.oneshot.build_orchestrator", build)

    code = await run_oneshot("dragon", use_external=False)

    out = capsys.readouterr().out
    assert code == 1
    assert "Search failed" in out
    assert "HTTP 503" in out


@pytest.mark.asyncio
async def test_run_oneshot_rejects_unknown_sort(monkeypatch, capsys):
    def fail_build(**kwargs):
        raise AssertionError("should not build sources for an invalid search")

    monkeypatch.setattr("printscout.interfaces.oneshot.build_orchestrator", fail_build)

    code = await run_oneshot("dragon", sort_by="cheapest")

    assert code == 2
    assert "invalid search" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_oneshot_rejects_page_zero(capsys):
    code = await run_oneshot("dragon", page=0)
    assert code == 2


@pytest.mark.asyncio
async def test_run_oneshot_ai_searches_enhanced_query(monkeypatch, capsys):
    searched: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        searched.append(request.url.params.get("q"))
        return httpx.Response(200, json={"models": []})

    async def enhance_request(request):
        enhancement = QueryEnhancement(keywords=["cable", "clip"], used_llm=True)
        return request.model_copy(update={"query": enhancement.query}), enhancement

    enhancer = SimpleNamespace(enhance_request=AsyncMock(side_effect=enhance_request))
    build, built = _orchestrator_factory(handler)
    monkeypatch.setattr("printscout.interfaces.oneshot.build_orchestrator", build)
    monkeypatch.setattr(
        "printscout.interfaces.oneshot.build_query_enhancer", lambda reference: enhancer
    )

    code = await run_oneshot("something to tidy my desk cables", use_external=False, ai=True)

    assert code == 0
    assert searched == ["cable clip"]
    assert "search terms (AI): cable clip" in capsys.readouterr().out
    assert built[0].current_generation == 1


@pytest.mark.asyncio
async def test_run_oneshot_without_ai_never_builds_enhancer(monkeypatch):
    build, _ = _orchestrator_factory(lambda request: httpx.Response(200, json={"models": []}))
    monkeypatch.setattr("printscout.interfaces.oneshot.build_orchestrator", build)

    def fail_enhancer(reference):
        raise AssertionError("enhancer should not be built")

    monkeypatch.setattr("printscout.interfaces.oneshot.build_query_enhancer", fail_enhancer)

    assert await run_oneshot("dragon", use_external=False) == 0
