from __future__ import annotations

import asyncio

import httpx
import pytest

from printscout.contracts.catalog_v1 import ItemSource, QueryRequest
from printscout.core.errors import SourceUnavailableError
from printscout.orchestrators.search.backends.external import (
    ExternalProviderBackend,
    pages_needed,
    parse_hits,
)
from printscout.orchestrators.search.backends.local import (
    LocalCatalogBackend,
    build_search_params,
)

LOCAL_URL = "http://catalog.test"
EXTERNAL_URL = "https://provider.test"


def _row(item_id, name="PLA Dragon", downloads=10):
    return {
        "id": item_id,
        "name": name,
        "download_count": downloads,
        "created_at": "2024-05-01T00:00:00Z",
        "is_free": True,
    }


def _hit(native_id, name="Cool Dragon", **fields):
    return {"id": native_id, "name": name, "added": "2024-05-02T00:00:00+00:00", **fields}


def _local(handler) -> LocalCatalogBackend:
    return LocalCatalogBackend(base_url=LOCAL_URL, transport=httpx.MockTransport(handler))


def _external(handler, **kwargs) -> ExternalProviderBackend:
    kwargs.setdefault("api_token", "")
    kwargs.setdefault("backfill_interval_seconds", 0)
    kwargs.setdefault("page_size", 20)
    kwargs.setdefault("max_pages", 3)
    return ExternalProviderBackend(
        base_url=EXTERNAL_URL, transport=httpx.MockTransport(handler), **kwargs
    )


# ---------------------------------------------------------------------------
# Local catalog
# ---------------------------------------------------------------------------


def test_local_params_request_lookahead_from_first_page():
    request = QueryRequest(
        query="dragon",
        page=2,
        page_size=20,
        tag_ids=["t2", "t1"],
        is_free=False,
        min_quality=3.5,
    )
    params = build_search_params(request)
    assert params["q"] == "dragon"
    assert params["page"] == "1"
    assert params["limit"] == "80"
    assert params["sort_by"] == "relevance"
    assert params["tag_ids"] == "t1,t2"
    assert params["is_free"] == "false"
    assert params["min_quality"] == "3.5"
    assert "category_id" not in params


def test_local_params_default_view_asks_for_popular():
    params = build_search_params(QueryRequest())
    assert params["sort_by"] == "popularity"
    assert "q" not in params


@pytest.mark.asyncio
async def test_local_fetch_normalizes_models_payload():
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"models": [_row("a"), _row("b"), "junk"], "total": 42})

    batch = await _local(handler).fetch(QueryRequest(query="dragon"))

    assert batch.ok is True
    assert batch.source == ItemSource.LOCAL
    assert [i.id for i in batch.items] == ["a", "b"]
    assert batch.total == 42
    assert seen[0].url.path == "/api/search"
    assert seen[0].url.params["q"] == "dragon"


@pytest.mark.asyncio
async def test_local_fetch_accepts_items_key():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"items": [_row("a")]})

    batch = await _local(handler).fetch(QueryRequest(query="dragon"))
    assert [i.id for i in batch.items] == ["a"]
    assert batch.total == 1


@pytest.mark.asyncio
async def test_local_http_error_becomes_failed_batch():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": "Failed to search models"})

    batch = await _local(handler).fetch(QueryRequest(query="dragon"))
    assert batch.ok is False
    assert batch.items == []
    assert "HTTP 500" in batch.error


@pytest.mark.asyncio
async def test_local_invalid_json_becomes_failed_batch():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, content=b"<html>oops</html>")

    batch = await _local(handler).fetch(QueryRequest(query="dragon"))
    assert batch.ok is False


@pytest.mark.asyncio
async def test_local_connect_error_becomes_failed_batch():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    batch = await _local(handler).fetch(QueryRequest(query="dragon"))
    assert batch.ok is False
    assert "ConnectError" in batch.error


@pytest.mark.asyncio
async def test_local_reference_endpoints():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/api/categories":
            return httpx.Response(200, json={"categories": [{"id": "c1", "name": "Toys"}]})
        return httpx.Response(200, json={"tags": [{"id": "t1", "name": "Dragon"}, "bad"]})

    backend = _local(handler)
    assert await backend.fetch_categories() == [{"id": "c1", "name": "Toys"}]
    assert await backend.fetch_tags() == [{"id": "t1", "name": "Dragon"}]


@pytest.mark.asyncio
async def test_local_reference_endpoint_bad_shape_raises():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, json={"error": "nope"})

    with pytest.raises(SourceUnavailableError):
        await _local(handler).fetch_tags()


# ---------------------------------------------------------------------------
# External provider
# ---------------------------------------------------------------------------


@pytest.mark.parametrize(
    ("data", "expected_count", "expected_total"),
    [
        ([_hit(1), _hit(2)], 2, 2),
        ({"hits": [_hit(1)], "total": 120}, 1, 120),
        ({"results": [_hit(1), _hit(2)]}, 2, 2),
        ({"things": [_hit(1)], "total": 0}, 1, 1),
    ],
)
def test_parse_hits_shapes(data, expected_count, expected_total):
    hits, total = parse_hits(data)
    assert len(hits) == expected_count
    assert total == expected_total


def test_parse_hits_rejects_unknown_shape():
    with pytest.raises(SourceUnavailableError):
        parse_hits({"error": "Unauthorized"})


@pytest.mark.parametrize(
    ("candidate_limit", "page_size", "max_pages", "expected"),
    [(20, 20, 3, 1), (30, 20, 3, 2), (60, 20, 3, 3), (400, 20, 3, 3), (400, 20, 9, 3)],
)
def test_pages_needed(candidate_limit, page_size, max_pages, expected):
    assert pages_needed(candidate_limit, page_size, max_pages) == expected


def test_external_skipped_without_query_or_when_disabled():
    backend = _external(lambda request: httpx.Response(200, json=[]))
    assert backend.should_query(QueryRequest(query="dragon")) is True
    assert backend.should_query(QueryRequest()) is False
    assert backend.should_query(QueryRequest(query="dragon", include_external=False)) is False


@pytest.mark.asyncio
async def test_external_fetches_pages_in_parallel_and_dedupes():
    pages_seen: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        assert request.url.path == "/search/cool dragon"
        page = request.url.params["page"]
        pages_seen.append(page)
        assert request.url.params["per_page"] == "20"
        assert request.url.params["sort"] == "relevant"
        by_page = {
            "1": [_hit(1, download_count=5), _hit(2, download_count=6)],
            "2": [_hit(2, download_count=6), _hit(3, download_count=7)],
            "3": [],
        }
        return httpx.Response(200, json={"hits": by_page[page], "total": 300})

    batch = await _external(handler).fetch(QueryRequest(query="cool dragon"))

    assert sorted(pages_seen) == ["1", "2", "3"]
    assert batch.ok is True
    assert [i.id for i in batch.items] == ["ext_1", "ext_2", "ext_3"]
    assert batch.total == 300
    assert all(i.is_free and i.source == ItemSource.EXTERNAL for i in batch.items)


@pytest.mark.asyncio
async def test_external_backfills_missing_download_counts():
    detail_calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/things/"):
            detail_calls.append(request.url.path)
            return httpx.Response(200, json={"id": 9, "download_count": 50})
        return httpx.Response(200, json=[_hit(9), _hit(10, download_count=3)])

    backend = _external(handler, max_pages=1)
    batch = await backend.fetch(QueryRequest(query="dragon", page_size=10))

    assert detail_calls == ["/things/9"]
    counts = {i.id: i.download_count for i in batch.items}
    assert counts == {"ext_9": 50, "ext_10": 3}


@pytest.mark.asyncio
async def test_external_backfill_is_capped():
    detail_calls: list[str] = []

    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/things/"):
            detail_calls.append(request.url.path)
            return httpx.Response(200, json={"downloads": 8})
        return httpx.Response(200, json=[_hit(1), _hit(2), _hit(3)])

    backend = _external(handler, backfill_limit=2)
    batch = await backend.fetch(QueryRequest(query="dragon", page_size=20, page=1))

    assert len(detail_calls) == 2
    counts = [i.download_count for i in batch.items]
    assert counts == [8, 8, 0]


@pytest.mark.asyncio
async def test_external_backfill_timeout_counts_as_zero():
    async def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/things/"):
            await asyncio.sleep(5)
            return httpx.Response(200, json={"download_count": 999})
        return httpx.Response(200, json=[_hit(1)])

    backend = _external(handler, max_pages=1, backfill_timeout_seconds=0.05)
    batch = await backend.fetch(QueryRequest(query="dragon"))

    assert batch.ok is True
    assert batch.items[0].download_count == 0


@pytest.mark.asyncio
async def test_external_failed_detail_counts_as_zero():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.startswith("/things/"):
            return httpx.Response(429)
        return httpx.Response(200, json=[_hit(1)])

    batch = await _external(handler, max_pages=1).fetch(QueryRequest(query="dragon"))
    assert batch.ok is True
    assert batch.items[0].download_count == 0


@pytest.mark.asyncio
async def test_external_single_failed_page_keeps_other_pages():
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.params["page"] == "2":
            return httpx.Response(503)
        return httpx.Response(200, json=[_hit(int(request.url.params["page"]), download_count=1)])

    batch = await _external(handler).fetch(QueryRequest(query="dragon"))
    assert batch.ok is True
    assert sorted(i.id for i in batch.items) == ["ext_1", "ext_3"]


@pytest.mark.asyncio
async def test_external_all_pages_failed_is_failed_batch():
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(502)

    batch = await _external(handler).fetch(QueryRequest(query="dragon"))
    assert batch.ok is False
    assert batch.items == []
    assert "HTTP 502" in batch.error


@pytest.mark.asyncio
async def test_external_errors_never_leak_access_token():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError(f"cannot reach {request.url}", request=request)

    backend = _external(handler, api_token="s3cret-token")
    batch = await backend.fetch(QueryRequest(query="dragon"))

    assert batch.ok is False
    assert "s3cret-token" not in batch.error
    assert "***" in batch.error


@pytest.mark.asyncio
async def test_external_sends_token_and_resolved_tag():
    captured: list[httpx.Request] = []

    class FakeReference:
        async def tag_slugs(self, tag_ids):
            return ["dragon"]

        async def category_slug(self, category_id):
            return "toys"

    def handler(request: httpx.Request) -> httpx.Response:
        captured.append(request)
        return httpx.Response(200, json=[])

    backend = _external(handler, api_token="tok", max_pages=1, reference=FakeReference())
    await backend.fetch(QueryRequest(query="dragon", tag_ids=["t1"], category_id="c1"))

    params = captured[0].url.params
    assert params["access_token"] == "tok"
    assert params["tag"] == "dragon"
    assert params["category"] == "toys"


class _StaticReference:
    def __init__(self, tags=None, categories=None, error=None):
        self._tags = tags or {}
        self._categories = categories or {}
        self._error = error

    async def tag_slugs(self, tag_ids):
        if self._error:
            raise self._error
        return [self._tags[t] for t in tag_ids if t in self._tags]

    async def category_slug(self, category_id):
        if self._error:
            raise self._error
        return self._categories.get(category_id)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    ("reference", "request_fields", "reason"),
    [
        (None, {"tag_ids": ["t1"]}, "need reference data"),
        (_StaticReference(tags={"t1": "dragon"}), {"tag_ids": ["t1", "t9"]}, "unknown tag"),
        (_StaticReference(), {"category_id": "c9"}, "unknown category"),
        (
            _StaticReference(error=SourceUnavailableError("local", "tags unavailable")),
            {"tag_ids": ["t1"]},
            "tags unavailable",
        ),
        (
            _StaticReference(error=httpx.ConnectError("refused")),
            {"category_id": "c1"},
            "could not resolve",
        ),
    ],
)
async def test_external_unresolved_facets_fail_without_calling_provider(
    reference, request_fields, reason
):
    calls: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(200, json=[_hit(1)])

    backend = _external(handler, max_pages=1, reference=reference)
    batch = await backend.fetch(QueryRequest(query="dragon", **request_fields))

    assert calls == []
    assert batch.ok is False
    assert batch.items == []
    assert reason in batch.error


@pytest.mark.asyncio
async def test_external_without_facets_needs_no_reference():
    def handler(request: httpx.Request) -> httpx.Response:
        assert "tag" not in request.url.params
        return httpx.Response(200, json=[_hit(1, download_count=2)])

    batch = await _external(handler, max_pages=1).fetch(QueryRequest(query="dragon"))
    assert batch.ok is True
    assert [i.id for i in batch.items] == ["ext_1"]
