"""One-shot interface: run a single query, print its pages, exit."""

from __future__ import annotations

import asyncio

from pydantic import ValidationError

from printscout.contracts.catalog_v1 import QueryRequest, SearchOutcome, SortBy
from printscout.core.bootstrap import build_orchestrator, build_query_enhancer
from printscout.core.config import config
from printscout.core.errors import SearchCancelledError
from printscout.interfaces.formatting import format_enhancement, format_snapshot


async def run_oneshot(
    query: str,
    *,
    is_free: bool | None = None,
    sort_by: str | None = None,
    page: int = 1,
    use_external: bool = True,
    material_compatible: bool = True,
    ai: bool = False,
) -> int:
    try:
        request = QueryRequest(
            query=query,
            is_free=is_free,
            sort_by=SortBy(sort_by) if sort_by else None,
            page=page,
            page_size=config.default_page_size,
            material_compatible=material_compatible,
            include_external=use_external,
        )
    except (ValidationError, ValueError) as e:
        print(f"Error: invalid search: {e}")
        return 2

    orchestrator = build_orchestrator(use_external=use_external)
    try:
        if ai and request.query:
            enhancer = build_query_enhancer(orchestrator.reference)
            request, enhancement = await enhancer.enhance_request(request)
            print(format_enhancement(enhancement))
        handle = orchestrator.issue(request)
        async for snapshot in handle:
            print(format_snapshot(snapshot))
            print()
        final = await handle.result()
    except SearchCancelledError:
        print("Error: search was cancelled")
        return 1
    finally:
        await orchestrator.aclose()
    return 1 if final.outcome == SearchOutcome.FAILED else 0


def main(
    query: str,
    *,
    is_free: bool | None = None,
    sort_by: str | None = None,
    page: int = 1,
    use_external: bool = True,
    material_compatible: bool = True,
    ai: bool = False,
) -> int:
    return asyncio.run(
        run_oneshot(
            query,
            is_free=is_free,
            sort_by=sort_by,
            page=page,
            use_external=use_external,
            material_compatible=material_compatible,
            ai=ai,
        )
    )
