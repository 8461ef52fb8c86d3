"""Federated search orchestrator: concurrent sources, incremental publication, cancellation.

Per issued QueryRequest (one generation):
  1. Cancel the previous generation's task and its in-flight HTTP calls
  2. Fetch local and external sources concurrently
  3. Local first while external is pending -> publish a partial page
  4. Every source resolved -> publish the final page
Only the newest generation ever publishes; anything older is discarded.
"""

import asyncio
import time
from collections.abc import Callable
from datetime import datetime
from typing import Any

import httpx

from printscout.contracts.catalog_v1 import (
    ItemSource,
    PublishPhase,
    QueryRequest,
    ResultPage,
    SearchOutcome,
    SearchSnapshot,
    SourceBatch,
)
from printscout.core.errors import SearchCancelledError, SourceUnavailableError
from printscout.core.logger import logger
from printscout.orchestrators.search.fusion import build_page, effective_sort
from printscout.orchestrators.search.interface import SearchSource
from printscout.orchestrators.search.reference import ReferenceDataCache

SnapshotListener = Callable[[SearchSnapshot], None]

MATERIAL_NOTE = "Material compatibility is estimated from model text, not verified."


class SearchGeneration:
    """Handle for one issued query: an async stream of at most two snapshots.

    Iterate it to receive the partial and final snapshots, or await result()
    for the final one. cancel() closes the stream; nothing queued is delivered
    afterwards.
    """

    def __init__(self, generation: int, request: QueryRequest):
        self.generation = generation
        self.request = request
        self._queue: asyncio.Queue[SearchSnapshot | None] = asyncio.Queue()
        self._final: asyncio.Future[SearchSnapshot] = asyncio.get_running_loop().create_future()
        self._task: asyncio.Task[None] | None = None
        self._closed = False
        self.published: list[SearchSnapshot] = []

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def cancelled(self) -> bool:
        return self._final.cancelled()

    @property
    def task(self) -> asyncio.Task[None] | None:
        return self._task

    def _deliver(self, snapshot: SearchSnapshot) -> None:
        self.published.append(snapshot)
        self._queue.put_nowait(snapshot)
        if snapshot.phase == PublishPhase.FINAL:
            self._final.set_result(snapshot)
            self._close_stream()

    def _fail(self, exc: BaseException) -> None:
        if not self._final.done():
            self._final.set_exception(exc)
            # Already logged by the orchestrator; result() still raises it
            self._final.exception()
        self._close_stream()

    def _close_stream(self) -> None:
        self._closed = True
        self._queue.put_nowait(None)

    def cancel(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(None)
        if not self._final.done():
            self._final.cancel()

    async def result(self) -> SearchSnapshot:
        """Final snapshot. Raises SearchCancelledError if this generation was superseded."""
        try:
            return await asyncio.shield(self._final)
        except asyncio.CancelledError:
            if self._final.cancelled():
                raise SearchCancelledError(self.generation) from None
            raise

    def __aiter__(self) -> "SearchGeneration":
        return self

    async def __anext__(self) -> SearchSnapshot:
        snapshot = await self._queue.get()
        if snapshot is None:
            # Keep the sentinel so repeated iteration also ends
            self._queue.put_nowait(None)
            raise StopAsyncIteration
        return snapshot


class FederatedSearchOrchestrator:
    """Runs each QueryRequest against the local and external sources and publishes pages."""

    def __init__(
        self,
        local: SearchSource,
        external: SearchSource | None = None,
        reference: ReferenceDataCache | None = None,
        on_snapshot: SnapshotListener | None = None,
        clock: Callable[[], datetime] | None = None,
        trending_window_days: int | None = None,
    ):
        self._local = local
        self._external = external
        self._reference = reference
        self._listeners: list[SnapshotListener] = [on_snapshot] if on_snapshot else []
        self._clock = clock
        self._trending_window_days = trending_window_days
        self._generation = 0
        self._current: SearchGeneration | None = None

    @property
    def reference(self) -> ReferenceDataCache | None:
        return self._reference

    @property
    def current_generation(self) -> int:
        return self._generation

    def add_listener(self, listener: SnapshotListener) -> None:
        self._listeners.append(listener)

    def issue(self, request: QueryRequest) -> SearchGeneration:
        """Start a new generation, superseding whatever is in flight."""
        if self._current is not None:
            self._current.cancel()
        self._generation += 1
        handle = SearchGeneration(self._generation, request)
        self._current = handle
        logger.search_issued(handle.generation, request.log_dict())
        handle._task = asyncio.create_task(
            self._run(handle), name=f"printscout-search-{handle.generation}"
        )
        return handle

    async def search(self, request: QueryRequest) -> SearchSnapshot:
        return await self.issue(request).result()

    async def aclose(self) -> None:
        handle = self._current
        self._current = None
        if handle is None:
            return
        task = handle.task
        handle.cancel()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

    def _is_current(self, handle: SearchGeneration) -> bool:
        return handle is self._current and not handle.closed

    def _publish(self, handle: SearchGeneration, snapshot: SearchSnapshot) -> bool:
        if not self._is_current(handle):
            logger.stale_discarded(handle.generation, self._generation, f"{snapshot.phase} page")
            return False
        handle._deliver(snapshot)
        logger.snapshot_published(
            snapshot.phase,
            snapshot.outcome,
            len(snapshot.page.items),
            snapshot.page.estimated_total,
        )
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Snapshot listener failed: {e}")
        return True

    async def _fetch(self, source: SearchSource, request: QueryRequest) -> SourceBatch:
        t0 = time.monotonic()
        try:
            batch = await source.fetch(request)
        except Exception as e:
            # fetch() already contains network errors; this is a bug in the source
            logger.warning(f"Source {source.get_source()} raised unexpectedly: {e}")
            batch = SourceBatch.failed(
                source.get_source(),
                f"{type(e).__name__}: {e}",
                latency_ms=round((time.monotonic() - t0) * 1000, 1),
            )
        logger.source_result(
            batch.source,
            ok=batch.ok,
            count=len(batch.items),
            total=batch.total,
            duration_seconds=(batch.latency_ms or 0) / 1000,
            error_reason=batch.error,
        )
        return batch

    def _page(
        self,
        request: QueryRequest,
        local: SourceBatch | None,
        external: SourceBatch | None,
        tag_slugs: frozenset[str] | None = None,
    ) -> ResultPage:
        return build_page(
            local.items if local and local.ok else [],
            local.total if local and local.ok else 0,
            external.items if external and external.ok else [],
            external.total if external and external.ok else 0,
            request,
            now=self._clock() if self._clock else None,
            trending_window_days=self._trending_window_days,
            tag_slugs=tag_slugs,
        )

    async def _resolve_tag_slugs(self, request: QueryRequest) -> frozenset[str] | None:
        """Slugs of the requested tags, or None when they cannot all be resolved."""
        if not request.tag_ids or self._reference is None:
            return None
        try:
            slugs = await self._reference.tag_slugs(request.tag_ids)
        except (httpx.HTTPError, SourceUnavailableError, ValueError) as e:
            logger.warning(f"Tag lookup failed; external items cannot match tag filters: {e}")
            return None
        if len(slugs) < len(request.tag_ids):
            return None
        return frozenset(slugs)

    def _snapshot(
        self,
        handle: SearchGeneration,
        phase: PublishPhase,
        local: SourceBatch | None,
        external: SourceBatch | None,
        external_skipped: str | None,
        started: float,
        tag_slugs: frozenset[str] | None = None,
    ) -> SearchSnapshot:
        request = handle.request
        page = self._page(request, local, external, tag_slugs)
        batches = [b for b in (local, external) if b is not None]
        errors = [f"{b.source}: {b.error or 'unavailable'}" for b in batches if not b.ok]

        if phase == PublishPhase.PARTIAL:
            outcome = SearchOutcome.PENDING
        elif batches and all(not b.ok for b in batches):
            outcome = SearchOutcome.FAILED
        elif not page.items:
            outcome = SearchOutcome.EMPTY
        else:
            outcome = SearchOutcome.OK

        notes = []
        if external_skipped:
            notes.append(external_skipped)
        if request.material_compatible:
            notes.append(MATERIAL_NOTE)

        meta: dict[str, Any] = {
            "query": request.query,
            "sort_by": effective_sort(request).value,
            "counts": {str(b.source): len(b.items) for b in batches},
            "timing_ms": {str(b.source): b.latency_ms for b in batches},
        }
        meta["timing_ms"]["total"] = round((time.monotonic() - started) * 1000, 1)

        return SearchSnapshot(
            generation=handle.generation,
            phase=phase,
            outcome=outcome,
            page=page,
            errors=errors,
            notes=notes,
            meta=meta,
        )

    def _external_skip_reason(self, request: QueryRequest) -> str | None:
        if self._external is None:
            return None
        if not request.include_external:
            return "External search is turned off."
        if not self._external.should_query(request):
            return "External search needs a query; showing the local catalog only."
        return None

    async def _run(self, handle: SearchGeneration) -> None:
        logger.set_generation(handle.generation)
        request = handle.request
        started = time.monotonic()
        skipped = self._external_skip_reason(request)

        tasks: dict[asyncio.Task[SourceBatch], ItemSource] = {
            asyncio.create_task(self._fetch(self._local, request)): ItemSource.LOCAL
        }
        if self._external is not None and skipped is None:
            tasks[asyncio.create_task(self._fetch(self._external, request))] = ItemSource.EXTERNAL
        batches: dict[ItemSource, SourceBatch] = {}
        slugs_task = (
            asyncio.create_task(self._resolve_tag_slugs(request)) if request.tag_ids else None
        )

        try:
            pending = set(tasks)
            partial_sent = False
            while pending:
                done, pending = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
                for task in done:
                    batches[tasks[task]] = task.result()
                if not self._is_current(handle):
                    logger.stale_discarded(handle.generation, self._generation, "source results")
                    return
                if pending and ItemSource.LOCAL in batches and not partial_sent:
                    partial_sent = self._publish(
                        handle,
                        self._snapshot(
                            handle,
                            PublishPhase.PARTIAL,
                            batches[ItemSource.LOCAL],
                            None,
                            skipped,
                            started,
                            slugs_task.result() if slugs_task and slugs_task.done() else None,
                        ),
                    )

            tag_slugs = await slugs_task if slugs_task else None
            if not self._is_current(handle):
                logger.stale_discarded(handle.generation, self._generation, "final page")
                return
            self._publish(
                handle,
                self._snapshot(
                    handle,
                    PublishPhase.FINAL,
                    batches.get(ItemSource.LOCAL),
                    batches.get(ItemSource.EXTERNAL),
                    skipped,
                    started,
                    tag_slugs,
                ),
            )
        except asyncio.CancelledError:
            logger.stale_discarded(handle.generation, self._generation, "in-flight fetches")
            raise
        except Exception as e:
            logger.exception(f"Search generation {handle.generation} failed: {e}")
            handle._fail(e)
        finally:
            for task in [*tasks, slugs_task]:
                if task is not None and not task.done():
                    task.cancel()
            logger.set_generation(None)
