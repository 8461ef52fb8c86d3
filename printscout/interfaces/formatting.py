"""Plain-text rendering of search snapshots for terminal interfaces."""

from printscout.contracts.catalog_v1 import (
    CanonicalItem,
    PublishPhase,
    QueryEnhancement,
    SearchOutcome,
    SearchSnapshot,
)

OUTCOME_MESSAGES = {
    SearchOutcome.EMPTY: "No models found. Try different terms or loosen the filters.",
    SearchOutcome.FAILED: "Search failed: no source could be reached.",
}


def format_item(position: int, item: CanonicalItem) -> str:
    quality = f"{item.average_quality:.1f}★" if item.average_quality is not None else "no reviews"
    price = "free" if item.is_free else "paid"
    origin = "external" if item.is_external else "local"
    line = (
        f"{position:>3}. {item.name or '(untitled)'}  "
        f"[{origin}, {price}, {item.download_count} downloads, {quality}]"
    )
    if item.source_external_url:
        line += f"\n     {item.source_external_url}"
    return line


def format_snapshot(snapshot: SearchSnapshot) -> str:
    page = snapshot.page
    label = "partial" if snapshot.phase == PublishPhase.PARTIAL else "results"
    header = (
        f"── {label}: page {page.page}, {len(page.items)} shown of ~{page.estimated_total} ──"
    )
    lines = [header]
    offset = (page.page - 1) * page.page_size
    for i, item in enumerate(page.items, start=1):
        lines.append(format_item(offset + i, item))
    if snapshot.phase == PublishPhase.PARTIAL:
        lines.append("   (still waiting for external results...)")
    message = OUTCOME_MESSAGES.get(snapshot.outcome)
    if message:
        lines.append(f"   {message}")
    for error in snapshot.errors:
        lines.append(f"   ! {error}")
    for note in snapshot.notes:
        lines.append(f"   · {note}")
    return "\n".join(lines)


def format_enhancement(enhancement: QueryEnhancement) -> str:
    source = "AI" if enhancement.used_llm else "query words"
    lines = [f"── search terms ({source}): {enhancement.query or '(none)'} ──"]
    suggested = enhancement.suggested_filters
    if suggested.categories:
        lines.append(f"   · suggested categories: {', '.join(suggested.categories)}")
    if suggested.tags:
        lines.append(f"   · suggested tags: {', '.join(suggested.tags)}")
    return "\n".join(lines)
