"""PLA / FDM compatibility heuristic over an item's free text.

Advisory only: it reads names, descriptions and tags, so false positives and
negatives are expected. The word lists are data; tune them through
CompatibilityRules instead of editing the control flow.
"""

from dataclasses import dataclass

from printscout.contracts.catalog_v1 import CanonicalItem
from printscout.orchestrators.search.relevance import matches_any_word

MATERIAL_MARKERS: tuple[str, ...] = ("pla", "polylactic acid")
PRINTER_HINTS: tuple[str, ...] = ("bambu", "p1s", "p2s", "x1", "fdm", "fused deposition")
EXCLUSIVE_MARKERS: tuple[str, ...] = ("resin only", "sla only", "dlp only", "sls only")
CONFLICTING_MATERIALS: tuple[str, ...] = ("abs", "petg", "tpu", "resin", "sla", "dlp", "sls")
# Exclusive only when the text never mentions PLA
PLA_QUALIFIED_EXCLUSIVE_MARKERS: tuple[str, ...] = ("abs only", "petg only")
PLA = "pla"


@dataclass(frozen=True)
class CompatibilityRules:
    material_markers: tuple[str, ...] = MATERIAL_MARKERS
    printer_hints: tuple[str, ...] = PRINTER_HINTS
    exclusive_markers: tuple[str, ...] = EXCLUSIVE_MARKERS
    conflicting_materials: tuple[str, ...] = CONFLICTING_MATERIALS
    pla_qualified_exclusive_markers: tuple[str, ...] = PLA_QUALIFIED_EXCLUSIVE_MARKERS


DEFAULT_RULES = CompatibilityRules()


def corpus(item: CanonicalItem) -> str:
    return f"{item.name.lower()} {item.description.lower()} {item.tag_text}"


def has_marker(text: str, tag_text: str, rules: CompatibilityRules = DEFAULT_RULES) -> bool:
    return any(m in text for m in rules.material_markers) or PLA in tag_text


def has_printer_hint(text: str, rules: CompatibilityRules = DEFAULT_RULES) -> bool:
    if any(h in text for h in rules.printer_hints):
        return True
    return not any(m in text for m in rules.exclusive_markers)


def has_conflict(text: str, rules: CompatibilityRules = DEFAULT_RULES) -> bool:
    if PLA in text:
        return False
    return any(m in text for m in rules.conflicting_materials)


def is_explicitly_incompatible(text: str, rules: CompatibilityRules = DEFAULT_RULES) -> bool:
    if any(m in text for m in rules.exclusive_markers):
        return True
    if PLA in text:
        return False
    return any(m in text for m in rules.pla_qualified_exclusive_markers)


def is_compatible(
    item: CanonicalItem,
    enabled: bool,
    query: str = "",
    rules: CompatibilityRules = DEFAULT_RULES,
) -> bool:
    """Whether an item likely prints in PLA on an FDM printer.

    With a non-empty query, items that already match a query word are only
    excluded on an explicit exclusivity marker such as "resin only".
    """
    if not enabled:
        return True
    text = corpus(item)
    if query.strip() and matches_any_word(item, query):
        return not is_explicitly_incompatible(text, rules)
    return has_marker(text, item.tag_text, rules) and (
        has_printer_hint(text, rules) or not has_conflict(text, rules)
    )
