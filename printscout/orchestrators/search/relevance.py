"""Relevance scorer: canonical item + query text -> non-negative score.

Weights are fixed so that ranking is reproducible across sources:

  phrase in name          +1000 (+500 more if the name starts with it)
  phrase in tag text       +800
  all words in name        +600 (+300 more if they appear in query order)
  all words in tag text    +500
  word i in name           +(100 - 10*i)
  word i in tag text       +(80 - 8*i)
  word in description      +20
  popularity               +min(download_count / 100, 50)
  quality                  +average_quality * 10
"""

from printscout.contracts.catalog_v1 import CanonicalItem

PHRASE_IN_NAME = 1000.0
PHRASE_AT_NAME_START = 500.0
PHRASE_IN_TAGS = 800.0
ALL_WORDS_IN_NAME = 600.0
WORDS_IN_ORDER = 300.0
ALL_WORDS_IN_TAGS = 500.0
POPULARITY_CAP = 50.0
QUALITY_WEIGHT = 10.0


def query_words(query: str) -> list[str]:
    return [w for w in query.lower().strip().split() if w]


def _words_in_order(name: str, words: list[str]) -> bool:
    name_tokens = name.split()
    cursor = 0
    for word in words:
        for idx in range(cursor, len(name_tokens)):
            if word in name_tokens[idx]:
                cursor = idx + 1
                break
        else:
            return False
    return True


def score(item: CanonicalItem, query: str) -> float:
    phrase = query.lower().strip()
    if not phrase:
        return 0.0
    words = query_words(phrase)
    name = item.name.lower()
    description = item.description.lower()
    tags = item.tag_text

    total = 0.0
    if phrase in name:
        total += PHRASE_IN_NAME
        if name.startswith(phrase):
            total += PHRASE_AT_NAME_START
    if phrase in tags:
        total += PHRASE_IN_TAGS

    if all(w in name for w in words):
        total += ALL_WORDS_IN_NAME
        if _words_in_order(name, words):
            total += WORDS_IN_ORDER
    if all(w in tags for w in words):
        total += ALL_WORDS_IN_TAGS

    for i, word in enumerate(words):
        if word in name:
            total += 100 - 10 * i
        if word in tags:
            total += 80 - 8 * i
        if word in description:
            total += 20

    total += min(item.download_count / 100, POPULARITY_CAP)
    if item.average_quality is not None:
        total += item.average_quality * QUALITY_WEIGHT

    # Positional weights go negative past the tenth word
    return max(total, 0.0)


def matches_any_word(item: CanonicalItem, query: str) -> bool:
    """True when any query word is a substring of the item's name, description or tags."""
    words = query_words(query)
    if not words:
        return False
    name = item.name.lower()
    description = item.description.lower()
    tags = item.tag_text
    return any(w in name or w in description or w in tags for w in words)
