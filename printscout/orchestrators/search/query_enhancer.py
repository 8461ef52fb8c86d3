"""AI query enhancement: free text -> search keywords plus suggested category and tags.

Best effort. Without an API key, or when the LLM call or its JSON fails, the
request's own words are used and no filters are suggested.
"""

import json
import logging
import re

import httpx
from pydantic import ValidationError

from printscout.contracts.catalog_v1 import (
    MAX_ENHANCED_KEYWORDS,
    QueryEnhancement,
    QueryRequest,
)
from printscout.core.errors import SourceUnavailableError
from printscout.llm.openrouter_client import OpenRouterClient
from printscout.orchestrators.search.reference import ReferenceDataCache

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are an assistant that helps people find 3D-printable models. "
    "Always answer with valid JSON."
)

USER_PROMPT = """Analyse the search request below and suggest search terms and filters.

Search request: "{query}"

Answer with a JSON object containing:
1. keywords: array of relevant search terms (at most 5)
2. suggestedFilters: object with likely categories and tags

Example answer:
{{"keywords": ["vase", "decorative", "spiral"],
 "suggestedFilters": {{"categories": ["home"], "tags": ["vase", "home"]}}}}"""

_JSON_OBJECT = re.compile(r"\{.*\}", re.DOTALL)


def parse_enhancement(content: str) -> QueryEnhancement | None:
    """Enhancement from a completion, or None when it holds no usable JSON object.

    Models sometimes wrap the object in prose or code fences; the outermost
    braces are tried when the whole text is not JSON.
    """
    text = content.strip()
    candidates = [text]
    match = _JSON_OBJECT.search(text)
    if match and match.group(0) != text:
        candidates.append(match.group(0))
    for candidate in candidates:
        try:
            data = json.loads(candidate)
        except ValueError:
            continue
        if not isinstance(data, dict):
            continue
        try:
            enhancement = QueryEnhancement.model_validate({**data, "used_llm": True})
        except ValidationError as e:
            logger.debug("Enhancement JSON did not validate: %s", e)
            return None
        return enhancement.model_copy(
            update={"keywords": enhancement.keywords[:MAX_ENHANCED_KEYWORDS]}
        )
    return None


class QueryEnhancer:
    def __init__(
        self,
        client: OpenRouterClient | None = None,
        reference: ReferenceDataCache | None = None,
    ):
        self._client = client
        self._reference = reference

    @property
    def enabled(self) -> bool:
        return self._client is not None and self._client.enabled

    async def enhance(self, query: str) -> QueryEnhancement:
        query = query.strip()
        if not query:
            return QueryEnhancement()
        if not self.enabled:
            logger.debug("AI enhancement is not configured; searching the query words")
            return QueryEnhancement.from_words(query)

        try:
            response = await self._client.complete_json(
                SYSTEM_PROMPT, USER_PROMPT.format(query=query)
            )
        except (httpx.HTTPError, ValueError, RuntimeError) as e:
            logger.warning("AI enhancement failed (%s); searching the query words", type(e).__name__)
            return QueryEnhancement.from_words(query)

        enhancement = parse_enhancement(response.text)
        if enhancement is None:
            logger.warning("AI enhancement returned no usable JSON; searching the query words")
            return QueryEnhancement.from_words(query)
        if not enhancement.keywords:
            enhancement = enhancement.model_copy(update={"keywords": query.split()})
        return enhancement

    async def enhance_request(
        self, request: QueryRequest
    ) -> tuple[QueryRequest, QueryEnhancement]:
        """Rewrite a request's query from the enhancement and add the suggested facets.

        Suggested tags and categories are resolved against the reference data;
        names the catalog does not know are dropped. Facets the request already
        sets are kept as they are.
        """
        enhancement = await self.enhance(request.query)
        update: dict = {"query": enhancement.query}
        suggested = enhancement.suggested_filters

        if self._reference is not None and (suggested.tags or suggested.categories):
            try:
                if suggested.tags and not request.tag_ids:
                    tag_ids = await self._reference.resolve_tag_ids(suggested.tags)
                    if tag_ids:
                        update["tag_ids"] = tag_ids
                if suggested.categories and not request.category_id:
                    for name in suggested.categories:
                        category_id = await self._reference.resolve_category_id(name)
                        if category_id:
                            update["category_id"] = category_id
                            break
            except (httpx.HTTPError, SourceUnavailableError, ValueError) as e:
                logger.warning("Could not resolve suggested filters: %s", e)

        enhanced = QueryRequest.model_validate({**request.model_dump(), **update})
        return enhanced, enhancement
