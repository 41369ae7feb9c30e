"""Perplexity provider client (OpenAI-compatible API with native citations)."""

import logging
from typing import Any

from app.collectors.llm_base import BaseLlmCollector, LlmResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "sonar"
API_URL = "https://api.perplexity.ai/chat/completions"


def _native_citations(data: dict[str, Any]) -> list[str]:
    """URLs from ``citations`` (list of str) or ``search_results`` (list of {url})."""
    urls: list[str] = []
    for item in data.get("citations") or []:
        if isinstance(item, str):
            urls.append(item)
    if not urls:
        for item in data.get("search_results") or []:
            if isinstance(item, dict) and isinstance(item.get("url"), str):
                urls.append(item["url"])
    return urls


class PerplexityCollector(BaseLlmCollector):
    """Query Perplexity.

    Perplexity returns the sources it used next to the answer; they are
    passed on as ``cited_urls`` and merged into citation extraction.
    """

    provider = "perplexity"
    api_url = API_URL
    default_model = DEFAULT_MODEL
    default_timeout = 90.0

    async def query_llm(self, prompt: str) -> LlmResponse:
        data = await self._post_chat(self._chat_payload(prompt))
        urls = _native_citations(data)
        if urls:
            logger.debug("Perplexity returned %d native citation(s)", len(urls))
        return self._parse_chat(data, cited_urls=urls)
