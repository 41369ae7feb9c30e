"""Google Gemini provider client, via Gemini's OpenAI-compatible endpoint."""

import logging

from app.collectors.llm_base import BaseLlmCollector, LlmResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gemini-2.0-flash"
API_URL = "https://generativelanguage.googleapis.com/v1beta/openai/chat/completions"


class GeminiCollector(BaseLlmCollector):
    provider = "gemini"
    api_url = API_URL
    default_model = DEFAULT_MODEL

    async def query_llm(self, prompt: str) -> LlmResponse:
        data = await self._post_chat(self._chat_payload(prompt))
        return self._parse_chat(data)
