"""OpenAI (ChatGPT) provider client."""

import logging

from app.collectors.llm_base import BaseLlmCollector, LlmResponse

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "gpt-4o-mini"
API_URL = "https://api.openai.com/v1/chat/completions"

# Reasoning models reject temperature/max_tokens and need max_completion_tokens
_REASONING_MODEL_PREFIXES = ("gpt-5", "o1", "o3", "o4")


def _is_reasoning_model(model: str) -> bool:
    return any(model.startswith(p) for p in _REASONING_MODEL_PREFIXES)


class OpenAiCollector(BaseLlmCollector):
    """Query the OpenAI Chat Completions API."""

    provider = "openai"
    api_url = API_URL
    default_model = DEFAULT_MODEL

    async def query_llm(self, prompt: str) -> LlmResponse:
        payload = self._chat_payload(prompt)
        if _is_reasoning_model(self.model):
            payload.pop("temperature", None)
            payload["max_completion_tokens"] = payload.pop("max_tokens")

        data = await self._post_chat(payload)
        return self._parse_chat(data)
