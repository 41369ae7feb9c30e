"""Provider name -> collector class."""

import importlib

from app.collectors.llm_base import BaseLlmCollector

# name -> (module, class, settings/tenant key field)
PROVIDER_MAP: dict[str, tuple[str, str, str]] = {
    "openai": ("app.collectors.llm_openai", "OpenAiCollector", "openai_api_key"),
    "perplexity": ("app.collectors.llm_perplexity", "PerplexityCollector", "perplexity_api_key"),
    "gemini": ("app.collectors.llm_gemini", "GeminiCollector", "gemini_api_key"),
}


def is_supported(provider: str) -> bool:
    return provider in PROVIDER_MAP


def key_field(provider: str) -> str:
    return PROVIDER_MAP[provider][2]


def get_collector_class(provider: str) -> type[BaseLlmCollector]:
    module_path, class_name, _ = PROVIDER_MAP[provider]
    module = importlib.import_module(module_path)
    return getattr(module, class_name)
