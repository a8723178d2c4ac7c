"""LLM access layer.

Providers wrap the vendor SDKs; StructuredLLMClient turns them into the
schema-validated request capability used by the pipeline.
"""

from pathlib import Path
from typing import Optional

from docsyphon.config import Settings, settings as default_settings
from docsyphon.exceptions import ConfigurationError
from docsyphon.llm.cache import LLMResponseCache
from docsyphon.llm.providers import create_provider
from docsyphon.llm.structured import RetryConfig, StructuredLLM, StructuredLLMClient


def build_llm_client(
    model: str, config: Optional[Settings] = None
) -> StructuredLLMClient:
    """
    Build a structured client for the configured provider.

    Args:
        model: Model identifier for this call site
        config: Settings to read provider, key, retry and cache options from

    Raises:
        ConfigurationError: If no API key is configured for the provider
    """
    config = config or default_settings
    if not config.llm_api_key:
        raise ConfigurationError(
            f"No API key configured for LLM provider {config.llm_provider!r}"
        )

    provider = create_provider(config.llm_provider, config.llm_api_key, model)
    cache = None
    if config.llm_cache_enabled:
        cache = LLMResponseCache(Path(config.llm_cache_dir), config.llm_cache_ttl_days)

    return StructuredLLMClient(
        provider,
        retry=RetryConfig(
            max_attempts=config.llm_max_attempts,
            initial_delay=config.llm_retry_base_delay,
        ),
        temperature=config.llm_temperature,
        cache=cache,
    )


__all__ = [
    "LLMResponseCache",
    "RetryConfig",
    "StructuredLLM",
    "StructuredLLMClient",
    "build_llm_client",
]
