"""LLM providers.

    provider = create_provider("anthropic", api_key, "claude-3-5-haiku-20241022")
"""

from typing import Literal, Optional

from docsyphon.llm.providers.anthropic_provider import AnthropicProvider
from docsyphon.llm.providers.base import LLMProvider, LLMResponse, ModelPricing
from docsyphon.llm.providers.openai_provider import OpenAIProvider

ProviderType = Literal["openai", "anthropic"]

PROVIDERS: dict[str, type[LLMProvider]] = {
    OpenAIProvider.name: OpenAIProvider,
    AnthropicProvider.name: AnthropicProvider,
}


def create_provider(
    provider_type: ProviderType,
    api_key: str,
    model: Optional[str] = None,
) -> LLMProvider:
    """
    Build a provider by name.

    Args:
        provider_type: "openai" or "anthropic"
        api_key: API key for the provider
        model: Model id; the provider default when omitted

    Raises:
        ValueError: If provider_type is unknown or api_key is missing
    """
    if not api_key:
        raise ValueError(f"API key is required for {provider_type} provider")

    provider_class = PROVIDERS.get(provider_type)
    if provider_class is None:
        raise ValueError(
            f"Unknown provider type: {provider_type}. "
            f"Supported providers: {', '.join(sorted(PROVIDERS))}"
        )
    return provider_class(api_key=api_key, model=model)


__all__ = [
    "AnthropicProvider",
    "LLMProvider",
    "LLMResponse",
    "ModelPricing",
    "OpenAIProvider",
    "ProviderType",
    "create_provider",
]
