"""OpenAI chat completions provider."""

import openai
from openai import OpenAI

from docsyphon.llm.providers.base import (
    LLMProvider,
    LLMResponse,
    ModelPricing,
    is_transient_status,
)

__all__ = ["OpenAIProvider", "is_transient_status"]


class OpenAIProvider(LLMProvider):
    """Structured requests use JSON mode (``response_format=json_object``)."""

    name = "openai"
    default_model = "gpt-4o-mini"
    pricing = {
        "gpt-4o-mini": ModelPricing(0.15, 0.60),
        "gpt-4o": ModelPricing(2.50, 10.00),
        "gpt-4.1-mini": ModelPricing(0.40, 1.60),
        "gpt-4.1": ModelPricing(2.00, 8.00),
    }
    fallback_pricing = ModelPricing(0.15, 0.60)

    connection_error = openai.APIConnectionError
    status_error = openai.APIStatusError
    base_error = openai.OpenAIError

    def _connect(self, api_key: str) -> OpenAI:
        return OpenAI(api_key=api_key)

    def _send(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        structured: bool,
    ) -> LLMResponse:
        extra = {"response_format": {"type": "json_object"}} if structured else {}
        response = self.client.chat.completions.create(
            model=self._model,
            messages=[
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            max_tokens=max_tokens,
            temperature=temperature,
            **extra,
        )

        choice = response.choices[0]
        usage = response.usage
        return LLMResponse(
            content=choice.message.content or "",
            prompt_tokens=usage.prompt_tokens if usage else 0,
            completion_tokens=usage.completion_tokens if usage else 0,
            total_tokens=usage.total_tokens if usage else 0,
            finish_reason=choice.finish_reason or "unknown",
            model=response.model,
            raw_response=response,
        )
