"""Anthropic messages provider."""

import anthropic
from anthropic import Anthropic

from docsyphon.llm.providers.base import LLMProvider, LLMResponse, ModelPricing

# Anthropic has no JSON mode; structured requests get this suffix instead
JSON_INSTRUCTION = (
    "\n\nIMPORTANT: You must respond with valid JSON only. "
    "No markdown code blocks, no explanations, no additional text. "
    "Return ONLY the raw JSON object."
)


class AnthropicProvider(LLMProvider):
    """Claude models through the messages API."""

    name = "anthropic"
    default_model = "claude-sonnet-4-5-20250514"
    pricing = {
        "claude-sonnet-4-5": ModelPricing(3.00, 15.00),
        "claude-opus-4-1": ModelPricing(15.00, 75.00),
        "claude-3-5-haiku": ModelPricing(0.80, 4.00),
    }
    fallback_pricing = ModelPricing(3.00, 15.00)

    connection_error = anthropic.APIConnectionError
    status_error = anthropic.APIStatusError
    base_error = anthropic.AnthropicError

    def _connect(self, api_key: str) -> Anthropic:
        return Anthropic(api_key=api_key)

    def _send(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        structured: bool,
    ) -> LLMResponse:
        response = self.client.messages.create(
            model=self._model,
            max_tokens=max_tokens,
            temperature=temperature,
            system=system_prompt + JSON_INSTRUCTION if structured else system_prompt,
            messages=[{"role": "user", "content": user_prompt}],
        )

        text = "".join(block.text for block in response.content if hasattr(block, "text"))
        usage = response.usage
        prompt_tokens = usage.input_tokens if usage else 0
        completion_tokens = usage.output_tokens if usage else 0
        return LLMResponse(
            content=text,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
            finish_reason=response.stop_reason or "unknown",
            model=response.model,
            raw_response=response,
        )
