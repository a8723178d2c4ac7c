"""Shared provider plumbing: response type, pricing and SDK error mapping."""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, ClassVar, Optional

from docsyphon.exceptions import LLMProviderError

logger = logging.getLogger(__name__)


def is_transient_status(status_code: int) -> bool:
    """Rate limits and server-side failures are worth retrying."""
    return status_code == 429 or status_code >= 500


@dataclass(frozen=True)
class ModelPricing:
    """USD per million tokens."""

    input: float
    output: float

    def cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        return (prompt_tokens * self.input + completion_tokens * self.output) / 1_000_000


@dataclass
class LLMResponse:
    """One completion, normalized across providers.

    ``content`` holds the raw text (JSON for structured requests) and
    ``model`` the model the provider reports, which may be a dated variant of
    the requested one.
    """

    content: str
    prompt_tokens: int
    completion_tokens: int
    total_tokens: int
    finish_reason: str
    model: str
    duration_ms: float = 0.0
    raw_response: Any = None


class LLMProvider(ABC):
    """A chat-completion backend.

    Subclasses declare their SDK error classes and pricing table and
    implement ``_connect`` and ``_send``. ``complete`` times the call and
    turns SDK errors into ``LLMProviderError``, transient for connection
    failures, 429 and 5xx.
    """

    name: ClassVar[str]
    default_model: ClassVar[str]
    pricing: ClassVar[dict[str, ModelPricing]]
    fallback_pricing: ClassVar[ModelPricing]

    # SDK exception classes, most specific first
    connection_error: ClassVar[type[Exception]]
    status_error: ClassVar[type[Exception]]
    base_error: ClassVar[type[Exception]]

    def __init__(self, api_key: str, model: Optional[str] = None):
        if not api_key:
            raise ValueError(f"{self.name} API key is required")
        self._model = model or self.default_model
        self.client = self._connect(api_key)
        logger.info(f"Initialized {self.name} provider with model: {self._model}")

    @property
    def provider_name(self) -> str:
        return self.name

    @property
    def model_name(self) -> str:
        return self._model

    @abstractmethod
    def _connect(self, api_key: str) -> Any:
        """Build the SDK client."""

    @abstractmethod
    def _send(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int,
        temperature: float,
        structured: bool,
    ) -> LLMResponse:
        """Issue one request; SDK errors propagate untouched."""

    def complete(
        self,
        system_prompt: str,
        user_prompt: str,
        max_tokens: int = 4000,
        temperature: float = 0.2,
        json_schema: Optional[dict[str, Any]] = None,
    ) -> LLMResponse:
        """
        Generate a completion.

        Args:
            system_prompt: System message setting the context
            user_prompt: User message with the actual request
            max_tokens: Maximum tokens in the response
            temperature: Sampling temperature
            json_schema: When given, the provider is asked for a JSON object.
                The schema itself travels in the prompt.

        Raises:
            LLMProviderError: If the provider call fails
        """
        start_time = time.time()
        try:
            response = self._send(
                system_prompt,
                user_prompt,
                max_tokens,
                temperature,
                structured=json_schema is not None,
            )
        except self.base_error as e:
            raise self._provider_error(e) from e
        response.duration_ms = (time.time() - start_time) * 1000
        return response

    def _provider_error(self, error: Exception) -> LLMProviderError:
        label = self.name.capitalize()
        if isinstance(error, self.connection_error):
            return LLMProviderError(f"{label} connection error: {error}", transient=True)
        if isinstance(error, self.status_error):
            status_code = getattr(error, "status_code", 0)
            return LLMProviderError(
                f"{label} API error {status_code}: {getattr(error, 'message', error)}",
                transient=is_transient_status(status_code),
            )
        return LLMProviderError(f"{label} request failed: {error}")

    def calculate_cost(self, prompt_tokens: int, completion_tokens: int) -> float:
        """Cost in USD; dated model ids fall back to their family's price."""
        pricing = self.pricing.get(self._model)
        if pricing is None:
            family = max(
                (key for key in self.pricing if self._model.startswith(key)),
                key=len,
                default=None,
            )
            pricing = self.pricing[family] if family else self.fallback_pricing
        return pricing.cost(prompt_tokens, completion_tokens)
