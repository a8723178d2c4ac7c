"""
Structured LLM requests.

Wraps an LLMProvider so each call site gets back a validated pydantic model
instead of raw text. Transient provider errors and schema-invalid replies are
retried with exponential backoff; once attempts run out the failure surfaces
as a typed exception.
"""

import json
import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol, TypeVar

from pydantic import BaseModel, ValidationError

from docsyphon.exceptions import LLMProviderError, LLMSchemaValidationError
from docsyphon.llm.cache import LLMResponseCache
from docsyphon.llm.llm_logger import LLMLogger, llm_logger
from docsyphon.llm.providers.base import LLMProvider

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

_CODE_FENCE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


class StructuredLLM(Protocol):
    """Capability the pipeline uses for every LLM call."""

    def request_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[ModelT],
        max_tokens: int,
        purpose: str = "structured",
    ) -> ModelT: ...

    @property
    def model_name(self) -> str: ...


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 30.0
    exponential_base: float = 2.0
    jitter: bool = True


def calculate_delay(attempt: int, config: RetryConfig) -> float:
    """
    Calculate delay before the next attempt using exponential backoff.

    Args:
        attempt: Failed attempt number (0-indexed)
        config: Retry configuration

    Returns:
        Delay in seconds
    """
    delay = config.initial_delay * (config.exponential_base**attempt)
    delay = min(delay, config.max_delay)
    if config.jitter:
        delay += delay * 0.25 * random.random()
    return delay


def extract_json(content: str) -> str:
    """Strip whitespace and a surrounding markdown code fence, if any."""
    stripped = content.strip()
    match = _CODE_FENCE.match(stripped)
    if match:
        return match.group(1)
    return stripped


def schema_instruction(response_model: type[BaseModel]) -> str:
    """System prompt suffix describing the expected JSON shape."""
    schema = json.dumps(response_model.model_json_schema(), indent=2)
    return (
        "\n\nRespond with a single JSON object that conforms to this JSON schema. "
        "Respect every maxLength, minItems and maxItems constraint.\n"
        f"```json\n{schema}\n```"
    )


class StructuredLLMClient:
    """Schema-validated requests on top of an LLMProvider."""

    def __init__(
        self,
        provider: LLMProvider,
        retry: Optional[RetryConfig] = None,
        temperature: float = 0.2,
        cache: Optional[LLMResponseCache] = None,
        interaction_logger: Optional[LLMLogger] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Args:
            provider: Underlying LLM provider
            retry: Retry policy (defaults to 3 attempts)
            temperature: Sampling temperature for every request
            cache: Optional response cache for validated replies
            interaction_logger: LLM interaction logger (defaults to the global one)
            sleep: Sleep function, replaceable in tests
        """
        self.provider = provider
        self.retry = retry or RetryConfig()
        self.temperature = temperature
        self.cache = cache
        self.interaction_logger = interaction_logger or llm_logger
        self._sleep = sleep

    @property
    def model_name(self) -> str:
        return self.provider.model_name

    def request_structured(
        self,
        system_prompt: str,
        user_prompt: str,
        response_model: type[ModelT],
        max_tokens: int,
        purpose: str = "structured",
    ) -> ModelT:
        """
        Request a response and validate it against response_model.

        Args:
            system_prompt: System message
            user_prompt: User message
            response_model: Pydantic model the reply must satisfy
            max_tokens: Maximum tokens in the reply
            purpose: Call site label used in logs and cache keys

        Returns:
            Validated response_model instance

        Raises:
            LLMSchemaValidationError: If the last attempt returned invalid output
            LLMProviderError: If the provider failed with a non-transient error,
                or transient errors persisted through every attempt
        """
        full_system_prompt = system_prompt + schema_instruction(response_model)
        model = self.provider.model_name

        if self.cache is not None:
            cached = self.cache.get(purpose, model, full_system_prompt, user_prompt)
            if cached is not None:
                try:
                    result = response_model.model_validate_json(cached)
                    self.interaction_logger.log_cache_hit(purpose, model)
                    return result
                except ValidationError:
                    logger.warning(f"Ignoring cached {purpose} response that no longer validates")

        last_error: Optional[Exception] = None
        for attempt in range(self.retry.max_attempts):
            request_id = self.interaction_logger.log_request(
                purpose=purpose,
                model=model,
                system_prompt=full_system_prompt,
                user_prompt=user_prompt,
                max_tokens=max_tokens,
                attempt=attempt + 1,
            )
            try:
                response = self.provider.complete(
                    system_prompt=full_system_prompt,
                    user_prompt=user_prompt,
                    max_tokens=max_tokens,
                    temperature=self.temperature,
                    json_schema=response_model.model_json_schema(),
                )
            except LLMProviderError as e:
                self.interaction_logger.log_error(request_id, e, purpose)
                if not e.transient:
                    raise
                last_error = e
                self._backoff(attempt, purpose, e)
                continue

            self.interaction_logger.log_response(
                request_id,
                response,
                cost_usd=self.provider.calculate_cost(
                    response.prompt_tokens, response.completion_tokens
                ),
            )

            content = extract_json(response.content)
            try:
                result = response_model.model_validate_json(content)
            except ValidationError as e:
                error = LLMSchemaValidationError(purpose, e.errors(), response.content)
                self.interaction_logger.log_error(request_id, error, purpose)
                if response.finish_reason == "length":
                    logger.warning(
                        f"{purpose} response truncated at {max_tokens} tokens"
                    )
                last_error = error
                self._backoff(attempt, purpose, error)
                continue

            if self.cache is not None:
                self.cache.set(purpose, model, full_system_prompt, user_prompt, content)
            return result

        logger.error(
            f"{purpose} request failed after {self.retry.max_attempts} attempts: {last_error}"
        )
        raise last_error or RuntimeError("Unexpected retry loop exit")

    def _backoff(self, attempt: int, purpose: str, error: Exception) -> None:
        if attempt + 1 >= self.retry.max_attempts:
            return
        delay = calculate_delay(attempt, self.retry)
        logger.warning(
            f"Retry {attempt + 1}/{self.retry.max_attempts - 1} for {purpose}: "
            f"{error}, waiting {delay:.2f}s"
        )
        self._sleep(delay)
