"""
OpenAI client for recipe generation.

Makes one bounded chat-completion call and turns every provider-side failure
into a categorized ProviderError. Raw provider error text stays in the logs.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import openai
from openai import OpenAI

from ..core.pricing import TokenUsage

logger = logging.getLogger(__name__)


class ProviderError(Exception):
    """Base class for generation provider failures."""
    category = "unknown"


class ProviderConfigurationError(ProviderError):
    """Missing or rejected credentials, unknown model, bad request parameters."""
    category = "configuration"


class ProviderNetworkError(ProviderError):
    """Connection failure or timeout."""
    category = "network"


class ProviderQuotaError(ProviderError):
    """Rate limited, out of quota or overloaded."""
    category = "quota"


class ProviderResponseError(ProviderError):
    """Response arrived but was empty, not JSON or missing usage data."""
    category = "invalid_response"


@dataclass(frozen=True)
class ProviderResponse:
    """Parsed provider output plus accounting data."""
    content: Dict[str, Any]
    usage: TokenUsage
    request_id: Optional[str]
    model: str


class RecipeGenerationClient:
    """OpenAI chat-completions wrapper with a hard timeout and no retries.

    The underlying client is created on first use so that a missing API key
    surfaces as a ProviderConfigurationError inside the pipeline rather than
    at import time.
    """

    def __init__(
        self,
        model: str,
        max_tokens: int = 1200,
        temperature: float = 0.7,
        timeout: float = 30.0,
        api_key: Optional[str] = None
    ):
        """Initialize the client.

        Raises:
            ValueError: If model is missing or limits are not positive
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")
        if max_tokens <= 0:
            raise ValueError("max_tokens must be > 0")
        if timeout <= 0:
            raise ValueError("timeout must be > 0")

        self.model = model
        self.max_tokens = max_tokens
        self.temperature = temperature
        self.timeout = timeout
        self.api_key = api_key
        self._client = None

    @property
    def client(self) -> OpenAI:
        if self._client is None:
            try:
                self._client = OpenAI(api_key=self.api_key, timeout=self.timeout, max_retries=0)
            except openai.OpenAIError as e:
                logger.error("Could not create OpenAI client: %s", e)
                raise ProviderConfigurationError("OpenAI client is not configured") from e
        return self._client

    def generate(self, messages: List[Dict[str, str]]) -> ProviderResponse:
        """Request one JSON recipe object.

        Raises:
            ValueError: If messages is empty
            ProviderError: On any provider-side failure, categorized
        """
        if not messages:
            raise ValueError("messages is required and cannot be empty")

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=messages,
                max_tokens=self.max_tokens,
                temperature=self.temperature,
                response_format={"type": "json_object"},
                timeout=self.timeout
            )
        except (openai.AuthenticationError, openai.PermissionDeniedError,
                openai.NotFoundError, openai.BadRequestError) as e:
            logger.error("Provider rejected the request configuration: %s", e)
            raise ProviderConfigurationError("provider configuration error") from e
        except openai.RateLimitError as e:
            logger.warning("Provider rate limit or quota reached: %s", e)
            raise ProviderQuotaError("provider quota exceeded") from e
        except openai.APIConnectionError as e:
            # Includes APITimeoutError.
            logger.warning("Provider connection failed: %s", e)
            raise ProviderNetworkError("provider unreachable") from e
        except openai.APIStatusError as e:
            logger.warning("Provider returned status %s: %s", e.status_code, e)
            if e.status_code >= 500:
                raise ProviderQuotaError("provider unavailable") from e
            raise ProviderError("provider error") from e
        except openai.OpenAIError as e:
            logger.error("Unexpected provider error: %s", e)
            raise ProviderError("provider error") from e

        usage = response.usage
        if not usage:
            raise ProviderResponseError("response missing usage information")

        if not response.choices or not response.choices[0].message.content:
            raise ProviderResponseError("response contained no content")
        raw_content = response.choices[0].message.content

        try:
            content = json.loads(raw_content)
        except json.JSONDecodeError as e:
            logger.warning("Provider returned non-JSON content (%d chars)", len(raw_content))
            raise ProviderResponseError("response is not valid JSON") from e
        if not isinstance(content, dict):
            raise ProviderResponseError("response JSON is not an object")

        return ProviderResponse(
            content=content,
            usage=TokenUsage(
                prompt_tokens=usage.prompt_tokens,
                completion_tokens=usage.completion_tokens
            ),
            request_id=getattr(response, "id", None),
            model=self.model,
        )
