"""
SDK for meal-guard.

Provider client used by the generation pipeline.
"""

from .openai_client import (
    ProviderConfigurationError,
    ProviderError,
    ProviderNetworkError,
    ProviderQuotaError,
    ProviderResponse,
    ProviderResponseError,
    RecipeGenerationClient,
)

__all__ = [
    "ProviderConfigurationError",
    "ProviderError",
    "ProviderNetworkError",
    "ProviderQuotaError",
    "ProviderResponse",
    "ProviderResponseError",
    "RecipeGenerationClient",
]
