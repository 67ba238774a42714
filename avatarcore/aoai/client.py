"""
aoai/client.py
--------------
Async OpenAI client factory shared by every capability adapter.

Prefers Azure OpenAI when ``AZURE_OPENAI_ENDPOINT`` is configured (API key or
Entra ID token provider), otherwise falls back to the public OpenAI endpoint
using ``OPENAI_API_KEY``.
"""

import os

from openai import AsyncAzureOpenAI, AsyncOpenAI

from utils.azure_auth import openai_token_provider
from utils.ml_logging import get_logger

logger = get_logger(__name__)


def create_async_openai_client(
    *,
    azure_endpoint: str | None = None,
    azure_api_key: str | None = None,
    azure_client_id: str | None = None,
    openai_api_key: str | None = None,
    api_version: str = "2025-01-01-preview",
    max_retries: int = 0,
):
    """
    Create the async OpenAI client used by the capability adapters.

    Parameters default to environment variables when not provided. Retries are
    disabled by default because the orchestration layer owns timeouts and
    fallbacks.

    Raises:
        ValueError: neither an Azure endpoint nor a public API key is set.
    """
    azure_endpoint = azure_endpoint or os.getenv("AZURE_OPENAI_ENDPOINT", "")
    azure_api_key = azure_api_key or os.getenv("AZURE_OPENAI_KEY")
    azure_client_id = azure_client_id or os.getenv("AZURE_CLIENT_ID")

    if not azure_endpoint:
        api_key = openai_api_key or os.getenv("OPENAI_API_KEY")
        if not api_key:
            raise ValueError(
                "Either AZURE_OPENAI_ENDPOINT or OPENAI_API_KEY must be configured."
            )
        logger.info("Using public OpenAI endpoint")
        return AsyncOpenAI(api_key=api_key, max_retries=max_retries)

    if azure_api_key:
        logger.info("Using API key authentication for Azure OpenAI")
        return AsyncAzureOpenAI(
            api_version=api_version,
            azure_endpoint=azure_endpoint,
            api_key=azure_api_key,
            max_retries=max_retries,
        )

    logger.info(
        "Using Entra ID token authentication for Azure OpenAI (client id: %s)",
        azure_client_id or "default",
    )
    return AsyncAzureOpenAI(
        api_version=api_version,
        azure_endpoint=azure_endpoint,
        azure_ad_token_provider=openai_token_provider(azure_client_id),
        max_retries=max_retries,
    )


__all__ = ["create_async_openai_client"]
