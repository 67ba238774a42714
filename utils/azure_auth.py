"""
Entra ID credentials shared by the Azure OpenAI client and Azure Monitor.

Inside Azure hosting (Container Apps, App Service, Functions) a managed
identity is used; elsewhere ``DefaultAzureCredential`` restricted to
environment and managed identity sources.
"""

import logging
import os
from functools import lru_cache
from typing import Callable, Optional

from azure.core.credentials import TokenCredential
from azure.identity import (
    DefaultAzureCredential,
    ManagedIdentityCredential,
    get_bearer_token_provider,
)

logging.getLogger("azure.identity").setLevel(logging.WARNING)

COGNITIVE_SERVICES_SCOPE = "https://cognitiveservices.azure.com/.default"

_HOSTING_SIGNALS = (
    "MSI_ENDPOINT",
    "IDENTITY_ENDPOINT",
    "WEBSITE_SITE_NAME",
    "CONTAINER_APP_NAME",
)


def running_with_managed_identity(client_id: Optional[str] = None) -> bool:
    return bool(client_id or any(os.getenv(name) for name in _HOSTING_SIGNALS))


@lru_cache(maxsize=4)
def get_credential(client_id: Optional[str] = None) -> TokenCredential:
    """Credential for ``client_id`` (user-assigned identity) or the default chain."""
    client_id = client_id or os.getenv("AZURE_CLIENT_ID") or None
    if running_with_managed_identity(client_id):
        return ManagedIdentityCredential(client_id=client_id)
    return DefaultAzureCredential(
        exclude_workload_identity_credential=True,
        exclude_shared_token_cache_credential=True,
        exclude_visual_studio_code_credential=True,
        exclude_cli_credential=True,
        exclude_powershell_credential=True,
        exclude_interactive_browser_credential=True,
    )


def openai_token_provider(client_id: Optional[str] = None) -> Callable[[], str]:
    """Bearer token callable for ``AsyncAzureOpenAI(azure_ad_token_provider=...)``."""
    return get_bearer_token_provider(get_credential(client_id), COGNITIVE_SERVICES_SCOPE)


__all__ = [
    "COGNITIVE_SERVICES_SCOPE",
    "get_credential",
    "openai_token_provider",
    "running_with_managed_identity",
]
