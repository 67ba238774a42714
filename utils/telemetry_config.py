# -------------------------------------------------------------------------
# Copyright (c) Microsoft Corporation. All rights reserved.
# Licensed under the MIT License. See License in the project root for
# license information.
# --------------------------------------------------------------------------
import logging
import os

from azure.core.exceptions import HttpResponseError, ServiceResponseError
from azure.monitor.opentelemetry import configure_azure_monitor
from dotenv import load_dotenv
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider

from utils.azure_auth import get_credential

if os.path.isfile(".env"):
    load_dotenv(override=False)

logger = logging.getLogger(__name__)
_live_metrics_permanently_disabled = False
_azure_monitor_configured = False

SERVICE_NAME = "avatar-rt-api"
SERVICE_NAMESPACE = "avatar-platform"

_INSTRUMENTATION_OPTIONS = {
    "azure_sdk": {"enabled": True},
    "fastapi": {"enabled": True},
    "requests": {"enabled": True},
    "urllib3": {"enabled": True},
    "psycopg2": {"enabled": False},
    "django": {"enabled": False},
    "flask": {"enabled": False},
}


def suppress_azure_credential_logs():
    """Silence noisy credential-chain logs emitted while DefaultAzureCredential probes."""
    for logger_name in (
        "azure.identity",
        "azure.identity._credentials.managed_identity",
        "azure.identity._internal.msal_managed_identity_client",
        "azure.core.pipeline.policies._authentication",
        "azure.core.pipeline.policies.http_logging_policy",
        "azure.monitor.opentelemetry.exporter.export._base",
    ):
        logging.getLogger(logger_name).setLevel(logging.CRITICAL)


suppress_azure_credential_logs()


def is_azure_monitor_configured() -> bool:
    """Return True when Azure Monitor finished configuring successfully."""
    return _azure_monitor_configured


def setup_azure_monitor(logger_name: str = None) -> bool:
    """
    Configure Azure Monitor / Application Insights if a connection string is set.

    Returns True when export is active. Missing configuration or
    ``DISABLE_CLOUD_TELEMETRY=true`` is a logged no-op; permission failures
    retry once with live metrics disabled.
    """
    global _azure_monitor_configured

    _azure_monitor_configured = False

    if os.getenv("DISABLE_CLOUD_TELEMETRY", "true").lower() == "true":
        logger.info(
            "Telemetry disabled (DISABLE_CLOUD_TELEMETRY=true), skipping Azure Monitor setup"
        )
        return False

    connection_string = os.getenv("APPLICATIONINSIGHTS_CONNECTION_STRING")
    if not connection_string:
        logger.info(
            "APPLICATIONINSIGHTS_CONNECTION_STRING not found, skipping Azure Monitor configuration"
        )
        return False

    logger_name = logger_name or os.getenv("AZURE_MONITOR_LOGGER_NAME", "default")
    disable_live_metrics_env = (
        os.getenv("AZURE_MONITOR_DISABLE_LIVE_METRICS", "false").lower() == "true"
    )
    resource_attrs = {
        "service.name": SERVICE_NAME,
        "service.namespace": SERVICE_NAMESPACE,
    }
    env_name = os.getenv("ENVIRONMENT")
    if env_name:
        resource_attrs["service.environment"] = env_name
    resource = Resource.create(resource_attrs)

    logger.info(f"Setting up Azure Monitor with logger_name: {logger_name}")

    enable_live_metrics = (
        not disable_live_metrics_env
        and not _live_metrics_permanently_disabled
        and _should_enable_live_metrics()
    )

    try:
        configure_azure_monitor(
            resource=resource,
            logger_name=logger_name,
            credential=_get_azure_credential(),
            connection_string=connection_string,
            enable_live_metrics=enable_live_metrics,
            tracer_provider=TracerProvider(resource=resource),
            disable_logging=False,
            disable_tracing=False,
            disable_metrics=False,
            instrumentation_options=_INSTRUMENTATION_OPTIONS,
        )
    except HttpResponseError as e:
        if "Forbidden" in str(e) or "permissions" in str(e).lower():
            logger.warning(
                "Insufficient permissions for Application Insights. Retrying with live metrics disabled..."
            )
            return _retry_without_live_metrics(logger_name, connection_string)
        logger.error(f"HTTP error configuring Azure Monitor: {e}")
        return False
    except ServiceResponseError as e:
        _disable_live_metrics_permanently(
            "Live metrics ping failed during setup", exc_info=e
        )
        return _retry_without_live_metrics(logger_name, connection_string)
    except Exception as e:
        logger.error(f"Failed to configure Azure Monitor: {e}", exc_info=True)
        return False

    status_msg = "Azure Monitor configured successfully"
    if not enable_live_metrics:
        status_msg += " (live metrics disabled)"
    logger.info(status_msg)
    _azure_monitor_configured = True
    return True


def _get_azure_credential():
    """Managed identity when hosted in Azure, otherwise the shared chain."""
    return get_credential(None)


def _should_enable_live_metrics() -> bool:
    environment = os.getenv("ENVIRONMENT", "").lower()
    if environment in ("dev", "development", "local"):
        return False
    if environment in ("prod", "production"):
        return True
    return bool(os.getenv("WEBSITE_SITE_NAME") or os.getenv("CONTAINER_APP_NAME"))


def _retry_without_live_metrics(logger_name: str, connection_string: str) -> bool:
    global _azure_monitor_configured

    try:
        configure_azure_monitor(
            logger_name=logger_name,
            credential=_get_azure_credential(),
            connection_string=connection_string,
            enable_live_metrics=False,
            disable_logging=False,
            disable_tracing=False,
            disable_metrics=False,
            instrumentation_options=_INSTRUMENTATION_OPTIONS,
        )
    except Exception as e:
        logger.error(
            f"Failed to configure Azure Monitor even without live metrics: {e}"
        )
        _azure_monitor_configured = False
        return False

    logger.info(
        "Azure Monitor configured successfully (live metrics disabled due to permissions)"
    )
    _azure_monitor_configured = True
    return True


def _disable_live_metrics_permanently(reason: str, exc_info: Exception | None = None):
    """Set a module-level guard and environment flag to stop future QuickPulse attempts."""
    global _live_metrics_permanently_disabled
    if _live_metrics_permanently_disabled:
        return

    _live_metrics_permanently_disabled = True
    os.environ["AZURE_MONITOR_DISABLE_LIVE_METRICS"] = "true"
    logger.warning(
        "%s. Live metrics disabled for remainder of process.",
        reason,
        exc_info=exc_info,
    )
