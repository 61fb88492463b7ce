"""Salesforce connection management from configured session settings"""
import logging
import threading
from typing import Optional

from simple_salesforce import Salesforce

from sfdeploy.config import Settings, get_settings
from sfdeploy.errors import ConfigurationError
from sfdeploy.services.transport import SalesforceTransport

logger = logging.getLogger(__name__)

# Thread-local storage
local = threading.local()


def get_salesforce_connection(settings: Optional[Settings] = None) -> Salesforce:
    """
    Get a Salesforce connection for the configured session (cached per thread).

    Args:
        settings: Settings to read the instance URL and session id from (optional,
            defaults to the environment)

    Returns:
        Salesforce connection instance
    """
    if getattr(local, "sf_connection", None) is None:
        settings = settings or get_settings()
        logger.info("🔗 Creating Salesforce connection...")

        if not settings.instance_url or not settings.session_id:
            raise ConfigurationError(
                "❌ No Salesforce session configured.\n"
                "Set SFDEPLOY_INSTANCE_URL and SFDEPLOY_SESSION_ID (an access token for that org)."
            )

        local.sf_connection = Salesforce(
            instance_url=settings.instance_url,
            session_id=settings.session_id,
            version=settings.api_version,
        )
        logger.info(f"✅ Connected to {settings.instance_url} (API v{settings.api_version})")

    return local.sf_connection


def get_salesforce_transport(settings: Optional[Settings] = None) -> SalesforceTransport:
    """Transport bound to the cached connection's session."""
    settings = settings or get_settings()
    return SalesforceTransport.from_connection(
        get_salesforce_connection(settings), timeout=settings.request_timeout
    )


def clear_connection_cache():
    """Clear connection cache to force new connection"""
    if hasattr(local, "sf_connection"):
        local.sf_connection = None
