"""Single entry point: route a DeployRequest to the right protocol"""
import logging
import threading
import time
from typing import Callable, Optional

from sfdeploy.config import Settings, get_settings
from sfdeploy.deployment.archive import deploy_via_archive
from sfdeploy.deployment.container import deploy_via_container, supports_container_deploy
from sfdeploy.deployment.models import DeployKind, DeployOutcome, DeployRequest, FileMap
from sfdeploy.deployment.packager import build_file_map
from sfdeploy.services.packaging import build_archive
from sfdeploy.services.salesforce import get_salesforce_transport

logger = logging.getLogger(__name__)


def uses_container(request: DeployRequest) -> bool:
    return (
        request.kind is DeployKind.SINGLE_FILE
        and supports_container_deploy(request.target_type)
        and bool(request.entity_id)
        and len(request.content) == 1
    )


def deploy(
    request: DeployRequest,
    transport=None,
    archive_builder: Callable[[FileMap], str] = build_archive,
    settings: Optional[Settings] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DeployOutcome:
    """Deploy ``request`` and report the result.

    Single Apex files with a known record id go through a MetadataContainer;
    bundles and everything else go through a Metadata API ZIP. Compile errors
    come back as ``outcome.diagnostics``; only a failed setup call raises.
    """
    settings = settings or get_settings()
    if transport is None:
        transport = get_salesforce_transport(settings)
    options = settings.poll_options()

    if uses_container(request):
        file_name, body = next(iter(request.content.items()))
        return deploy_via_container(
            transport,
            request.target_type,
            request.entity_id,
            body,
            options=options,
            cancel_event=cancel_event,
            sleep=sleep,
            file_name=file_name.rsplit("/", 1)[-1],
        )

    logger.info("Deploying %s %s as an atomic bundle", request.target_type, request.target_name)
    file_map = build_file_map(request.target_type, request.target_name, request.content, settings.api_version)
    return deploy_via_archive(
        transport,
        file_map,
        archive_builder=archive_builder,
        options=options,
        cancel_event=cancel_event,
        sleep=sleep,
    )
