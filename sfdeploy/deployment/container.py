"""Tooling API deploy: MetadataContainer + member + ContainerAsyncRequest.

Direct PATCH on ApexClass/ApexTrigger only works in some org types (scratch
orgs, some dev orgs). The container route compiles everywhere. Each deploy gets
its own freshly named container, so there is never a container to look up,
reuse or clear, and the container is deleted again once the job is settled.
"""
import logging
import threading
import time
import uuid
from typing import Callable, Optional

from sfdeploy.deployment.diagnostics import from_inline_json, from_job_record
from sfdeploy.deployment.models import AsyncJob, Container, DeployOutcome, JobProtocol, JobState
from sfdeploy.deployment.polling import Classification, JobStatus, PollOptions, poll
from sfdeploy.errors import TransportError

logger = logging.getLogger(__name__)

TOOLING = "tooling/sobjects"

MEMBER_ENTITIES = {
    "ApexClass": "ApexClassMember",
    "ApexTrigger": "ApexTriggerMember",
}

FAILURE_STATES = {JobState.FAILED, JobState.ERROR, JobState.INVALIDATED}


def supports_container_deploy(target_type: str) -> bool:
    return target_type in MEMBER_ENTITIES


def container_name() -> str:
    """Unique per call; MetadataContainer.Name allows 32 characters."""
    return f"SFD_{int(time.time() * 1000)}_{uuid.uuid4().hex[:8]}"


def classify_container_job(status: JobStatus) -> Classification:
    state = status.state
    if state is JobState.COMPLETED:
        return Classification.success()
    if state in FAILURE_STATES:
        job = status.payload if isinstance(status.payload, dict) else {}
        diagnostics = from_job_record(job)
        message = job.get("ErrorMsg") or (
            f"{len(diagnostics)} compilation errors found."
            if diagnostics
            else "Unknown deployment error"
        )
        return Classification.failure(diagnostics, message)
    if state is JobState.ABORTED:
        return Classification.aborted("Deployment aborted by Salesforce.")
    return Classification.running()


def create_container(transport) -> Container:
    name = container_name()
    created = transport.http_call("POST", f"{TOOLING}/MetadataContainer", {"Name": name})
    return Container(id=created["id"], name=name)


def delete_container(transport, container: Container) -> None:
    """Delete ``container``; failures are logged and never raised."""
    try:
        transport.http_call("DELETE", f"{TOOLING}/MetadataContainer/{container.id}")
        logger.info("Deleted MetadataContainer %s (%s)", container.name, container.id)
    except Exception as e:
        logger.warning("Cleanup of MetadataContainer %s failed (non-critical): %s", container.id, e)


def deploy_via_container(
    transport,
    target_type: str,
    entity_id: str,
    content: str,
    options: Optional[PollOptions] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
    file_name: Optional[str] = None,
) -> DeployOutcome:
    """Compile ``content`` into the existing ApexClass/ApexTrigger ``entity_id``.

    Setup calls are not retried: a TransportError from them propagates, unless
    its body is an inline compile error, which becomes a failed outcome.
    """
    if target_type not in MEMBER_ENTITIES:
        raise ValueError(f"{target_type} cannot be deployed through a MetadataContainer")

    logger.info("🚀 Deploying %s (%s) via MetadataContainer...", target_type, entity_id)
    container: Optional[Container] = None
    try:
        try:
            container = create_container(transport)
            transport.http_call(
                "POST",
                f"{TOOLING}/{MEMBER_ENTITIES[target_type]}",
                {"MetadataContainerId": container.id, "ContentEntityId": entity_id, "Body": content},
            )
            request = transport.http_call(
                "POST",
                f"{TOOLING}/ContainerAsyncRequest",
                {"MetadataContainerId": container.id, "IsCheckOnly": False},
            )
        except TransportError as e:
            diagnostics = from_inline_json(e.body, file_name or entity_id)
            if not diagnostics:
                raise
            logger.error("Deployment rejected before compilation: %s", diagnostics[0].message)
            return DeployOutcome(
                success=False,
                diagnostics=diagnostics,
                raw_state=JobState.FAILED,
                message=diagnostics[0].message,
            )

        job = AsyncJob(id=request["id"], protocol=JobProtocol.CONTAINER, state=JobState.QUEUED)
        logger.info("Request created: %s", job.id)

        def check_status() -> JobStatus:
            record = transport.http_call("GET", f"{TOOLING}/ContainerAsyncRequest/{job.id}")
            record = record if isinstance(record, dict) else {}
            return JobStatus(JobState.parse(record.get("State")), record)

        return poll(
            check_status,
            classify_container_job,
            options=options,
            job=job,
            cancel_event=cancel_event,
            sleep=sleep,
        )
    finally:
        if container is not None:
            delete_container(transport, container)
