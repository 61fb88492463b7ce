"""Metadata API deploy: base64 ZIP over SOAP ``deploy`` + ``checkDeployStatus``.

This is the only route that compiles bundle-shaped artifacts (LWC, Aura);
the Tooling container route does not apply to them.
"""
import logging
import threading
import time
from typing import Callable, Optional

from lxml import etree

from sfdeploy.deployment.diagnostics import from_soap_result
from sfdeploy.deployment.models import AsyncJob, DeployOutcome, FileMap, JobProtocol, JobState
from sfdeploy.deployment.polling import Classification, JobStatus, PollOptions, poll
from sfdeploy.errors import TransportError
from sfdeploy.services.packaging import build_archive
from sfdeploy.services.transport import met

logger = logging.getLogger(__name__)

FAILURE_STATES = {JobState.FAILED, JobState.SUCCEEDED_PARTIAL, JobState.CANCELED}


def _bool(value: bool) -> str:
    return "true" if value else "false"


def deploy_body(zip_base64: str, check_only: bool = False) -> etree._Element:
    deploy = etree.Element(met("deploy"))
    etree.SubElement(deploy, met("ZipFile")).text = zip_base64
    opts = etree.SubElement(deploy, met("DeployOptions"))
    etree.SubElement(opts, met("checkOnly")).text = _bool(check_only)
    etree.SubElement(opts, met("rollbackOnError")).text = "true"
    etree.SubElement(opts, met("singlePackage")).text = "true"
    return deploy


def check_status_body(job_id: str, include_details: bool = True) -> etree._Element:
    check = etree.Element(met("checkDeployStatus"))
    etree.SubElement(check, met("asyncProcessId")).text = job_id
    etree.SubElement(check, met("includeDetails")).text = _bool(include_details)
    return check


def _result(root) -> etree._Element:
    result = root.find(".//{*}result")
    if result is None:
        raise TransportError("SOAP response has no <result> element", body=etree.tostring(root).decode())
    return result


def submit_deployment(transport, zip_base64: str) -> str:
    """Send the archive; return the async process id."""
    result = _result(transport.soap_call("deploy", deploy_body(zip_base64)))
    job_id = result.findtext("{*}id")
    if not job_id:
        raise TransportError("Deploy response missing id", body=etree.tostring(result).decode())
    return job_id


def read_status(transport, job_id: str, include_details: bool = True) -> JobStatus:
    result = _result(transport.soap_call("checkDeployStatus", check_status_body(job_id, include_details)))
    return JobStatus(JobState.parse(result.findtext("{*}status")), result)


def classify_deploy_result(status: JobStatus) -> Classification:
    state = status.state
    if state is JobState.SUCCEEDED:
        return Classification.success()
    if state in FAILURE_STATES:
        diagnostics = from_soap_result(status.payload)
        message = None
        if status.payload is not None:
            message = status.payload.findtext("{*}errorMessage")
        if not message:
            message = (
                f"{len(diagnostics)} compilation errors found."
                if diagnostics
                else f"Deployment {state.value}"
            )
        return Classification.failure(diagnostics, message)
    return Classification.running()


def check_deploy_status(transport, job_id: str) -> DeployOutcome:
    """Single status read for an existing deploy job, no polling."""
    status = read_status(transport, job_id)
    verdict = classify_deploy_result(status)
    return DeployOutcome(
        success=status.state is JobState.SUCCEEDED,
        diagnostics=list(verdict.diagnostics),
        raw_state=status.state,
        message=verdict.message,
        job_id=job_id,
    )


def deploy_via_archive(
    transport,
    file_map: FileMap,
    archive_builder: Callable[[FileMap], str] = build_archive,
    options: Optional[PollOptions] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DeployOutcome:
    """Deploy a file map that already contains its package.xml."""
    logger.info("Deploying %d files via Metadata API...", len(file_map))
    zip_base64 = archive_builder(file_map)

    job = AsyncJob(id=submit_deployment(transport, zip_base64), protocol=JobProtocol.ARCHIVE, state=JobState.PENDING)
    logger.info("Metadata deployment submitted: %s", job.id)

    return poll(
        lambda: read_status(transport, job.id),
        classify_deploy_result,
        options=options,
        job=job,
        cancel_event=cancel_event,
        sleep=sleep,
    )
