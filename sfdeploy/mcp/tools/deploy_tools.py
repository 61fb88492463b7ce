import json
import logging
import re
from typing import Dict, Optional

from sfdeploy.deployment.archive import check_deploy_status
from sfdeploy.deployment.diagnostics import format_diagnostics
from sfdeploy.deployment.facade import deploy
from sfdeploy.deployment.models import DeployKind, DeployOutcome, DeployRequest
from sfdeploy.mcp.server import register_tool
from sfdeploy.services.salesforce import get_salesforce_transport

logger = logging.getLogger(__name__)


def _outcome_json(operation: str, target: str, outcome: DeployOutcome) -> str:
    return json.dumps({
        "success": outcome.success,
        "operation": operation,
        "target": target,
        "state": outcome.raw_state.value,
        "job_id": outcome.job_id,
        "fallback_success": outcome.fallback_success,
        "message": outcome.message if not outcome.success else (
            "Deployment confirmed after fallback verification" if outcome.fallback_success
            else "Deployment succeeded"
        ),
        "errors": format_diagnostics(outcome.message, outcome.diagnostics) if not outcome.success else None,
        "diagnostics": [d.model_dump() for d in outcome.diagnostics],
    }, indent=2)


_DECLARED_NAME = re.compile(r"\b(?:class|trigger)\s+(\w+)", re.IGNORECASE)


def _apex_name(target_type: str, body: str, name: Optional[str]) -> str:
    """Name diagnostics are reported against: given, declared in the body, or the type."""
    if name:
        return name
    match = _DECLARED_NAME.search(body)
    return match.group(1) if match else target_type


def _deploy_apex(
    operation: str, target_type: str, entity_id: str, body: str, suffix: str, name: Optional[str] = None
) -> str:
    try:
        if not entity_id or not body or not body.strip():
            return json.dumps({"success": False, "error": "Both the record id and a non-empty body are required"}, indent=2)

        target_name = _apex_name(target_type, body, name)
        request = DeployRequest(
            kind=DeployKind.SINGLE_FILE,
            target_type=target_type,
            target_name=target_name,
            content={f"{target_name}{suffix}": body},
            entity_id=entity_id,
        )
        outcome = deploy(request, transport=get_salesforce_transport())
        return _outcome_json(operation, entity_id, outcome)

    except Exception as e:
        logger.error("%s: %s", operation, e, exc_info=True)
        return json.dumps({"success": False, "error": str(e)}, indent=2)


# =============================================================================
# APEX (TOOLING CONTAINER)
# =============================================================================

@register_tool
def deploy_apex_class(class_id: str, body: str, class_name: Optional[str] = None) -> str:
    """Compile and save a new body for an **existing Apex class**.

The body is deployed through a fresh Tooling API MetadataContainer which is
deleted again afterwards, whatever the result. Compile errors are returned as
diagnostics, not raised.

Args:
    class_id (str): Record Id of the ApexClass (01p...).
    body (str): Full Apex source of the class.
    class_name (str): Class name used to label compile errors (optional, read from the body when omitted).

Returns:
    str: JSON-encoded string.

    # Success
    {
      "success": true,
      "operation": "deploy_apex_class",
      "target": "01p...",
      "state": "Completed",
      "job_id": "1dr...",
      "fallback_success": false,
      "message": "Deployment succeeded",
      "errors": null,
      "diagnostics": []
    }

    # Compile error
    {
      "success": false,
      "state": "Failed",
      "message": "1 compilation errors found.",
      "errors": "[3:5] InvoiceService: Unexpected token",
      "diagnostics": [{"file": "InvoiceService", "kind": "Compile Error", "message": "Unexpected token", "line": 3, "column": 5}]
    }
"""
    return _deploy_apex("deploy_apex_class", "ApexClass", class_id, body, ".cls", class_name)


@register_tool
def deploy_apex_trigger(trigger_id: str, body: str, trigger_name: Optional[str] = None) -> str:
    """Compile and save a new body for an **existing Apex trigger**.

Same flow and response shape as `deploy_apex_class`.

Args:
    trigger_id (str): Record Id of the ApexTrigger (01q...).
    body (str): Full trigger source.
    trigger_name (str): Trigger name used to label compile errors (optional, read from the body when omitted).
"""
    return _deploy_apex("deploy_apex_trigger", "ApexTrigger", trigger_id, body, ".trigger", trigger_name)


# =============================================================================
# BUNDLES (METADATA API ZIP)
# =============================================================================

@register_tool
def deploy_component_bundle(bundle_type: str, bundle_name: str, files: Dict[str, str]) -> str:
    """Deploy a whole component bundle (LWC or Aura) atomically through the Metadata API.

All files of the bundle should be passed together, a partial bundle fails to
compile. File keys may be bare names (`myCmp.js`) or paths (`lwc/myCmp/myCmp.js`);
they are placed under the right folder and a package.xml is generated.

Args:
    bundle_type (str): "LWC" (LightningComponentBundle) or "Aura" (AuraDefinitionBundle).
        Flat types such as "ApexClass" are accepted too and create the file if needed.
    bundle_name (str): Bundle DeveloperName, e.g. "accountHeader".
    files (Dict[str, str]): File name or path -> file content.

Returns:
    str: JSON-encoded string with the same shape as `deploy_apex_class`. When a
    deploy only confirmed success after the poll loop gave up, "fallback_success"
    is true. A timed-out deploy may still be running in the org.

Example:
    deploy_component_bundle("LWC", "accountHeader", {
        "accountHeader.html": "<template>...</template>",
        "accountHeader.js": "import { LightningElement } from 'lwc'; ...",
        "accountHeader.js-meta.xml": "<?xml version=...>"
    })
"""
    try:
        if not files:
            return json.dumps({"success": False, "error": "No files to deploy"}, indent=2)

        request = DeployRequest(
            kind=DeployKind.BUNDLE,
            target_type=bundle_type,
            target_name=bundle_name,
            content=dict(files),
        )
        outcome = deploy(request, transport=get_salesforce_transport())
        return _outcome_json("deploy_component_bundle", bundle_name, outcome)

    except Exception as e:
        logger.error("deploy_component_bundle: %s", e, exc_info=True)
        return json.dumps({"success": False, "error": str(e)}, indent=2)


@register_tool
def get_deploy_status(job_id: str) -> str:
    """
    Return the current status and component/test failures of a Metadata API deploy job.
    """
    try:
        outcome = check_deploy_status(get_salesforce_transport(), job_id)
        return json.dumps({
            "success": outcome.success,
            "job_id": job_id,
            "status": outcome.raw_state.value,
            "message": outcome.message,
            "diagnostics": [d.model_dump() for d in outcome.diagnostics],
        }, indent=2)
    except Exception as e:
        return json.dumps({"success": False, "error": str(e), "job_id": job_id}, indent=2)
