"""MCP tool layer: argument handling and the JSON shape returned to the client."""
import asyncio
import json

import pytest

from sfdeploy.deployment.models import DeployKind, DeployOutcome, Diagnostic, JobState
from sfdeploy.errors import ConfigurationError, TransportError
from sfdeploy.mcp.server import mcp_server, parse_docstring, tool_description, tool_registry
from sfdeploy.mcp.tools import deploy_tools

from conftest import status_response


@pytest.fixture
def captured(monkeypatch):
    """Replace the deploy call; collect every DeployRequest it receives."""
    requests_seen = []
    outcome = {"value": DeployOutcome(success=True, raw_state=JobState.COMPLETED, job_id="1dr000000000001")}

    def fake_deploy(request, transport=None):
        requests_seen.append(request)
        return outcome["value"]

    monkeypatch.setattr(deploy_tools, "deploy", fake_deploy)
    monkeypatch.setattr(deploy_tools, "get_salesforce_transport", lambda: object())
    return requests_seen, outcome


def test_tools_are_registered():
    for name in ("deploy_apex_class", "deploy_apex_trigger", "deploy_component_bundle", "get_deploy_status"):
        assert name in tool_registry


def test_bundle_tool_docstring_args_are_parsed():
    summary, args = parse_docstring(deploy_tools.deploy_component_bundle)

    assert summary.startswith("Deploy a whole component bundle")
    assert set(args) == {"bundle_type", "bundle_name", "files"}
    assert tool_registry["deploy_component_bundle"].args == args


def test_client_sees_summary_and_arguments_only():
    tools = {t.name: t for t in asyncio.run(mcp_server.list_tools())}
    entry = tool_registry["deploy_apex_class"]

    description = tools["deploy_apex_class"].description
    assert description == tool_description(entry.summary, entry.args)
    assert "- class_id: Record Id of the ApexClass (01p...)." in description
    assert "Returns" not in description
    assert "class_name" in tools["deploy_apex_class"].inputSchema["properties"]


def test_description_without_args_is_the_summary():
    assert tool_description("Do it.", {}) == "Do it."


def test_deploy_apex_class_success(captured):
    requests_seen, _ = captured

    result = json.loads(deploy_tools.deploy_apex_class("01p000000000001", "public class Foo {}"))

    assert result["success"] is True
    assert result["state"] == "Completed"
    assert result["errors"] is None
    [request] = requests_seen
    assert request.kind is DeployKind.SINGLE_FILE
    assert request.target_type == "ApexClass"
    assert request.entity_id == "01p000000000001"
    assert request.target_name == "Foo"
    assert request.content == {"Foo.cls": "public class Foo {}"}


def test_deploy_apex_trigger_compile_error(captured):
    requests_seen, outcome = captured
    outcome["value"] = DeployOutcome(
        success=False,
        raw_state=JobState.FAILED,
        message="1 compilation errors found.",
        diagnostics=[Diagnostic(file="T", kind="Compile Error", message="Unexpected token", line=3, column=5)],
    )

    result = json.loads(deploy_tools.deploy_apex_trigger("01q000000000001", "trigger T on Account (after insert) {"))

    assert result["success"] is False
    assert result["errors"] == "[3:5] T: Unexpected token"
    assert result["diagnostics"][0]["line"] == 3
    assert requests_seen[0].target_type == "ApexTrigger"


def test_empty_body_is_rejected_without_deploying(captured):
    requests_seen, _ = captured

    result = json.loads(deploy_tools.deploy_apex_class("01p000000000001", "   "))

    assert result["success"] is False
    assert requests_seen == []


def test_bundle_tool_builds_bundle_request(captured):
    requests_seen, outcome = captured
    outcome["value"] = DeployOutcome(success=True, raw_state=JobState.SUCCEEDED, fallback_success=True)

    result = json.loads(deploy_tools.deploy_component_bundle("LWC", "myCmp", {"myCmp.js": "js"}))

    assert result["fallback_success"] is True
    assert "fallback" in result["message"]
    assert requests_seen[0].kind is DeployKind.BUNDLE
    assert requests_seen[0].target_name == "myCmp"


def test_errors_are_returned_as_json(monkeypatch):
    def no_session():
        raise ConfigurationError("No Salesforce session configured.")

    monkeypatch.setattr(deploy_tools, "get_salesforce_transport", no_session)

    result = json.loads(deploy_tools.deploy_component_bundle("LWC", "myCmp", {"myCmp.js": "js"}))

    assert result == {"success": False, "error": "No Salesforce session configured."}


def test_get_deploy_status(monkeypatch, transport):
    transport.on_soap("checkDeployStatus", status_response("InProgress", job_id="0Af000000000002"))
    monkeypatch.setattr(deploy_tools, "get_salesforce_transport", lambda: transport)

    result = json.loads(deploy_tools.get_deploy_status("0Af000000000002"))

    assert result["status"] == "InProgress"
    assert result["success"] is False
    assert result["job_id"] == "0Af000000000002"


def test_explicit_name_wins_and_type_is_the_last_resort(captured):
    requests_seen, _ = captured

    deploy_tools.deploy_apex_class("01p000000000001", "public class Foo {}", class_name="InvoiceService")
    deploy_tools.deploy_apex_trigger("01q000000000001", "/* nothing declared */")

    assert list(requests_seen[0].content) == ["InvoiceService.cls"]
    assert list(requests_seen[1].content) == ["ApexTrigger.trigger"]


def test_inline_compile_error_is_labelled_with_the_class_file(monkeypatch, transport):
    body = json.dumps([{"message": "Unexpected token 'x' at line 2, column 7", "errorCode": "INVALID_INPUT"}])
    transport.on("POST", "tooling/sobjects/MetadataContainer", {"id": "1dc000000000001"})
    transport.on("POST", "tooling/sobjects/ApexClassMember", TransportError("API Error: 400", status=400, body=body))
    transport.on("DELETE", "tooling/sobjects/MetadataContainer/1dc000000000001", None)
    monkeypatch.setattr(deploy_tools, "get_salesforce_transport", lambda: transport)

    result = json.loads(deploy_tools.deploy_apex_class("01p000000000001", "public class InvoiceService { x }"))

    assert result["success"] is False
    assert result["diagnostics"][0]["file"] == "InvoiceService.cls"
    assert result["errors"].startswith("[2:7] InvoiceService.cls:")
