import json
import threading

import pytest

from sfdeploy.deployment.container import container_name, deploy_via_container
from sfdeploy.deployment.models import JobState
from sfdeploy.deployment.polling import CANCELLED_MESSAGE, PollOptions
from sfdeploy.errors import TransportError

CONTAINER = "tooling/sobjects/MetadataContainer"
MEMBER = "tooling/sobjects/ApexClassMember"
REQUEST = "tooling/sobjects/ContainerAsyncRequest"
DELETE = ("DELETE", f"{CONTAINER}/1dc000000000001")


def _scripted(transport, *states, request=None):
    transport.on("POST", CONTAINER, {"id": "1dc000000000001", "success": True, "errors": []})
    transport.on("POST", MEMBER, {"id": "400000000000001", "success": True, "errors": []})
    transport.on("POST", REQUEST, request or {"id": "1dr000000000001", "success": True, "errors": []})
    transport.on("GET", f"{REQUEST}/1dr000000000001", *states)
    transport.on(*DELETE, None)
    return transport


def _deploy(transport, sleeps, **kwargs):
    return deploy_via_container(
        transport, "ApexClass", "01p000000000001", "public class Foo {}", sleep=sleeps.append, **kwargs
    )


def test_completed_after_queued_and_in_progress(transport, sleeps):
    _scripted(
        transport,
        {"Id": "1dr000000000001", "State": "Queued"},
        {"Id": "1dr000000000001", "State": "InProgress"},
        {"Id": "1dr000000000001", "State": "InProgress"},
        {"Id": "1dr000000000001", "State": "Completed"},
    )

    outcome = _deploy(transport, sleeps)

    assert outcome.success is True
    assert outcome.fallback_success is False
    assert outcome.raw_state is JobState.COMPLETED
    assert outcome.job_id == "1dr000000000001"
    assert transport.count(*DELETE) == 1
    assert [c[0] for c in transport.calls] == ["POST", "POST", "POST", "GET", "GET", "GET", "GET", "DELETE"]


def test_setup_payloads(transport, sleeps):
    _scripted(transport, {"State": "Completed"})

    _deploy(transport, sleeps)

    container_body = transport.calls[0][2]
    member_body = transport.calls[1][2]
    request_body = transport.calls[2][2]
    assert container_body["Name"].startswith("SFD_")
    assert member_body == {
        "MetadataContainerId": "1dc000000000001",
        "ContentEntityId": "01p000000000001",
        "Body": "public class Foo {}",
    }
    assert request_body == {"MetadataContainerId": "1dc000000000001", "IsCheckOnly": False}


def test_compiler_errors_become_diagnostics(transport, sleeps):
    _scripted(transport, {
        "State": "Failed",
        "CompilerErrors": json.dumps([{"name": "Foo", "line": 3, "column": 5, "problem": "Unexpected token"}]),
    })

    outcome = _deploy(transport, sleeps)

    assert outcome.success is False
    assert outcome.raw_state is JobState.FAILED
    [d] = outcome.diagnostics
    assert (d.file, d.line, d.column, d.message) == ("Foo", 3, 5, "Unexpected token")
    assert outcome.message == "1 compilation errors found."
    assert transport.count(*DELETE) == 1


@pytest.mark.parametrize("state", ["Error", "Invalidated"])
def test_other_failure_states(transport, sleeps, state):
    _scripted(transport, {"State": state, "ErrorMsg": "Something broke"})

    outcome = _deploy(transport, sleeps)

    assert not outcome.success
    assert outcome.message == "Something broke"


def test_aborted(transport, sleeps):
    _scripted(transport, {"State": "Aborted"})

    outcome = _deploy(transport, sleeps)

    assert not outcome.success
    assert outcome.raw_state is JobState.ABORTED
    assert transport.count(*DELETE) == 1


def test_container_deleted_when_async_request_raises(transport, sleeps):
    _scripted(transport, {"State": "Completed"}, request=TransportError("API Error: 500", status=500, body="oops"))

    with pytest.raises(TransportError):
        _deploy(transport, sleeps)

    assert transport.count(*DELETE) == 1
    assert transport.count("GET", f"{REQUEST}/1dr000000000001") == 0


def test_container_deleted_when_polling_raises(transport, sleeps):
    _scripted(transport, {"State": "Completed"})
    transport.on("GET", f"{REQUEST}/1dr000000000001", RuntimeError("bug"))

    with pytest.raises(RuntimeError):
        _deploy(transport, sleeps)

    assert transport.count(*DELETE) == 1


def test_no_delete_when_container_create_fails(transport, sleeps):
    transport.on("POST", CONTAINER, TransportError("API Error: 401", status=401, body="[]"))

    with pytest.raises(TransportError):
        _deploy(transport, sleeps)

    assert all(method != "DELETE" for method, _, _ in transport.calls)


def test_cleanup_failure_does_not_mask_outcome(transport, sleeps):
    _scripted(transport, {"State": "Completed"})
    transport.on(*DELETE, TransportError("API Error: 404", status=404))

    outcome = _deploy(transport, sleeps)

    assert outcome.success
    assert transport.count(*DELETE) == 1


def test_inline_compile_error_on_member_insert(transport, sleeps):
    body = json.dumps([{"message": "Unexpected token 'x' at line 2, column 7", "errorCode": "INVALID_INPUT"}])
    _scripted(transport, {"State": "Completed"})
    transport.on("POST", MEMBER, TransportError("API Error: 400", status=400, body=body))

    outcome = _deploy(transport, sleeps, file_name="Foo.cls")

    assert not outcome.success
    assert [(d.file, d.line, d.column) for d in outcome.diagnostics] == [("Foo.cls", 2, 7)]
    assert transport.count(*DELETE) == 1


def test_cancel_still_deletes_container(transport):
    cancel = threading.Event()
    cancel.set()
    _scripted(transport, {"State": "InProgress"})

    outcome = deploy_via_container(
        transport, "ApexClass", "01p000000000001", "x",
        options=PollOptions(), cancel_event=cancel,
    )

    assert not outcome.success
    assert outcome.message == CANCELLED_MESSAGE
    assert transport.count(*DELETE) == 1


def test_trigger_uses_trigger_member(transport, sleeps):
    _scripted(transport, {"State": "Completed"})
    transport.on("POST", "tooling/sobjects/ApexTriggerMember", {"id": "401000000000001"})

    outcome = deploy_via_container(transport, "ApexTrigger", "01q000000000001", "trigger T on Account (before insert) {}",
                                   sleep=sleeps.append)

    assert outcome.success
    assert transport.count("POST", "tooling/sobjects/ApexTriggerMember") == 1
    assert transport.count("POST", MEMBER) == 0


def test_unsupported_type_is_rejected(transport, sleeps):
    with pytest.raises(ValueError):
        deploy_via_container(transport, "LightningComponentBundle", "0Rb", "x", sleep=sleeps.append)
    assert transport.calls == []


def test_container_names_are_unique_and_short():
    names = {container_name() for _ in range(50)}

    assert len(names) == 50
    assert all(len(n) <= 32 for n in names)


def test_garbled_setup_error_body_still_raises_transport_error(transport, sleeps):
    _scripted(transport, {"State": "Completed"})
    transport.on("POST", MEMBER, TransportError("API Error: 400", status=400, body="[" * 200000))

    with pytest.raises(TransportError):
        _deploy(transport, sleeps)

    assert transport.count(*DELETE) == 1
