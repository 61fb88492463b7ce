"""Shared fixtures: an in-memory transport that replays scripted responses.

No test talks to a real org; every REST path and SOAP action a test touches
has to be scripted, anything else fails loudly.
"""
from typing import Any, Dict, List, Tuple

import pytest
from lxml import etree

from sfdeploy.deployment.polling import PollOptions

MET_NS = "http://soap.sforce.com/2006/04/metadata"


class Script:
    """Responses handed out in order; the last one repeats forever."""

    def __init__(self, responses):
        self.responses = list(responses)

    def next(self):
        response = self.responses.pop(0) if len(self.responses) > 1 else self.responses[0]
        if isinstance(response, BaseException):
            raise response
        return response


class FakeTransport:
    def __init__(self):
        self.calls: List[Tuple[str, str, Any]] = []
        self.soap_calls: List[Tuple[str, etree._Element]] = []
        self._http: Dict[Tuple[str, str], Script] = {}
        self._soap: Dict[str, Script] = {}

    def on(self, method: str, path: str, *responses):
        self._http[(method, path)] = Script(responses)
        return self

    def on_soap(self, action: str, *responses):
        self._soap[action] = Script(responses)
        return self

    def http_call(self, method, path, body=None, headers=None):
        self.calls.append((method, path, body))
        script = self._http.get((method, path))
        if script is None:
            raise AssertionError(f"unscripted call {method} {path}")
        return script.next()

    def soap_call(self, action, body):
        self.soap_calls.append((action, body))
        script = self._soap.get(action)
        if script is None:
            raise AssertionError(f"unscripted SOAP action {action}")
        response = script.next()
        return etree.fromstring(response) if isinstance(response, str) else response

    def count(self, method: str, path: str) -> int:
        return sum(1 for m, p, _ in self.calls if (m, p) == (method, path))


def soap_envelope(inner: str) -> str:
    return (
        '<soapenv:Envelope xmlns:soapenv="http://schemas.xmlsoap.org/soap/envelope/" '
        f'xmlns="{MET_NS}"><soapenv:Body>{inner}</soapenv:Body></soapenv:Envelope>'
    )


def deploy_response(job_id: str = "0Af000000000001") -> str:
    return soap_envelope(
        f"<deployResponse><result><done>false</done><id>{job_id}</id>"
        "<state>Queued</state></result></deployResponse>"
    )


def status_response(status: str, extra: str = "", job_id: str = "0Af000000000001") -> str:
    done = "true" if status in ("Succeeded", "Failed", "SucceededPartial", "Canceled") else "false"
    return soap_envelope(
        f"<checkDeployStatusResponse><result><done>{done}</done><id>{job_id}</id>"
        f"<status>{status}</status>{extra}</result></checkDeployStatusResponse>"
    )


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def sleeps():
    """Collects requested sleep durations instead of sleeping."""
    return []


@pytest.fixture
def options():
    return PollOptions()
