"""Exceptions raised by the deployment subsystem"""
from typing import Optional


class SfDeployError(Exception):
    """Base class for every error raised by sfdeploy."""


class ConfigurationError(SfDeployError):
    """No usable Salesforce session could be built from the settings."""


class TransportError(SfDeployError):
    """A REST or SOAP call returned a non-2xx response or never completed.

    Carries the HTTP status (None when the request never got a response) and
    the raw response body so callers can mine it for inline compile errors.
    """

    def __init__(self, message: str, status: Optional[int] = None, body: str = ""):
        super().__init__(message)
        self.status = status
        self.body = body or ""


class SoapFaultError(TransportError):
    """The Metadata SOAP endpoint answered with a <Fault> element."""

    def __init__(self, fault_code: str, fault_string: str, status: Optional[int] = None, body: str = ""):
        super().__init__(f"SOAP Fault [{fault_code}]: {fault_string}", status=status, body=body)
        self.fault_code = fault_code
        self.fault_string = fault_string
