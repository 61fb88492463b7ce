"""REST and SOAP calls against one Salesforce org session"""
import logging
from typing import Any, Dict, Optional

import requests
from lxml import etree

from sfdeploy.errors import SoapFaultError, TransportError

logger = logging.getLogger(__name__)

SOAPENV_NS = "http://schemas.xmlsoap.org/soap/envelope/"
MET_NS = "http://soap.sforce.com/2006/04/metadata"


def met(tag: str) -> etree.QName:
    """Qualified name in the Metadata API namespace."""
    return etree.QName(MET_NS, tag)


class SalesforceTransport:
    """Thin ``requests`` wrapper bound to an instance URL and session id.

    ``http_call`` paths are relative to ``/services/data/vXX.X/`` (e.g.
    ``tooling/sobjects/MetadataContainer``). Non-2xx responses raise
    :class:`TransportError` carrying the status and raw body.
    """

    def __init__(
        self,
        instance_url: str,
        session_id: str,
        api_version: str = "59.0",
        timeout: float = 60.0,
        session: Optional[requests.Session] = None,
    ):
        self.instance_url = instance_url.rstrip("/")
        self.session_id = session_id
        self.api_version = str(api_version).lstrip("vV")
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_connection(cls, sf_connection, timeout: float = 60.0) -> "SalesforceTransport":
        """Build from a ``simple_salesforce.Salesforce`` instance."""
        return cls(
            instance_url=f"https://{sf_connection.sf_instance}",
            session_id=sf_connection.session_id,
            api_version=getattr(sf_connection, "sf_version", "59.0"),
            timeout=timeout,
            session=getattr(sf_connection, "session", None),
        )

    @property
    def base_url(self) -> str:
        return f"{self.instance_url}/services/data/v{self.api_version}/"

    @property
    def soap_url(self) -> str:
        return f"{self.instance_url}/services/Soap/m/{self.api_version}"

    # -------------------------------------------------------------------------
    # REST
    # -------------------------------------------------------------------------

    def http_call(
        self,
        method: str,
        path: str,
        body: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ):
        """Call a REST endpoint; return parsed JSON, text, or None for empty bodies."""
        url = path if path.startswith("http") else f"{self.base_url}{path.lstrip('/')}"
        all_headers = {
            "Authorization": f"Bearer {self.session_id}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        all_headers.update(headers or {})

        logger.debug("Calling: %s %s", method, path)
        try:
            resp = self.session.request(
                method,
                url,
                headers=all_headers,
                json=body if body is not None and method.upper() != "GET" else None,
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            raise TransportError(f"{method} {path} failed: {e}") from e

        if not resp.ok:
            raise TransportError(
                f"API Error: {resp.status_code} - {resp.text[:500]}",
                status=resp.status_code,
                body=resp.text,
            )
        if not resp.content:
            return None
        if "application/json" in resp.headers.get("Content-Type", ""):
            return resp.json()
        return resp.text

    # -------------------------------------------------------------------------
    # SOAP (Metadata API)
    # -------------------------------------------------------------------------

    def build_envelope(self, body: etree._Element) -> bytes:
        nsmap = {"soapenv": SOAPENV_NS, "met": MET_NS}
        envelope = etree.Element(etree.QName(SOAPENV_NS, "Envelope"), nsmap=nsmap)
        header = etree.SubElement(envelope, etree.QName(SOAPENV_NS, "Header"))
        session_header = etree.SubElement(header, met("SessionHeader"))
        etree.SubElement(session_header, met("sessionId")).text = self.session_id
        etree.SubElement(envelope, etree.QName(SOAPENV_NS, "Body")).append(body)
        return etree.tostring(envelope, encoding="UTF-8", xml_declaration=True)

    def soap_call(self, action: str, body: etree._Element) -> etree._Element:
        """POST ``body`` inside a SOAP envelope; return the parsed response root."""
        headers = {
            "Authorization": f"Bearer {self.session_id}",
            "Content-Type": "text/xml; charset=UTF-8",
            "SOAPAction": '""',
        }
        logger.debug("SOAP call: %s", action)
        try:
            resp = self.session.post(
                self.soap_url, data=self.build_envelope(body), headers=headers, timeout=self.timeout
            )
        except requests.RequestException as e:
            raise TransportError(f"SOAP {action} failed: {e}") from e

        root = None
        if resp.content:
            try:
                root = etree.fromstring(resp.content)
            except etree.XMLSyntaxError as e:
                if resp.ok:
                    raise TransportError(
                        f"SOAP {action} returned malformed XML: {e}", status=resp.status_code, body=resp.text
                    ) from e

        # Salesforce sends faults with HTTP 500, check for one before the status
        fault = root.find(".//{*}Fault") if root is not None else None
        if fault is not None:
            raise SoapFaultError(
                fault.findtext("{*}faultcode") or "",
                fault.findtext("{*}faultstring") or "",
                status=resp.status_code,
                body=resp.text,
            )
        if not resp.ok or root is None:
            raise TransportError(
                f"SOAP API Error: {resp.status_code} - {resp.text[:500]}",
                status=resp.status_code,
                body=resp.text,
            )
        return root
