"""Normalizes the three error shapes Salesforce returns into Diagnostic records.

* inline JSON: the ``[{"message": ..., "errorCode": ...}]`` body of a failed
  Tooling REST call, e.g. a member insert rejected at parse time;
* job record: a ``ContainerAsyncRequest`` with ``CompilerErrors`` or
  ``DeployDetails``;
* SOAP result: the ``<result>`` element of ``checkDeployStatus``.

Every entry point is total: malformed input yields an empty list.
"""
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Union

from sfdeploy.deployment.models import Diagnostic

logger = logging.getLogger(__name__)

_LINE_COLUMN = re.compile(r"at line (\d+), column (\d+)", re.IGNORECASE)


@dataclass(frozen=True)
class InlineJsonError:
    text: str
    file_name: str = "Current File"


@dataclass(frozen=True)
class JobRecordError:
    job: Dict[str, Any]


@dataclass(frozen=True)
class SoapResultError:
    result: Any


ErrorSource = Union[InlineJsonError, JobRecordError, SoapResultError]


def _to_int(value) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        number = int(value) if isinstance(value, (int, float)) else int(str(value).strip())
    except (TypeError, ValueError, OverflowError):
        return None
    # Salesforce reports 0 when it has no position
    return number or None


# =============================================================================
# INLINE JSON
# =============================================================================

def from_inline_json(text: str, file_name: str = "Current File") -> List[Diagnostic]:
    try:
        payload = json.loads(text)
    except (TypeError, ValueError, RecursionError):
        return []

    if not isinstance(payload, list) or not payload or not isinstance(payload[0], dict):
        return []
    message = payload[0].get("message")
    if not isinstance(message, str):
        return []

    match = _LINE_COLUMN.search(message)
    if not match:
        return []
    return [
        Diagnostic(
            file=file_name,
            kind="Compile Error",
            message=message,
            line=int(match.group(1)),
            column=int(match.group(2)),
        )
    ]


# =============================================================================
# TOOLING JOB RECORD
# =============================================================================

def _compiler_errors(raw) -> List[Diagnostic]:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except (ValueError, RecursionError) as e:
            logger.warning("Failed to parse CompilerErrors: %s", e)
            return []
    if isinstance(raw, dict):
        raw = [raw]
    if not isinstance(raw, list):
        return []

    diagnostics = []
    for entry in raw:
        if not isinstance(entry, dict):
            continue
        extent = entry.get("extent")
        diagnostics.append(Diagnostic(
            file=str(entry.get("name") or "Unknown"),
            kind=str(extent) if extent else "Compile Error",
            message=str(entry.get("problem") or "Unknown error"),
            line=_to_int(entry.get("line")),
            column=_to_int(entry.get("column")),
        ))
    return diagnostics


def _as_list(value) -> List[Dict[str, Any]]:
    if isinstance(value, dict):
        return [value]
    if isinstance(value, list):
        return [v for v in value if isinstance(v, dict)]
    return []


def _deploy_details(details) -> List[Diagnostic]:
    if not isinstance(details, dict):
        return []
    failures = _as_list(details.get("componentFailures")) or _as_list(details.get("allComponentMessages"))

    diagnostics = []
    for f in failures:
        if f.get("problemType") != "Error" and f.get("success") is not False:
            continue
        diagnostics.append(Diagnostic(
            file=str(f.get("fileName") or f.get("fullName") or "Unknown"),
            kind=str(f.get("componentType") or "Deploy Error"),
            message=str(f.get("problem") or f.get("error") or "Syntax error"),
            line=_to_int(f.get("lineNumber")),
            column=_to_int(f.get("columnNumber")),
        ))
    return diagnostics


def from_job_record(job) -> List[Diagnostic]:
    if not isinstance(job, dict):
        return []

    diagnostics: List[Diagnostic] = []
    if job.get("CompilerErrors"):
        diagnostics = _compiler_errors(job["CompilerErrors"])
    if not diagnostics and job.get("DeployDetails"):
        diagnostics = _deploy_details(job["DeployDetails"])
    return diagnostics


# =============================================================================
# SOAP checkDeployStatus RESULT
# =============================================================================

def _child_text(node, tag: str) -> Optional[str]:
    child = node.find(f"{{*}}{tag}")
    return child.text if child is not None else None


def _find_all(node, tag: str) -> Iterable:
    return node.iter(f"{{*}}{tag}")


def from_soap_result(result) -> List[Diagnostic]:
    if result is None or not hasattr(result, "iter"):
        return []

    details = next(iter(_find_all(result, "details")), None)
    if details is None:
        return []

    diagnostics = []
    for failure in _find_all(details, "componentFailures"):
        full_name = _child_text(failure, "fullName") or "unknown"
        diagnostics.append(Diagnostic(
            file=full_name.rsplit("/", 1)[-1],
            kind=_child_text(failure, "problemType") or "Deployment Error",
            message=_child_text(failure, "problem") or "Unknown error",
            line=_to_int(_child_text(failure, "lineNumber")),
            column=_to_int(_child_text(failure, "columnNumber")),
        ))

    run_test_result = next(iter(_find_all(details, "runTestResult")), None)
    if run_test_result is not None:
        for failure in _find_all(run_test_result, "failures"):
            name = _child_text(failure, "name") or "Unknown"
            method = _child_text(failure, "methodName") or "Unknown"
            diagnostics.append(Diagnostic(
                file=f"{name}.{method}",
                kind="Test Failure",
                message=_child_text(failure, "message") or "Test failed",
            ))
    return diagnostics


# =============================================================================
# DISPATCH / FORMATTING
# =============================================================================

def normalize(error: ErrorSource) -> List[Diagnostic]:
    """Route a tagged error source to its entry point."""
    if isinstance(error, InlineJsonError):
        return from_inline_json(error.text, error.file_name)
    if isinstance(error, JobRecordError):
        return from_job_record(error.job)
    if isinstance(error, SoapResultError):
        return from_soap_result(error.result)
    return []


def format_diagnostics(message: Optional[str], diagnostics: List[Diagnostic]) -> str:
    """One ``[line:column] file: message`` line per diagnostic."""
    if diagnostics:
        return "\n".join(
            f"[{d.line if d.line is not None else '-'}:{d.column if d.column is not None else '-'}] "
            f"{d.file}: {d.message}"
            for d in diagnostics
        )
    return message or "Unknown deployment error"
