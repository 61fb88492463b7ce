"""Data model shared by the packager, the poll engine and both pipelines"""
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

# Relative path -> text content. Plain dicts keep insertion order.
FileMap = Dict[str, str]


class DeployKind(str, Enum):
    SINGLE_FILE = "SingleFile"
    BUNDLE = "Bundle"


class JobProtocol(str, Enum):
    CONTAINER = "container"
    ARCHIVE = "archive"


class JobState(str, Enum):
    """Every state either protocol reports.

    ContainerAsyncRequest.State and DeployResult.status share a few values
    (InProgress, Failed); anything the server invents later becomes UNKNOWN.
    """

    QUEUED = "Queued"
    PENDING = "Pending"
    IN_PROGRESS = "InProgress"
    COMPLETED = "Completed"
    SUCCEEDED = "Succeeded"
    SUCCEEDED_PARTIAL = "SucceededPartial"
    FAILED = "Failed"
    ERROR = "Error"
    INVALIDATED = "Invalidated"
    ABORTED = "Aborted"
    CANCELING = "Canceling"
    CANCELED = "Canceled"
    UNKNOWN = "Unknown"

    @classmethod
    def _missing_(cls, value):
        return cls.UNKNOWN

    @classmethod
    def parse(cls, value: Optional[str]) -> "JobState":
        if not value:
            return cls.UNKNOWN
        return cls(str(value).strip())


class DeployRequest(BaseModel):
    """What the caller wants pushed. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    kind: DeployKind
    target_type: str
    target_name: str
    content: FileMap = Field(default_factory=dict)
    # Record id of an existing ApexClass/ApexTrigger (ContentEntityId)
    entity_id: Optional[str] = None


class Container(BaseModel):
    """A MetadataContainer created for exactly one deploy attempt."""

    id: str
    name: str
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class AsyncJob(BaseModel):
    id: str
    protocol: JobProtocol
    state: JobState = JobState.UNKNOWN


class Diagnostic(BaseModel):
    model_config = ConfigDict(frozen=True)

    file: str
    kind: str
    message: str
    line: Optional[int] = None
    column: Optional[int] = None


class DeployOutcome(BaseModel):
    success: bool
    diagnostics: List[Diagnostic] = Field(default_factory=list)
    raw_state: JobState = JobState.UNKNOWN
    # True when success was only confirmed after the primary poll loop gave up
    # or the server reported its own time-out.
    fallback_success: bool = False
    message: Optional[str] = None
    job_id: Optional[str] = None
