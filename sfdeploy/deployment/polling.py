"""Progressive-backoff poll loop shared by the container and archive pipelines.

The engine knows nothing about either protocol: ``check_status`` fetches one
status snapshot and ``classify`` turns it into a verdict. Salesforce async
jobs are not strongly consistent, so running out of attempts is followed by a
few spaced re-checks before the deploy is declared timed out.
"""
import logging
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, List, Optional, Tuple

import requests

from sfdeploy.deployment.models import AsyncJob, DeployOutcome, Diagnostic, JobState
from sfdeploy.errors import TransportError

logger = logging.getLogger(__name__)

TIMED_OUT_MESSAGE = (
    "Deployment timed out. The deployment may still be processing; "
    "please check your org before retrying."
)
CANCELLED_MESSAGE = (
    "Stopped waiting for the deployment. It may still be processing; "
    "please check your org before retrying."
)


class PollState(str, Enum):
    POLLING = "Polling"
    FALLBACK_VERIFYING = "FallbackVerifying"
    SUCCEEDED = "Succeeded"
    FAILED = "Failed"
    TIMED_OUT = "TimedOut"


class Verdict(str, Enum):
    RUNNING = "Running"
    SUCCESS = "Success"
    FAILURE = "Failure"
    ABORTED = "Aborted"


@dataclass(frozen=True)
class JobStatus:
    """One status read: the parsed state plus the raw record/element."""

    state: JobState
    payload: Any = None


@dataclass(frozen=True)
class Classification:
    verdict: Verdict
    diagnostics: Tuple[Diagnostic, ...] = ()
    message: Optional[str] = None

    @classmethod
    def running(cls) -> "Classification":
        return cls(Verdict.RUNNING)

    @classmethod
    def success(cls) -> "Classification":
        return cls(Verdict.SUCCESS)

    @classmethod
    def failure(cls, diagnostics: List[Diagnostic], message: Optional[str] = None) -> "Classification":
        return cls(Verdict.FAILURE, tuple(diagnostics), message)

    @classmethod
    def aborted(cls, message: Optional[str] = None) -> "Classification":
        return cls(Verdict.ABORTED, (), message)


@dataclass(frozen=True)
class PollOptions:
    max_attempts: int = 60
    initial_interval: float = 1.0
    initial_attempts: int = 5
    interval_step: float = 0.5
    max_interval: float = 4.0
    fallback_attempts: int = 3
    fallback_delay: float = 5.0
    timeout_grace_period: float = 3.0

    def interval(self, attempt: int) -> float:
        """Seconds to wait after the zero-based ``attempt``."""
        if attempt < self.initial_attempts:
            return min(self.initial_interval, self.max_interval)
        steps = attempt - self.initial_attempts + 1
        return min(self.initial_interval + self.interval_step * steps, self.max_interval)

    def schedule(self) -> List[float]:
        return [self.interval(i) for i in range(self.max_attempts)]


def is_reported_timeout(message: Optional[str]) -> bool:
    """Salesforce's own "timed out" failures frequently precede a success.

    Matches English server text only.
    """
    return bool(message) and "timed out" in message.lower()


# Errors worth retrying inside the loop; anything else is a bug and propagates.
RETRYABLE_ERRORS = (TransportError, requests.RequestException)


@dataclass
class Poller:
    check_status: Callable[[], JobStatus]
    classify: Callable[[JobStatus], Classification]
    options: PollOptions = field(default_factory=PollOptions)
    job: Optional[AsyncJob] = None
    cancel_event: Optional[threading.Event] = None
    sleep: Callable[[float], None] = time.sleep
    state: PollState = PollState.POLLING
    last_state: JobState = JobState.UNKNOWN
    attempts: int = 0

    @property
    def job_id(self) -> Optional[str]:
        return self.job.id if self.job else None

    def _wait(self, seconds: float) -> bool:
        """Sleep; return True when cancellation was requested."""
        if self.cancel_event is not None:
            return self.cancel_event.wait(seconds)
        self.sleep(seconds)
        return False

    def _cancelled(self) -> bool:
        return self.cancel_event is not None and self.cancel_event.is_set()

    def _read(self) -> Classification:
        status = self.check_status()
        self.last_state = status.state
        if self.job is not None:
            self.job.state = status.state
        return self.classify(status)

    def _outcome(self, success: bool, **kwargs) -> DeployOutcome:
        return DeployOutcome(success=success, raw_state=self.last_state, job_id=self.job_id, **kwargs)

    def _succeeded(self, fallback: bool = False) -> DeployOutcome:
        self.state = PollState.SUCCEEDED
        logger.info("✅ Deployment %s completed%s", self.job_id, " (confirmed by fallback)" if fallback else "")
        return self._outcome(True, fallback_success=fallback)

    def _failed(self, verdict: Classification) -> DeployOutcome:
        if verdict.verdict is Verdict.FAILURE and is_reported_timeout(verdict.message):
            logger.warning(
                "Salesforce reported a timeout for %s. Waiting %ss before treating it as success",
                self.job_id, self.options.timeout_grace_period,
            )
            self._wait(self.options.timeout_grace_period)
            return self._succeeded(fallback=True)

        self.state = PollState.FAILED
        message = verdict.message
        if verdict.verdict is Verdict.ABORTED:
            message = message or "Deployment aborted by Salesforce."
        logger.error("❌ Deployment %s failed (%s): %s", self.job_id, self.last_state.value, message)
        return self._outcome(False, diagnostics=list(verdict.diagnostics), message=message)

    def _stopped(self) -> DeployOutcome:
        self.state = PollState.FAILED
        logger.warning("Polling for %s cancelled after %d attempts", self.job_id, self.attempts)
        return self._outcome(False, message=CANCELLED_MESSAGE)

    def run(self) -> DeployOutcome:
        opts = self.options
        logger.info("Starting deployment status polling for %s", self.job_id)

        while self.attempts < opts.max_attempts:
            attempt = self.attempts
            self.attempts += 1
            if self._cancelled():
                return self._stopped()
            try:
                verdict = self._read()
            except RETRYABLE_ERRORS as e:
                logger.warning(
                    "Poll attempt %d/%d - network error (retrying): %s", attempt + 1, opts.max_attempts, e
                )
            else:
                logger.info("Poll attempt %d/%d - State: %s", attempt + 1, opts.max_attempts, self.last_state.value)
                if verdict.verdict is Verdict.SUCCESS:
                    return self._succeeded()
                if verdict.verdict in (Verdict.FAILURE, Verdict.ABORTED):
                    return self._failed(verdict)
            if self._wait(opts.interval(attempt)):
                return self._stopped()

        return self._verify_after_exhaustion()

    def _verify_after_exhaustion(self) -> DeployOutcome:
        opts = self.options
        self.state = PollState.FALLBACK_VERIFYING
        logger.warning(
            "Polling timeout reached for %s. Performing fallback verification (%d retries)...",
            self.job_id, opts.fallback_attempts,
        )
        for retry in range(1, opts.fallback_attempts + 1):
            if self._wait(opts.fallback_delay):
                return self._stopped()
            try:
                verdict = self._read()
            except RETRYABLE_ERRORS as e:
                logger.warning("Fallback retry %d network error: %s", retry, e)
                continue
            if verdict.verdict is Verdict.SUCCESS:
                return self._succeeded(fallback=True)
            if verdict.verdict in (Verdict.FAILURE, Verdict.ABORTED):
                logger.warning("Fallback retry %d: deployment ended with state %s", retry, self.last_state.value)
                return self._failed(verdict)
            logger.info("Fallback retry %d: state still %s, retrying...", retry, self.last_state.value)

        self.state = PollState.TIMED_OUT
        logger.error("Deployment %s timed out (last state %s)", self.job_id, self.last_state.value)
        return self._outcome(False, message=TIMED_OUT_MESSAGE)


def poll(
    check_status: Callable[[], JobStatus],
    classify: Callable[[JobStatus], Classification],
    options: Optional[PollOptions] = None,
    job: Optional[AsyncJob] = None,
    cancel_event: Optional[threading.Event] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> DeployOutcome:
    """Drive ``check_status`` until ``classify`` reaches a terminal verdict."""
    return Poller(
        check_status=check_status,
        classify=classify,
        options=options or PollOptions(),
        job=job,
        cancel_event=cancel_event,
        sleep=sleep,
    ).run()
