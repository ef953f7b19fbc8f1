"""
Error taxonomy for the build/deploy pipeline.

Request paths translate these into HTTPException; queue tasks use them to decide
between a Celery retry and a terminal failure.
"""
from typing import Optional

from kubernetes.client.rest import ApiException
from urllib3.exceptions import HTTPError as TransportError


class LaunchpadError(Exception):
    """Base class for pipeline errors."""


class ValidationError(LaunchpadError):
    """Rejected before any cluster side effect (quota exceeded, missing fields)."""

    status_code = 400


class QuotaExceededError(ValidationError):
    status_code = 403


class ExternalDependencyError(LaunchpadError):
    """Credential issuance, registry or cluster API failure. Retried by the queue."""


class CredentialError(ExternalDependencyError):
    pass


class PipelineTimeoutError(LaunchpadError):
    """A bounded wait expired. Always carries diagnostics (events or partial logs)."""

    def __init__(self, message: str, diagnostics: Optional[str] = None):
        self.diagnostics = diagnostics or ""
        if self.diagnostics:
            message = f"{message}\n{self.diagnostics}"
        super().__init__(message)


class PodNotScheduled(PipelineTimeoutError):
    pass


class PodNotReady(PipelineTimeoutError):
    pass


class JobNotTerminal(PipelineTimeoutError):
    pass


class RolloutTimeout(PipelineTimeoutError):
    pass


class BuildJobFailed(LaunchpadError):
    def __init__(self, message: str, diagnostics: Optional[str] = None):
        self.diagnostics = diagnostics or ""
        if self.diagnostics:
            message = f"{message}\n{self.diagnostics}"
        super().__init__(message)


class RecordNotFoundError(LaunchpadError):
    pass


class StatusTransitionError(LaunchpadError):
    def __init__(self, table: str, record_id: str, status: str, allowed_from):
        self.table = table
        self.record_id = record_id
        self.status = status
        self.allowed_from = tuple(allowed_from)
        super().__init__(
            f"{table} {record_id}: transition to '{status}' rejected "
            f"(allowed only from {', '.join(self.allowed_from)})"
        )


def is_retryable(error: BaseException) -> bool:
    """Errors the queue should retry: external dependencies and cluster API failures,
    including connections to the API server that never got a response."""
    return isinstance(error, (ExternalDependencyError, ApiException, TransportError))
