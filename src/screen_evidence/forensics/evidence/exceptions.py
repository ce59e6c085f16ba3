"""
Error types for forensic evidence generation.

Mandatory-path failures (digesting, time verification, manifest writing)
surface as these typed errors. Timestamp-authority failures are caught by the
orchestrator and only ever appear in the custody trail.
"""

from typing import List, Optional, Tuple


class ForensicEvidenceError(Exception):
    """Base class for all evidence-generation errors."""


class EvidenceIOError(ForensicEvidenceError, OSError):
    """Raised when an artifact or sidecar file cannot be read or written."""

    def __init__(self, message: str, path: Optional[str] = None):
        self.message = message
        self.path = path
        super().__init__(message)

    def __str__(self) -> str:
        return self.message


class TimeAuthorityError(ForensicEvidenceError):
    """Base class for NTP / timestamp authority failures."""


class AuthorityTimeoutError(TimeAuthorityError):
    """Raised when a time source does not answer within its hard deadline."""

    def __init__(self, endpoint: str, timeout: float):
        self.endpoint = endpoint
        self.timeout = timeout
        super().__init__(f"{endpoint} did not respond within {timeout:g}s")


class MalformedResponseError(TimeAuthorityError):
    """Raised when a network reply is undersized or cannot be parsed."""


class TimeUnavailableError(TimeAuthorityError):
    """Raised when no configured NTP server produced a usable time."""

    def __init__(self, failures: Optional[List[Tuple[str, str]]] = None):
        self.failures = list(failures or [])
        detail = "; ".join(f"{server}: {reason}" for server, reason in self.failures)
        message = "All NTP servers are unavailable"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class NoTimestampAuthorityError(TimeAuthorityError):
    """Raised when every timestamp authority rejected or ignored the request."""

    def __init__(self, failures: Optional[List[Tuple[str, str]]] = None):
        self.failures = list(failures or [])
        detail = "; ".join(f"{url}: {reason}" for url, reason in self.failures)
        message = "No timestamp authority available"
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message)


class OrchestrationError(ForensicEvidenceError):
    """Raised when the evidence workflow is driven out of sequence."""


class ArtifactNotRegisteredError(OrchestrationError):
    """Raised when a sidecar operation targets an artifact with no known path."""

    def __init__(self, artifact_id: str):
        self.artifact_id = artifact_id
        super().__init__(f"Artifact {artifact_id} has no registered location")


class AlreadyRecordingError(OrchestrationError):
    """Raised when a capture session is started twice."""

    def __init__(self, message: str = "Recording is already in progress"):
        super().__init__(message)


class NotRecordingError(OrchestrationError):
    """Raised when a capture session is stopped while idle."""

    def __init__(self, message: str = "No recording in progress"):
        super().__init__(message)


class EvidenceGenerationError(ForensicEvidenceError):
    """
    Raised when a mandatory orchestration step fails.

    No EvidenceRecord is produced when this error is raised.

    Attributes:
        step: Name of the failed step
        cause: Underlying exception
    """

    def __init__(self, step: str, cause: BaseException):
        self.step = step
        self.cause = cause
        super().__init__(f"Evidence generation aborted at step '{step}': {cause}")
