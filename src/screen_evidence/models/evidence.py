"""
Evidence data models.

Value types shared by the digest engine, custody ledger, time authority client
and the evidence orchestrator. All models are frozen dataclasses: once an
event is appended or a record is assembled it is never mutated.
"""

import base64
import hashlib
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Mapping, Optional, Tuple, Union

_SHA256_RE = re.compile(r"^[0-9a-f]{64}$")
_SHA512_RE = re.compile(r"^[0-9a-f]{128}$")

UNKNOWN_ACTOR = "Unknown"


class CustodyAction(str, Enum):
    """Known chain of custody actions. Free-form strings are also accepted."""

    RECORDING_START = "RECORDING_START"
    RECORDING_COMPLETE = "RECORDING_COMPLETE"
    HASH_GENERATION_START = "HASH_GENERATION_START"
    HASH_GENERATION_COMPLETE = "HASH_GENERATION_COMPLETE"
    TIMESTAMP_VERIFICATION_START = "TIMESTAMP_VERIFICATION_START"
    TIMESTAMP_VERIFICATION_COMPLETE = "TIMESTAMP_VERIFICATION_COMPLETE"
    TSA_TOKEN_RECEIVED = "TSA_TOKEN_RECEIVED"
    TSA_TOKEN_FAILED = "TSA_TOKEN_FAILED"
    MANIFEST_CREATED = "MANIFEST_CREATED"


# A log lacking any of these is structurally invalid
MANDATORY_ACTIONS: Tuple[CustodyAction, ...] = (
    CustodyAction.RECORDING_START,
    CustodyAction.RECORDING_COMPLETE,
    CustodyAction.HASH_GENERATION_COMPLETE,
)


def action_code(action: Union[CustodyAction, str]) -> str:
    """Return the plain string code for a known or free-form action."""
    if isinstance(action, CustodyAction):
        return action.value
    return str(action)


def format_utc(value: datetime) -> str:
    """Format a datetime as second-precision ISO 8601 UTC with a Z suffix."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_utc(value: str) -> datetime:
    """Parse an ISO 8601 timestamp; naive values are taken as UTC."""
    parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


@dataclass(frozen=True)
class DigestPair:
    """SHA-256 / SHA-512 digests of an artifact as lowercase hex."""

    sha256: str
    sha512: str

    def __post_init__(self) -> None:
        if not _SHA256_RE.match(self.sha256):
            raise ValueError(f"Invalid SHA-256 digest: {self.sha256!r}")
        if not _SHA512_RE.match(self.sha512):
            raise ValueError(f"Invalid SHA-512 digest: {self.sha512!r}")

    def to_dict(self) -> Dict[str, str]:
        return {"sha256": self.sha256, "sha512": self.sha512}


@dataclass(frozen=True)
class CustodyEvent:
    """
    A single chain of custody entry.

    Attributes:
        timestamp: Time the action was recorded (aware, UTC)
        action: Action code (see CustodyAction)
        details: Free-text description
        actor: Identity of whoever performed the action, if known
    """

    timestamp: datetime
    action: str
    details: str
    actor: Optional[str] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "action", action_code(self.action))
        if self.timestamp.tzinfo is None:
            object.__setattr__(self, "timestamp", self.timestamp.replace(tzinfo=timezone.utc))

    @property
    def epoch_seconds(self) -> float:
        return self.timestamp.timestamp()

    def to_export_dict(self) -> Dict[str, str]:
        """Serialise in the custody sidecar layout."""
        return {
            "timestamp": format_utc(self.timestamp),
            "action": self.action,
            "details": self.details,
            "user": self.actor or UNKNOWN_ACTOR,
        }

    @classmethod
    def from_export_dict(cls, data: Mapping[str, Any]) -> "CustodyEvent":
        """
        Rebuild an event from its sidecar form.

        Raises:
            ValueError: If timestamp, action or details are missing or mistyped
        """
        timestamp = data.get("timestamp")
        action = data.get("action")
        details = data.get("details")
        if not isinstance(timestamp, str) or not isinstance(action, str):
            raise ValueError("custody entry requires string 'timestamp' and 'action'")
        if not isinstance(details, str):
            raise ValueError("custody entry requires string 'details'")
        user = data.get("user")
        return cls(
            timestamp=parse_utc(timestamp),
            action=action,
            details=details,
            actor=user if isinstance(user, str) else None,
        )


@dataclass(frozen=True)
class IntegrityReport:
    """Outcome of a structural custody log audit."""

    is_valid: bool
    issues: Tuple[str, ...]
    event_count: int

    @property
    def summary(self) -> str:
        if self.is_valid:
            return f"Chain of custody verified ({self.event_count} events)"
        return "Chain of custody issues found:\n" + "\n".join(self.issues)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "is_valid": self.is_valid,
            "issues": list(self.issues),
            "event_count": self.event_count,
        }


@dataclass(frozen=True)
class TimestampProof:
    """Aggregated time evidence for an artifact digest."""

    file_hash: str
    ntp_timestamp: datetime
    ntp_server: str
    device_timestamp: datetime
    tsa_url: Optional[str] = None
    tsa_response: Optional[bytes] = None

    def __post_init__(self) -> None:
        for name in ("ntp_timestamp", "device_timestamp"):
            value = getattr(self, name)
            if value.tzinfo is None:
                object.__setattr__(self, name, value.replace(tzinfo=timezone.utc))

    @property
    def time_difference_seconds(self) -> float:
        """Seconds between the device clock and the NTP clock."""
        return (self.ntp_timestamp - self.device_timestamp).total_seconds()

    @property
    def tsa_response_size(self) -> Optional[int]:
        return len(self.tsa_response) if self.tsa_response is not None else None

    @property
    def tsa_response_sha256(self) -> Optional[str]:
        if self.tsa_response is None:
            return None
        return hashlib.sha256(self.tsa_response).hexdigest()

    def to_dict(self) -> Dict[str, Any]:
        proof: Dict[str, Any] = {
            "file_hash": self.file_hash,
            "device_time": format_utc(self.device_timestamp),
            "ntp_time": format_utc(self.ntp_timestamp),
            "ntp_server": self.ntp_server,
            "time_difference_seconds": self.time_difference_seconds,
        }
        if self.tsa_url is not None:
            proof["timestamp_authority"] = self.tsa_url
        if self.tsa_response is not None:
            proof["tsa_response_size"] = self.tsa_response_size
            proof["tsa_response_sha256"] = self.tsa_response_sha256
        return proof


@dataclass(frozen=True)
class DeviceMetadata:
    """Device and application details supplied by the capture collaborator."""

    device_model: str = ""
    os_version: str = ""
    app_version: str = ""
    screen_resolution: str = ""
    extra: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "extra", MappingProxyType(dict(self.extra)))

    def to_dict(self) -> Dict[str, Any]:
        metadata: Dict[str, Any] = dict(self.extra)
        metadata.update(
            {
                "device_model": self.device_model,
                "os_version": self.os_version,
                "app_version": self.app_version,
                "screen_resolution": self.screen_resolution,
            }
        )
        return metadata


@dataclass(frozen=True)
class CaptureResult:
    """What the capture collaborator hands over once recording stops."""

    artifact_id: str
    artifact_path: Path
    started_at: datetime
    duration_seconds: float
    device: DeviceMetadata = field(default_factory=DeviceMetadata)


@dataclass(frozen=True)
class StepResult:
    """
    Tagged outcome of one orchestration step.

    A failed mandatory step aborts the workflow; a failed optional step is
    recorded in the custody trail and the workflow continues.
    """

    step: str
    ok: bool
    mandatory: bool = True
    value: Any = None
    error: Optional[BaseException] = None

    @classmethod
    def success(cls, step: str, value: Any = None, mandatory: bool = True) -> "StepResult":
        return cls(step=step, ok=True, mandatory=mandatory, value=value)

    @classmethod
    def failure(cls, step: str, error: BaseException, mandatory: bool = True) -> "StepResult":
        return cls(step=step, ok=False, mandatory=mandatory, error=error)


@dataclass(frozen=True)
class EvidenceRecord:
    """
    Complete evidence package for one finished capture.

    Produced exactly once per capture by the orchestrator and handed to the
    persistence collaborator.
    """

    artifact_id: str
    filename: str
    file_path: str
    created_at: datetime
    duration_seconds: float
    file_size: int
    digests: DigestPair
    timestamp_proof: TimestampProof
    custody_log: Tuple[CustodyEvent, ...]
    device: DeviceMetadata
    manifest_path: str
    proof_of_existence: str
    is_original_file: bool = True
    original_file_hash: Optional[str] = None

    @property
    def sha256(self) -> str:
        return self.digests.sha256

    @property
    def sha512(self) -> str:
        return self.digests.sha512

    @property
    def tsa_url(self) -> Optional[str]:
        return self.timestamp_proof.tsa_url

    @property
    def tsa_response(self) -> Optional[bytes]:
        return self.timestamp_proof.tsa_response

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        tsa_response = self.timestamp_proof.tsa_response
        return {
            "artifact_id": self.artifact_id,
            "filename": self.filename,
            "file_path": self.file_path,
            "created_at": format_utc(self.created_at),
            "duration_seconds": self.duration_seconds,
            "file_size": self.file_size,
            "sha256": self.digests.sha256,
            "sha512": self.digests.sha512,
            "ntp_timestamp": format_utc(self.timestamp_proof.ntp_timestamp),
            "ntp_server": self.timestamp_proof.ntp_server,
            "timestamp_verification_url": self.timestamp_proof.tsa_url,
            "timestamp_response": (
                base64.b64encode(tsa_response).decode("ascii") if tsa_response is not None else None
            ),
            "timestamp_proof": self.timestamp_proof.to_dict(),
            "chain_of_custody": [event.to_export_dict() for event in self.custody_log],
            "device": self.device.to_dict(),
            "manifest_path": self.manifest_path,
            "proof_of_existence": self.proof_of_existence,
            "is_original_file": self.is_original_file,
            "original_file_hash": self.original_file_hash,
        }
