"""
Chain of Custody and evidence integrity modules.

Implements:
- Streaming SHA-256 / SHA-512 digests and forensic manifests
- NTP verified time and timestamp authority tokens
- Append-only custody ledger with integrity audit
- ECDSA P-256 signatures over custody logs
"""

from screen_evidence.forensics.evidence.custody_ledger import CustodyLedger
from screen_evidence.forensics.evidence.digest_engine import DigestEngine
from screen_evidence.forensics.evidence.digital_signature import DigitalSignatureService
from screen_evidence.forensics.evidence.exceptions import (
    AlreadyRecordingError,
    ArtifactNotRegisteredError,
    AuthorityTimeoutError,
    EvidenceGenerationError,
    EvidenceIOError,
    ForensicEvidenceError,
    MalformedResponseError,
    NoTimestampAuthorityError,
    NotRecordingError,
    OrchestrationError,
    TimeAuthorityError,
    TimeUnavailableError,
)
from screen_evidence.forensics.evidence.time_authority import TimeAuthorityClient

__all__ = [
    "CustodyLedger",
    "DigestEngine",
    "DigitalSignatureService",
    "TimeAuthorityClient",
    "ForensicEvidenceError",
    "EvidenceIOError",
    "TimeAuthorityError",
    "AuthorityTimeoutError",
    "MalformedResponseError",
    "TimeUnavailableError",
    "NoTimestampAuthorityError",
    "OrchestrationError",
    "ArtifactNotRegisteredError",
    "AlreadyRecordingError",
    "NotRecordingError",
    "EvidenceGenerationError",
]
