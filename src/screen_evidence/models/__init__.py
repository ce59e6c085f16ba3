"""
Evidence models for screen capture forensics.
"""

from screen_evidence.models.evidence import (
    MANDATORY_ACTIONS,
    CaptureResult,
    CustodyAction,
    CustodyEvent,
    DeviceMetadata,
    DigestPair,
    EvidenceRecord,
    IntegrityReport,
    StepResult,
    TimestampProof,
    format_utc,
    parse_utc,
)

__all__ = [
    "MANDATORY_ACTIONS",
    "CaptureResult",
    "CustodyAction",
    "CustodyEvent",
    "DeviceMetadata",
    "DigestPair",
    "EvidenceRecord",
    "IntegrityReport",
    "StepResult",
    "TimestampProof",
    "format_utc",
    "parse_utc",
]
